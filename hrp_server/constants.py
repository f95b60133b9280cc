from __future__ import annotations

import logging
import os

# Remote console (ZeroMQ PAIR) bind endpoint
REMOTE_ENDPOINT: str = os.getenv("HRP_REMOTE_ENDPOINT", "tcp://*:6666")
# Telemetry publishers bind here; each connection takes the lowest free port from the base
PUBLISH_HOST: str = os.getenv("HRP_PUBLISH_HOST", "127.0.0.1")
PUBLISH_PORT: int = int(os.getenv("HRP_PUBLISH_PORT", "5678"))
PUBLISH_PORT_SPAN: int = int(os.getenv("HRP_PUBLISH_PORT_SPAN", "32"))

# Control loop timing
LOOP_PERIOD_S: float = float(os.getenv("HRP_LOOP_PERIOD_S", "0.25"))
STAGE_TIMEOUT_S: float = float(os.getenv("HRP_STAGE_TIMEOUT_S", "1.0"))
PROBE_TIMEOUT_S: float = float(os.getenv("HRP_PROBE_TIMEOUT_S", "1.0"))

# Pluggable collaborators, imported by name
ROBOT_PROTOCOL_MODULE: str = os.getenv("HRP_ROBOT_PROTOCOL", "hrp")
DRIVER_PACKAGE: str = os.getenv("HRP_DRIVER_PACKAGE", "hrp_joy_driver.drivers")
DEFAULT_DRIVER: str = os.getenv("HRP_DEFAULT_DRIVER", "GeniusDriver")

# Wire vocabulary
JOINTS_TOPIC = "joints"
VIRTUAL_ROBOT_PATH = "virtual"
CMD_NEUTRAL = "MN"
CMD_MOVE = "M3"
ADD_VIRTUAL_JOY = "addVirtualJoy"
DEL_VIRTUAL_JOY = "delVirtualJoy"
RELEASED_NOTICE = "ubind"
CLOSING_NOTICE = "closing"
ERROR_FRAME = "error"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default) in ("1", "true", "True", "yes", "YES")


WITH_CONSOLE: bool = _env_flag("HRP_WITH_CONSOLE", "1")
WITH_REMOTE: bool = _env_flag("HRP_WITH_REMOTE", "1")


def _resolve_log_level() -> int:
    s = os.getenv("HRP_LOG_LEVEL")
    if s:
        name = s.strip().upper()
        mapping = {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL,
        }
        return mapping.get(name, logging.WARNING)
    else:
        return logging.WARNING


LOG_LEVEL: int = _resolve_log_level()
