from __future__ import annotations

from dataclasses import dataclass

from hrp_server import constants as c


@dataclass
class ServerConfig:
    """Runtime configuration for the binding server and its two consoles."""

    with_console: bool = True
    with_remote: bool = True
    remote_endpoint: str = "tcp://*:6666"
    publish_host: str = "127.0.0.1"
    publish_port: int = 5678
    publish_port_span: int = 32
    loop_period_s: float = 0.25  # control loop tick period
    stage_timeout_s: float = 1.0  # bound on every pipeline stage
    probe_timeout_s: float = 1.0  # bound on one classification probe
    robot_protocol: str = "hrp"
    driver_package: str = "hrp_joy_driver.drivers"
    default_driver: str = "GeniusDriver"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            with_console=c.WITH_CONSOLE,
            with_remote=c.WITH_REMOTE,
            remote_endpoint=c.REMOTE_ENDPOINT,
            publish_host=c.PUBLISH_HOST,
            publish_port=c.PUBLISH_PORT,
            publish_port_span=c.PUBLISH_PORT_SPAN,
            loop_period_s=c.LOOP_PERIOD_S,
            stage_timeout_s=c.STAGE_TIMEOUT_S,
            probe_timeout_s=c.PROBE_TIMEOUT_S,
            robot_protocol=c.ROBOT_PROTOCOL_MODULE,
            driver_package=c.DRIVER_PACKAGE,
            default_driver=c.DEFAULT_DRIVER,
        )

    def publish_endpoint(self, offset: int) -> str:
        """Endpoint of the publish channel occupying slot ``offset``."""
        return f"tcp://{self.publish_host}:{self.publish_port + offset}"
