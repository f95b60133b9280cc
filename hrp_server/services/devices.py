from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Iterable

import hid

from hrp_server.state import DeviceHandle, Origin

if TYPE_CHECKING:
    from hrp_server.services.interfaces import RobotProtocol

logger = logging.getLogger(__name__)


def _decode_path(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return str(raw)


class HidEnumerator:
    """Lists attached HID devices through hidapi, one handle per distinct path."""

    def __init__(self, vendor_id: int = 0, product_id: int = 0) -> None:
        self.vendor_id = vendor_id
        self.product_id = product_id

    def list(self) -> list[DeviceHandle]:
        seen: set[str] = set()
        handles: list[DeviceHandle] = []
        for d in hid.enumerate(self.vendor_id, self.product_id):
            path = _decode_path(d.get("path", b""))
            if not path or path in seen:
                continue
            seen.add(path)
            handles.append(DeviceHandle(path=path, origin=Origin.PHYSICAL))
        return handles


async def safe_is_compliant(protocol: RobotProtocol, path: str, timeout: float) -> bool:
    """Classification probe that never raises; any failure means 'not a robot'."""
    try:
        return bool(await asyncio.wait_for(protocol.is_compliant(path), timeout=timeout))
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.debug("Probe failed for %s: %s", path, e)
        return False


async def classify_all(
    protocol: RobotProtocol, paths: Iterable[str], timeout: float
) -> list[bool]:
    """Probe every path concurrently; results keep the input order."""
    return list(
        await asyncio.gather(*(safe_is_compliant(protocol, p, timeout) for p in paths))
    )
