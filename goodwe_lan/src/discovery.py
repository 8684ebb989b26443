"""
Broadcast discovery of inverters on the local network.

Sends the AA55 discovery request to a broadcast address and collects every
valid reply that arrives before the window closes.  Replies are keyed by
sender IP; when an inverter answers more than once the last reply wins.
Malformed datagrams (other devices on port 8899, truncated frames) are
ignored.

CHANGELOG:
- 2026-03-14: Rename the discovery command to DISCOVERY_REQUEST
- 2026-03-09: Surface socket errors immediately instead of after the window
- 2026-03-01: Initial creation (STORY-110)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from goodwe_lan.src.config import DEFAULT_PORT
from goodwe_lan.src.errors import ErrorContext, FrameError, enhance_error
from goodwe_lan.src.frames import DISCOVERY_REQUEST
from goodwe_lan.src.models import DiscoveryRecord
from goodwe_lan.src.sensors import decode_aa55_device_info, detect_family

logger = logging.getLogger(__name__)

BROADCAST_ADDRESS = "255.255.255.255"
DEFAULT_DISCOVERY_TIMEOUT_MS = 5000


def _record_from_reply(payload: bytes, ip: str, port: int) -> DiscoveryRecord:
    try:
        info = decode_aa55_device_info(payload)
    except FrameError:
        # Short version block: still an inverter, identity unknown.
        info = {}
    serial_number = info.get("serial_number")
    model_name = info.get("model_name")
    return DiscoveryRecord(
        ip=ip,
        port=port,
        family=detect_family(serial_number, model_name),
        serial_number=serial_number,
        model_name=model_name,
    )


class _DiscoveryProtocol(asyncio.DatagramProtocol):
    """Collects discovery replies; records the first socket error."""

    def __init__(self, port: int) -> None:
        self._port = port
        self.records: dict[str, DiscoveryRecord] = {}
        self.failed: asyncio.Future[Exception] = (
            asyncio.get_running_loop().create_future()
        )

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        ip = addr[0]
        try:
            payload = DISCOVERY_REQUEST.parse(data)
        except FrameError as err:
            logger.debug("Ignoring invalid discovery reply from %s: %s", ip, err)
            return
        record = _record_from_reply(payload, ip, self._port)
        if ip in self.records:
            logger.debug("Duplicate discovery reply from %s, keeping latest", ip)
        self.records[ip] = record

    def error_received(self, exc: Exception) -> None:
        if not self.failed.done():
            self.failed.set_result(exc)


async def discover_inverters(
    *,
    timeout_ms: int = DEFAULT_DISCOVERY_TIMEOUT_MS,
    broadcast_address: str = BROADCAST_ADDRESS,
    port: int = DEFAULT_PORT,
) -> list[DiscoveryRecord]:
    """Broadcast a discovery request and return every inverter that answered.

    Args:
        timeout_ms: Listening window in milliseconds.
        broadcast_address: Destination of the broadcast.
        port: Inverter UDP port.

    Returns:
        One record per responding IP, in order of first reply.  Empty when
        nobody answered.

    Raises:
        InverterError: The socket could not be opened or the request could
            not be sent (enriched).
    """
    loop = asyncio.get_running_loop()
    context = ErrorContext(
        host=broadcast_address, port=port, protocol="udp", timeout=timeout_ms
    )

    try:
        transport, protocol = await loop.create_datagram_endpoint(
            lambda: _DiscoveryProtocol(port),
            local_addr=("0.0.0.0", 0),
            allow_broadcast=True,
        )
    except OSError as err:
        raise enhance_error(err, context) from err

    logger.info(
        "Discovery: probing %s:%d for %dms", broadcast_address, port, timeout_ms
    )
    try:
        transport.sendto(DISCOVERY_REQUEST.request, (broadcast_address, port))
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(
                asyncio.shield(protocol.failed), timeout=timeout_ms / 1000
            )
    except OSError as err:
        raise enhance_error(err, context) from err
    finally:
        transport.close()

    if protocol.failed.done():
        err = protocol.failed.result()
        raise enhance_error(err, context) from err

    found = list(protocol.records.values())
    logger.info("Discovery: %d inverter(s) found", len(found))
    return found
