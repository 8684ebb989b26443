"""
Connection transports owned by a protocol handler.

Two transports share one small interface (``request``, ``is_closing``,
``close``):

- :class:`UdpTransport`: an asyncio ``DatagramProtocol`` that queues inbound
  datagrams.  ICMP-derived errors reported through ``error_received`` are
  forwarded to the owner and also wake a pending receiver.  Closing the
  endpoint wakes a pending receiver with ``ConnectionResetError``.
- :class:`ModbusTcpTransport`: a pymodbus ``AsyncModbusTcpClient`` that
  executes register reads and returns the register words as bytes.

Neither transport retries, bounds the response wait or enriches errors;
that is the handler's job.

CHANGELOG:
- 2026-03-14: Replace the stream-based TCP transport with pymodbus
- 2026-03-06: Close the TCP writer when the inverter drops the stream
- 2026-02-28: Initial creation (STORY-104)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import errno
import logging
import struct
from collections.abc import Callable
from typing import Protocol

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ConnectionException, ModbusException, ModbusIOException

from goodwe_lan.src.errors import ConfigurationError, ErrorCode, FrameError, InverterError
from goodwe_lan.src.frames import MODBUS_READ_INPUT, ProtocolCommand

logger = logging.getLogger(__name__)

ErrorCallback = Callable[[Exception], None]

CONNECT_TIMEOUT_SLACK = 0.9
"""Share of the connect window after which a failed connect is a timeout."""


class Transport(Protocol):
    """Interface the handler expects from a transport."""

    async def request(self, command: ProtocolCommand) -> bytes: ...

    def is_closing(self) -> bool: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# UDP
# ---------------------------------------------------------------------------


class UdpTransport(asyncio.DatagramProtocol):
    """Datagram endpoint with an inbound queue.

    Args:
        on_error: Called with every exception reported by
            ``error_received``.
    """

    def __init__(self, on_error: ErrorCallback | None = None) -> None:
        self._on_error = on_error
        self._queue: asyncio.Queue[bytes | Exception] = asyncio.Queue()
        self._transport: asyncio.DatagramTransport | None = None
        self._closed = False

    # -- asyncio.DatagramProtocol callbacks ---------------------------------

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = transport  # type: ignore[assignment]

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        logger.debug("UDP datagram from %s:%d (%d bytes)", addr[0], addr[1], len(data))
        self._queue.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        logger.warning("UDP transport error: %s", exc)
        self._queue.put_nowait(exc)
        if self._on_error is not None:
            self._on_error(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        self._closed = True
        self._queue.put_nowait(ConnectionResetError("Connection closed"))

    # -- Transport interface ------------------------------------------------

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        on_error: ErrorCallback | None = None,
    ) -> UdpTransport:
        """Allocate a datagram endpoint.

        With a host the socket is connected to ``(host, port)`` so only that
        peer's replies are delivered.  Without a host an ephemeral local
        port is bound; sending then fails until a host is configured.
        """
        loop = asyncio.get_running_loop()
        if host:
            _, protocol = await loop.create_datagram_endpoint(
                lambda: cls(on_error), remote_addr=(host, port)
            )
        else:
            _, protocol = await loop.create_datagram_endpoint(
                lambda: cls(on_error), local_addr=("0.0.0.0", 0)
            )
        return protocol

    async def send(self, data: bytes) -> None:
        if self._transport is None or self._closed:
            raise ConnectionResetError("Connection closed")
        if self._transport.get_extra_info("peername") is None:
            raise ConfigurationError("Missing host: cannot send without a host")
        self._transport.sendto(data)

    async def receive(self) -> bytes:
        item = await self._queue.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def request(self, command: ProtocolCommand) -> bytes:
        """Drop stale datagrams, send ``command.request`` and await one reply."""
        self.drain()
        await self.send(command.request)
        return await self.receive()

    def drain(self) -> int:
        """Discard queued datagrams and errors; return how many were dropped."""
        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            dropped += 1
        if dropped:
            logger.debug("Discarded %d stale UDP item(s)", dropped)
        return dropped

    def is_closing(self) -> bool:
        return self._closed or self._transport is None or self._transport.is_closing()

    async def close(self) -> None:
        if self._transport is not None and not self._transport.is_closing():
            self._transport.close()


# ---------------------------------------------------------------------------
# Modbus TCP
# ---------------------------------------------------------------------------


class ModbusTcpTransport:
    """Modbus TCP connection backed by pymodbus ``AsyncModbusTcpClient``.

    pymodbus owns MBAP framing and transaction id correlation.  Failures are
    translated into the exceptions the handler already classifies:

    - no response (``ModbusIOException``): ``TimeoutError``
    - connection lost (``ConnectionException``): ``ConnectionResetError``
    - Modbus exception response: :class:`FrameError`
    """

    def __init__(self, client: AsyncModbusTcpClient) -> None:
        self._client = client
        self._closed = False

    @classmethod
    async def open(cls, host: str, port: int, timeout_s: float) -> ModbusTcpTransport:
        """Connect to ``(host, port)`` bounded by *timeout_s*.

        pymodbus reports every connect failure as ``False``; a failure that
        took the whole window is a timeout, an earlier one a refusal.

        Raises:
            InverterError: ``TIMEOUT`` when the connect does not complete.
            ConnectionRefusedError: The inverter rejected the connection.
        """
        client = AsyncModbusTcpClient(host, port=port, timeout=timeout_s, retries=0)
        loop = asyncio.get_running_loop()
        started = loop.time()
        timed_out = False
        try:
            ok = await asyncio.wait_for(client.connect(), timeout=timeout_s)
        except TimeoutError:
            ok, timed_out = False, True

        if ok:
            return cls(client)

        client.close()
        # pymodbus gives up on its own timer, which can fire just before ours
        elapsed = loop.time() - started
        if timed_out or elapsed >= timeout_s * CONNECT_TIMEOUT_SLACK:
            raise InverterError(
                f"Connection timeout after {int(timeout_s * 1000)}ms",
                code=ErrorCode.TIMEOUT,
            )
        raise ConnectionRefusedError(
            errno.ECONNREFUSED, f"Connection refused by {host}:{port}"
        )

    async def request(self, command: ProtocolCommand) -> bytes:
        """Execute a ``ModbusTcpReadCommand``; return the packed registers."""
        if self.is_closing():
            raise ConnectionResetError("Connection closed")
        if command.function == MODBUS_READ_INPUT:
            read = self._client.read_input_registers
        else:
            read = self._client.read_holding_registers
        try:
            response = await read(
                command.start_register,
                count=command.count,
                device_id=command.unit_id,
            )
        except ModbusIOException as err:
            raise TimeoutError(f"No Modbus response: {err}") from err
        except ConnectionException as err:
            self._mark_closed()
            raise ConnectionResetError(f"Connection closed by inverter: {err}") from err
        except ModbusException as err:
            raise FrameError(f"Invalid Modbus response: {err}") from err

        if response.isError():
            raise FrameError(
                f"Modbus exception response, code: {getattr(response, 'exception_code', 0)}"
            )
        registers = list(response.registers)
        return struct.pack(f">{len(registers)}H", *registers)

    def _mark_closed(self) -> None:
        self._closed = True
        self._client.close()

    def is_closing(self) -> bool:
        return self._closed or not self._client.connected

    async def close(self) -> None:
        if not self._closed:
            self._mark_closed()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


async def open_transport(
    protocol: str,
    host: str,
    port: int,
    timeout_s: float,
    on_error: ErrorCallback | None = None,
) -> Transport:
    """Open the transport for *protocol* (``udp``, ``tcp`` or ``modbus``)."""
    if protocol == "udp":
        return await UdpTransport.open(host, port, on_error=on_error)
    if protocol in ("tcp", "modbus"):
        if not host:
            raise ConfigurationError(f"Missing host: a host is required for {protocol}")
        return await ModbusTcpTransport.open(host, port, timeout_s)
    raise ConfigurationError(f"Unsupported protocol: {protocol}")
