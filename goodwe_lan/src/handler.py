"""
Protocol handler: connection lifecycle, command transport and retry engine.

One :class:`ProtocolHandler` owns one transport to one inverter.  It frames
commands for the configured protocol, correlates and validates responses,
retries transient failures with capped exponential backoff and translates
every failure into an enriched :class:`~goodwe_lan.src.errors.InverterError`
before it reaches the caller.

Observers register per handler with ``on(event, callback)``:

- ``status``: :class:`~goodwe_lan.src.models.StatusEvent` on every lifecycle
  and request state change.
- ``error``: :class:`~goodwe_lan.src.errors.InverterError` for asynchronous
  transport failures not tied to an in-flight request.

Only one command may be in flight per handler; callers serialise access.

CHANGELOG:
- 2026-03-14: Run Modbus TCP reads through pymodbus; silence the error event during a command
- 2026-03-10: Wrap unclassified read failures as READ_ERROR
- 2026-03-07: Add family-aware read_device_info / read_runtime_data
- 2026-03-05: Add status/error observers
- 2026-03-04: Cap exponential backoff at max_backoff_ms
- 2026-02-28: Initial creation (STORY-109)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any

from goodwe_lan.src.config import SUPPORTED_PROTOCOLS, ConnectionConfig
from goodwe_lan.src.errors import (
    ConfigurationError,
    ErrorCode,
    ErrorContext,
    ErrorRecord,
    InverterError,
    enhance_error,
)
from goodwe_lan.src.formatting import filter_sensors
from goodwe_lan.src.frames import (
    DEFAULT_COMM_ADDR,
    READ_DEVICE_INFO,
    READ_RUNNING_DATA,
    Aa55Command,
    ModbusRtuReadCommand,
    ModbusTcpReadCommand,
    ProtocolCommand,
)
from goodwe_lan.src.models import DeviceInfo, StatusEvent, StatusSnapshot
from goodwe_lan.src.sensors import (
    FamilyConfig,
    RuntimeData,
    decode_aa55_device_info,
    decode_modbus_device_info,
    get_family_config,
    parse_sensor_data,
)
from goodwe_lan.src.transport import Transport, open_transport

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

NOT_CONNECTED = "Not connected"
"""Exact message raised when a command is sent without a connection."""

RETRYABLE_CODES: frozenset[ErrorCode] = frozenset(
    {ErrorCode.TIMEOUT, ErrorCode.ECONNRESET, ErrorCode.EHOSTUNREACH}
)
"""Error codes that trigger another attempt in send_command_with_retry."""

EVENTS = ("status", "error")

Listener = Callable[[Any], None]


class ProtocolHandler:
    """Client for a single inverter over UDP or Modbus TCP.

    Args:
        config: Connection configuration.  When omitted, one is built from
            *overrides* and GOODWE_* environment variables.
        **overrides: Field overrides applied on top of *config*.

    The configuration is frozen for the handler's lifetime.  Use the
    handler as an async context manager to disconnect on exit.
    """

    def __init__(self, config: ConnectionConfig | None = None, **overrides: Any) -> None:
        if config is None:
            config = ConnectionConfig(**overrides)
        elif overrides:
            config = ConnectionConfig(**{**config.model_dump(), **overrides})
        self._config = config
        self._transport: Transport | None = None
        self._connected = False
        self._consecutive_failures = 0
        self._last_error: ErrorRecord | None = None
        self._listeners: dict[str, list[Listener]] = {event: [] for event in EVENTS}
        self._in_flight = False

    async def __aenter__(self) -> ProtocolHandler:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    # -- State ----------------------------------------------------------------

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def socket_handle(self) -> Transport | None:
        """The owned transport, or ``None`` when disconnected."""
        return self._transport

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def last_error(self) -> ErrorRecord | None:
        return self._last_error

    def get_status(self) -> StatusSnapshot:
        """Return a snapshot of the connection state.  No side effects."""
        return StatusSnapshot(
            connected=self._connected,
            consecutive_failures=self._consecutive_failures,
            protocol=self._config.protocol,
            host=self._config.host,
            port=self._config.port,
            last_error=self._last_error,
        )

    # -- Observers --------------------------------------------------------------

    def on(self, event: str, callback: Listener) -> None:
        """Register *callback* for *event* (``status`` or ``error``)."""
        if event not in self._listeners:
            raise ValueError(f"Unknown event '{event}'; expected one of {EVENTS}")
        self._listeners[event].append(callback)

    def off(self, event: str, callback: Listener) -> None:
        """Remove a previously registered callback.  Unknown ones are ignored."""
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def _emit(self, event: str, payload: Any) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception:
                logger.warning("Listener for '%s' event raised", event, exc_info=True)

    def _emit_status(self, state: str, **fields: Any) -> None:
        self._emit("status", StatusEvent(state=state, **fields))

    # -- Errors -----------------------------------------------------------------

    def _context(self) -> ErrorContext:
        return ErrorContext(
            host=self._config.host,
            port=self._config.port,
            protocol=self._config.protocol,
            family=self._config.family,
            timeout=self._config.timeout_ms,
        )

    def _fail(self, err: BaseException) -> InverterError:
        """Enrich *err*, count the failure and remember it."""
        error = enhance_error(err, self._context())
        self._consecutive_failures += 1
        self._last_error = error.record
        logger.warning(
            "Command to %s:%d failed [%s]: %s (consecutive failures: %d)",
            self._config.host,
            self._config.port,
            error.code,
            error.message,
            self._consecutive_failures,
        )
        if self._transport is not None and self._transport.is_closing():
            self._drop_transport()
        return error

    def _on_transport_error(self, exc: Exception) -> None:
        # An in-flight command receives the same error and reports it itself
        if self._in_flight:
            logger.debug("Transport error during a command: %s", exc)
            return
        error = enhance_error(exc, self._context())
        self._last_error = error.record
        self._emit("error", error)

    # -- Lifecycle ----------------------------------------------------------------

    async def connect(self) -> None:
        """Open the transport.  A no-op when already connected.

        Raises:
            ConfigurationError: Unsupported protocol or missing host for
                TCP, raised before any I/O.
            InverterError: The transport could not be opened (enriched).
        """
        if self._connected:
            return

        protocol = self._config.protocol
        if protocol not in SUPPORTED_PROTOCOLS:
            raise enhance_error(
                ConfigurationError(f"Unsupported protocol: {protocol}"), self._context()
            )
        if protocol != "udp" and not self._config.host:
            raise enhance_error(
                ConfigurationError(f"Missing host: a host is required for {protocol}"),
                self._context(),
            )

        self._emit_status("connecting")
        try:
            self._transport = await open_transport(
                protocol,
                self._config.host,
                self._config.port,
                self._config.timeout_s,
                on_error=self._on_transport_error,
            )
        except (InverterError, OSError) as err:
            error = self._fail(err)
            self._emit_status("error", message=error.message)
            raise error from err

        self._connected = True
        logger.info(
            "Connected to %s:%d via %s",
            self._config.host or "(no host)",
            self._config.port,
            protocol,
        )
        self._emit_status("connected")

    def _drop_transport(self) -> None:
        # Transport closed underneath us (peer closed the TCP stream).
        self._transport = None
        if self._connected:
            self._connected = False
            self._emit_status("disconnected")

    async def disconnect(self) -> None:
        """Close the transport.  Safe to call repeatedly or before connect."""
        transport, self._transport = self._transport, None
        was_connected, self._connected = self._connected, False
        if transport is not None:
            await transport.close()
        if transport is not None or was_connected:
            logger.info("Disconnected from %s:%d", self._config.host, self._config.port)
            self._emit_status("disconnected")

    # -- Commands -----------------------------------------------------------------

    def _frame(self, payload: bytes) -> ProtocolCommand:
        if self._config.protocol == "udp":
            return Aa55Command.from_payload(payload)
        return ModbusTcpReadCommand.from_pdu(payload, self._comm_addr())

    def _check_command(self, command: ProtocolCommand) -> None:
        over_tcp = self._config.protocol != "udp"
        if over_tcp != isinstance(command, ModbusTcpReadCommand):
            raise enhance_error(
                ConfigurationError(
                    f"{type(command).__name__} cannot be sent over "
                    f"{self._config.protocol}"
                ),
                self._context(),
            )

    def _comm_addr(self, family_config: FamilyConfig | None = None) -> int:
        if self._config.comm_addr is not None:
            return self._config.comm_addr
        if family_config is None:
            family_config = get_family_config(self._config.family)
        if family_config is None:
            return DEFAULT_COMM_ADDR
        return family_config.comm_addr

    async def _exchange(self, command: ProtocolCommand) -> bytes:
        self._in_flight = True
        try:
            return await asyncio.wait_for(
                self._transport.request(command),
                timeout=self._config.timeout_s,
            )
        except TimeoutError as err:
            raise InverterError(
                f"Response timeout after {self._config.timeout_ms}ms",
                code=ErrorCode.TIMEOUT,
            ) from err
        finally:
            self._in_flight = False

    async def send_command(self, command: ProtocolCommand | bytes) -> bytes:
        """Send one command and return the validated response payload.

        Args:
            command: A :class:`ProtocolCommand`, or raw payload bytes that
                are framed for the configured protocol (AA55
                ``control | function | data`` for UDP, a Modbus read PDU
                ``function | register | count`` for TCP).

        Returns:
            The response payload with framing stripped.

        Raises:
            ConfigurationError: A command built for the other protocol
                (no failure counted).
            InverterError: ``"Not connected"`` without a connection (no
                failure counted), otherwise the enriched failure.
        """
        if not self._connected or self._transport is None:
            raise enhance_error(InverterError(NOT_CONNECTED), self._context())
        if not self._config.host:
            raise enhance_error(
                ConfigurationError("Missing host: cannot send without a host"),
                self._context(),
            )

        if isinstance(command, ProtocolCommand):
            self._check_command(command)

        try:
            if not isinstance(command, ProtocolCommand):
                command = self._frame(bytes(command))
            response = await self._exchange(command)
            payload = command.parse(response)
        except (InverterError, OSError) as err:
            raise self._fail(err) from err

        self._consecutive_failures = 0
        self._last_error = None
        return payload

    def _backoff_delay(self, retry: int) -> float:
        """Delay in seconds before retry number *retry* (1-based)."""
        delay_ms = min(
            self._config.backoff_ms * (2 ** (retry - 1)),
            self._config.max_backoff_ms,
        )
        return delay_ms / 1000

    @staticmethod
    def _is_retryable(error: InverterError) -> bool:
        if isinstance(error, ConfigurationError) or error.message == NOT_CONNECTED:
            return False
        return error.code in RETRYABLE_CODES

    async def send_command_with_retry(self, command: ProtocolCommand | bytes) -> bytes:
        """Send *command*, retrying transient failures up to ``retries`` times.

        Emits ``reading`` before every attempt and ``retrying`` before every
        retry, sleeping ``min(backoff_ms * 2**(n-1), max_backoff_ms)`` before
        retry *n*.  Non-retryable failures surface immediately.

        Raises:
            InverterError: The last attempt's enriched error.
        """
        max_attempts = self._config.retries + 1
        last_error: InverterError | None = None

        for attempt in range(1, max_attempts + 1):
            if attempt > 1:
                delay = self._backoff_delay(attempt - 1)
                logger.warning(
                    "Backoff: sleeping %.1fs before retry %d/%d",
                    delay,
                    attempt - 1,
                    max_attempts - 1,
                )
                self._emit_status(
                    "retrying",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    message=last_error.message if last_error else None,
                )
                await asyncio.sleep(delay)

            self._emit_status("reading", attempt=attempt, max_attempts=max_attempts)
            try:
                return await self.send_command(command)
            except InverterError as err:
                last_error = err
                if not self._is_retryable(err):
                    break

        self._emit_status("error", message=last_error.message)
        raise last_error

    # -- Family-aware reads -------------------------------------------------------

    def _family_config(self) -> FamilyConfig:
        family_config = get_family_config(self._config.family)
        if family_config is None:
            raise enhance_error(
                InverterError(
                    f"Unsupported inverter family: {self._config.family}",
                    code=ErrorCode.UNSUPPORTED_FAMILY,
                ),
                self._context(),
            )
        if family_config.protocol == "aa55" and self._config.protocol != "udp":
            raise enhance_error(
                InverterError(
                    f"Inverter family {self._config.family} requires the udp protocol "
                    f"(configured: {self._config.protocol})",
                    code=ErrorCode.UNSUPPORTED_FAMILY,
                ),
                self._context(),
            )
        return family_config

    def _register_read(
        self, family_config: FamilyConfig, start_register: int, count: int
    ) -> ProtocolCommand:
        comm_addr = self._comm_addr(family_config)
        if self._config.protocol == "udp":
            return ModbusRtuReadCommand(comm_addr, start_register, count)
        return ModbusTcpReadCommand(comm_addr, start_register, count)

    def _read_failed(self, what: str, err: InverterError) -> InverterError:
        code = err.code if err.code not in (None, ErrorCode.UNKNOWN) else ErrorCode.READ_ERROR
        return enhance_error(
            InverterError(f"Failed to read {what}: {err.message}", code=code),
            self._context(),
        )

    async def read_device_info(self) -> DeviceInfo:
        """Read the inverter's identification block.  Connects on demand."""
        family_config = self._family_config()
        if not self._connected:
            await self.connect()

        try:
            if family_config.protocol == "aa55":
                payload = await self.send_command_with_retry(READ_DEVICE_INFO)
                decoded = decode_aa55_device_info(payload)
            else:
                command = self._register_read(
                    family_config,
                    family_config.device_info_start,
                    family_config.device_info_count,
                )
                payload = await self.send_command_with_retry(command)
                decoded = decode_modbus_device_info(payload)
        except ConfigurationError:
            raise
        except InverterError as err:
            raise self._read_failed("device info", err) from err

        info = DeviceInfo(**decoded)
        info.family = self._config.family
        return info

    async def read_runtime_data(
        self,
        sensor_id: str | None = None,
        sensors: Iterable[str] | None = None,
    ) -> RuntimeData:
        """Read and decode the family's runtime block.  Connects on demand.

        Args:
            sensor_id: Return only this sensor.
            sensors: Return only these sensors (ignored with *sensor_id*).

        Returns:
            ``{sensor_id: value}`` for the sensors the family reports.
        """
        family_config = self._family_config()
        if not self._connected:
            await self.connect()

        try:
            if family_config.protocol == "aa55":
                payload = await self.send_command_with_retry(READ_RUNNING_DATA)
                data = parse_sensor_data(
                    family_config.sensors,
                    payload,
                    three_phase=family_config.three_phase,
                )
            else:
                command = self._register_read(
                    family_config,
                    family_config.register_start,
                    family_config.register_count,
                )
                payload = await self.send_command_with_retry(command)
                data = parse_sensor_data(
                    family_config.sensors,
                    payload,
                    base_register=family_config.register_start,
                    three_phase=family_config.three_phase,
                )
        except ConfigurationError:
            raise
        except InverterError as err:
            raise self._read_failed("runtime data", err) from err

        return filter_sensors(data, sensor_id=sensor_id, sensors=sensors)
