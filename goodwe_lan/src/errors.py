"""
Error taxonomy, classification and enrichment for inverter communication.

Every failure that leaves the protocol handler is an :class:`InverterError`
carrying an immutable :class:`ErrorRecord`: a code from the fixed taxonomy,
a snapshot of the connection context and a non-empty list of remediation
suggestions.  Raw transport errors (timeouts, ICMP-derived ``OSError``s,
malformed frames) are translated here.

Operations:
- infer_error_code(err): Classify an exception into an :class:`ErrorCode`.
- enhance_error(err, context): Return a new enriched :class:`InverterError`.

CHANGELOG:
- 2026-03-14: Keep caller-supplied codes outside the taxonomy verbatim
- 2026-03-09: Map OSError errno values onto the taxonomy before message matching
- 2026-03-02: Return a new enriched error instead of mutating the original
- 2026-02-27: Initial creation (STORY-101)

TODO:
- None
"""

from __future__ import annotations

import errno
from collections.abc import Callable, Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------


class ErrorCode(StrEnum):
    """Fixed error taxonomy for inverter communication failures."""

    TIMEOUT = "TIMEOUT"
    ECONNREFUSED = "ECONNREFUSED"
    ECONNRESET = "ECONNRESET"
    EHOSTUNREACH = "EHOSTUNREACH"
    READ_ERROR = "READ_ERROR"
    PROTOCOL_ERROR = "PROTOCOL_ERROR"
    UNSUPPORTED_FAMILY = "UNSUPPORTED_FAMILY"
    UNKNOWN = "UNKNOWN"


SUPPORTED_FAMILIES_TEXT = "ET, EH, BT, BH, GEH, ES, EM, BP, DT, MS, D-NS, XS"

_ERRNO_CODES: dict[int, ErrorCode] = {
    errno.ECONNREFUSED: ErrorCode.ECONNREFUSED,
    errno.ECONNRESET: ErrorCode.ECONNRESET,
    errno.EHOSTUNREACH: ErrorCode.EHOSTUNREACH,
    errno.ENETUNREACH: ErrorCode.EHOSTUNREACH,
    errno.ETIMEDOUT: ErrorCode.TIMEOUT,
}
"""OS errno values that already identify a taxonomy code."""


def _normalize_code(code: ErrorCode | str) -> ErrorCode | str:
    # Codes outside the taxonomy are kept verbatim
    try:
        return ErrorCode(code)
    except ValueError:
        return str(code)


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


class ErrorContext(BaseModel):
    """Connection context snapshot attached to an enriched error.

    Attributes:
        host: Inverter address (or broadcast address for discovery).
        port: Inverter port.
        protocol: Configured protocol name (``udp``, ``tcp``, ``modbus``).
        family: Configured inverter family code.
        timeout: Response timeout in milliseconds.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    host: str | None = None
    port: int | None = None
    protocol: str | None = None
    family: str | None = None
    timeout: int | None = None


class ErrorRecord(BaseModel):
    """Immutable description of a single failure.

    Built once per failure by :func:`enhance_error`; never partially
    populated.
    """

    model_config = ConfigDict(frozen=True)

    message: str
    code: ErrorCode | str
    details: ErrorContext
    suggestions: tuple[str, ...]

    @field_validator("suggestions")
    @classmethod
    def suggestions_must_not_be_empty(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """An error record always carries at least one suggestion."""
        if not v:
            raise ValueError("suggestions must not be empty")
        return v


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class InverterError(Exception):
    """Base exception for all inverter communication failures.

    Args:
        message: Human-readable failure description.  ``str(err)`` returns
            exactly this text.
        code: Taxonomy code, or ``None`` to let :func:`enhance_error`
            infer it.  A code outside the taxonomy is kept as a plain
            string and gets the default suggestions.
        record: The enriched :class:`ErrorRecord`, set by
            :func:`enhance_error`.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode | str | None = None,
        record: ErrorRecord | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code: ErrorCode | str | None = _normalize_code(code) if code else None
        self.record = record

    @property
    def details(self) -> ErrorContext | None:
        """Context snapshot, or ``None`` when the error is not enriched."""
        return self.record.details if self.record else None

    @property
    def suggestions(self) -> tuple[str, ...]:
        """Remediation suggestions (empty until enriched)."""
        return self.record.suggestions if self.record else ()


class FrameError(InverterError):
    """A response frame failed header, length or checksum validation."""

    def __init__(
        self,
        message: str,
        code: ErrorCode | str | None = ErrorCode.PROTOCOL_ERROR,
        record: ErrorRecord | None = None,
    ) -> None:
        super().__init__(message, code, record)


class ConfigurationError(InverterError, ValueError):
    """Invalid connection configuration.  Never retried."""


# ---------------------------------------------------------------------------
# Suggestion generators
# ---------------------------------------------------------------------------


def _timeout_suggestions(ctx: ErrorContext) -> list[str]:
    suggestions = [
        f"Verify inverter at {ctx.host or 'configured address'} is powered on",
        "Check network connection to inverter",
        "Ensure inverter is on the same network segment",
    ]
    if ctx.timeout:
        suggestions.append(
            f"Try increasing timeout above {ctx.timeout}ms in configuration"
        )
    return suggestions


def _refused_suggestions(ctx: ErrorContext) -> list[str]:
    return [
        f"Verify inverter IP address {ctx.host or '(not set)'} is correct",
        f"Check that port {ctx.port or 8899} is accessible on the inverter",
        "Ensure no firewall is blocking the connection",
        "Try using UDP protocol if TCP is failing",
    ]


def _reset_suggestions(ctx: ErrorContext) -> list[str]:
    return [
        f"Connection to {ctx.host or 'inverter'} was reset",
        "The inverter may have dropped the connection",
        "Try reducing polling frequency to avoid overloading the inverter",
    ]


def _unreachable_suggestions(ctx: ErrorContext) -> list[str]:
    return [
        f"Host {ctx.host or 'inverter'} is unreachable",
        "Verify the inverter is on the same network",
        "Check your network routing and gateway settings",
        "Ensure the inverter's WiFi/LAN module is functioning",
    ]


def _read_error_suggestions(ctx: ErrorContext) -> list[str]:
    suggestions = [
        f"Check that the inverter at {ctx.host or 'configured address'} "
        "is responding to commands"
    ]
    if ctx.family:
        suggestions.append(
            f"Verify inverter family is set correctly (currently: {ctx.family})"
        )
    suggestions.append("Try power-cycling the inverter's communication module")
    return suggestions


def _protocol_error_suggestions(ctx: ErrorContext) -> list[str]:
    suggestions = ["The inverter response did not match the expected format"]
    if ctx.family:
        suggestions.append(
            f"Verify inverter family setting matches your model (currently: {ctx.family})"
        )
    if ctx.protocol:
        suggestions.append(f"Try a different protocol (currently: {ctx.protocol})")
    return suggestions


def _unsupported_family_suggestions(ctx: ErrorContext) -> list[str]:
    return [
        f'Inverter family "{ctx.family or "unknown"}" is not supported',
        f"Supported families: {SUPPORTED_FAMILIES_TEXT}",
        "Check the family setting in your connection configuration",
    ]


def _default_suggestions(ctx: ErrorContext) -> list[str]:
    suggestions = ["Check inverter power and network connectivity"]
    if ctx.host:
        suggestions.append(f"Verify inverter is reachable at {ctx.host}")
    return suggestions


SUGGESTION_GENERATORS: dict[ErrorCode, Callable[[ErrorContext], list[str]]] = {
    ErrorCode.TIMEOUT: _timeout_suggestions,
    ErrorCode.ECONNREFUSED: _refused_suggestions,
    ErrorCode.ECONNRESET: _reset_suggestions,
    ErrorCode.EHOSTUNREACH: _unreachable_suggestions,
    ErrorCode.READ_ERROR: _read_error_suggestions,
    ErrorCode.PROTOCOL_ERROR: _protocol_error_suggestions,
    ErrorCode.UNSUPPORTED_FAMILY: _unsupported_family_suggestions,
}
"""One generator per taxonomy code; ``UNKNOWN`` uses the default list."""


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def infer_error_code(err: BaseException) -> ErrorCode | str:
    """Classify *err* into the error taxonomy.

    A code already carried by the error is authoritative: a string ``code``
    attribute (kept verbatim even when it is not a taxonomy member), or the
    ``errno`` of an ``OSError`` that maps onto the taxonomy.  Otherwise the
    message is matched against known phrasings in priority order.

    Args:
        err: Any exception.

    Returns:
        The inferred :class:`ErrorCode` (``UNKNOWN`` when nothing matches),
        or the error's own non-taxonomy code string.
    """
    code = getattr(err, "code", None)
    if isinstance(code, str) and code:
        return _normalize_code(code)

    if isinstance(err, OSError) and err.errno in _ERRNO_CODES:
        return _ERRNO_CODES[err.errno]
    if isinstance(err, TimeoutError):
        return ErrorCode.TIMEOUT
    # Raised without an errno by asyncio transports on close
    if isinstance(err, ConnectionResetError):
        return ErrorCode.ECONNRESET
    if isinstance(err, ConnectionRefusedError):
        return ErrorCode.ECONNREFUSED

    msg = str(err).lower()

    if "timeout" in msg or "timed out" in msg:
        return ErrorCode.TIMEOUT
    if "econnrefused" in msg or "connection refused" in msg:
        return ErrorCode.ECONNREFUSED
    if "econnreset" in msg or "connection reset" in msg:
        return ErrorCode.ECONNRESET
    if "ehostunreach" in msg or "unreachable" in msg:
        return ErrorCode.EHOSTUNREACH
    if "unsupported" in msg and "family" in msg:
        return ErrorCode.UNSUPPORTED_FAMILY
    if "invalid" in msg and any(
        word in msg for word in ("response", "modbus", "aa55", "frame")
    ):
        return ErrorCode.PROTOCOL_ERROR

    return ErrorCode.UNKNOWN


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------


def _as_context(context: ErrorContext | Mapping[str, Any] | None) -> ErrorContext:
    if context is None:
        return ErrorContext()
    if isinstance(context, ErrorContext):
        return context
    return ErrorContext.model_validate(dict(context))


def enhance_error(
    err: BaseException,
    context: ErrorContext | Mapping[str, Any] | None,
) -> InverterError:
    """Build an enriched copy of *err* with code, details and suggestions.

    The original exception is left untouched.  A code it already carries is
    kept; otherwise one is inferred.  ``InverterError`` subclasses keep
    their type; any other exception becomes a plain :class:`InverterError`.

    Args:
        err: The failure to enrich.
        context: Connection context (``host``, ``port``, ``protocol``,
            ``family``, ``timeout``) as an :class:`ErrorContext` or mapping.

    Returns:
        A new :class:`InverterError` whose ``record`` is fully populated.
        Raise it ``from err`` to keep the original as ``__cause__``.
    """
    ctx = _as_context(context)
    code = infer_error_code(err)

    if isinstance(err, InverterError):
        message = err.message
        error_cls: type[InverterError] = type(err)
    else:
        message = str(err) or type(err).__name__
        error_cls = InverterError

    generator = SUGGESTION_GENERATORS.get(code, _default_suggestions)
    record = ErrorRecord(
        message=message,
        code=code,
        details=ctx,
        suggestions=tuple(generator(ctx)),
    )
    return error_cls(message, code=code, record=record)
