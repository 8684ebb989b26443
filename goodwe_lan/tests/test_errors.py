"""
Tests for the error classifier and enricher.

CHANGELOG:
- 2026-03-14: Add custom error code tests
- 2026-03-09: Add errno mapping tests
- 2026-02-27: Initial creation (STORY-101)

TODO:
- None
"""

from __future__ import annotations

import errno

import pytest

from goodwe_lan.src.errors import (
    SUGGESTION_GENERATORS,
    ConfigurationError,
    ErrorCode,
    ErrorContext,
    ErrorRecord,
    FrameError,
    InverterError,
    enhance_error,
    infer_error_code,
)

_CONTEXT = {
    "host": "192.168.1.100",
    "port": 8899,
    "protocol": "udp",
    "family": "ET",
    "timeout": 1000,
}

# ===========================================================================
# AC1: infer_error_code classifies by existing code, errno, type and message
# ===========================================================================


class TestInferErrorCode:
    """AC1: Error classification."""

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("Response timeout", ErrorCode.TIMEOUT),
            ("socket timed out", ErrorCode.TIMEOUT),
            ("connect ECONNREFUSED 10.0.0.1:8899", ErrorCode.ECONNREFUSED),
            ("Connection refused by peer", ErrorCode.ECONNREFUSED),
            ("read ECONNRESET", ErrorCode.ECONNRESET),
            ("Connection reset by peer", ErrorCode.ECONNRESET),
            ("connect EHOSTUNREACH 10.0.0.1", ErrorCode.EHOSTUNREACH),
            ("Network is unreachable", ErrorCode.EHOSTUNREACH),
            ("Unsupported inverter family: XYZ", ErrorCode.UNSUPPORTED_FAMILY),
            ("Invalid AA55 header", ErrorCode.PROTOCOL_ERROR),
            ("Invalid Modbus response", ErrorCode.PROTOCOL_ERROR),
            ("Invalid response frame", ErrorCode.PROTOCOL_ERROR),
            ("Something odd happened", ErrorCode.UNKNOWN),
        ],
    )
    def test_message_patterns(self, message: str, expected: ErrorCode) -> None:
        assert infer_error_code(Exception(message)) == expected

    def test_timeout_pattern_wins_over_later_patterns(self) -> None:
        """Patterns are checked in priority order."""
        err = Exception("timeout while reading invalid response")
        assert infer_error_code(err) == ErrorCode.TIMEOUT

    def test_existing_code_is_authoritative(self) -> None:
        err = InverterError("timeout text but protocol code", code=ErrorCode.PROTOCOL_ERROR)
        assert infer_error_code(err) == ErrorCode.PROTOCOL_ERROR

    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (ConnectionRefusedError(errno.ECONNREFUSED, "x"), ErrorCode.ECONNREFUSED),
            (ConnectionResetError(errno.ECONNRESET, "x"), ErrorCode.ECONNRESET),
            (OSError(errno.EHOSTUNREACH, "No route to host"), ErrorCode.EHOSTUNREACH),
            (OSError(errno.ENETUNREACH, "x"), ErrorCode.EHOSTUNREACH),
            (OSError(errno.ETIMEDOUT, "x"), ErrorCode.TIMEOUT),
        ],
    )
    def test_oserror_errno(self, exc: OSError, expected: ErrorCode) -> None:
        assert infer_error_code(exc) == expected

    def test_timeout_error_type(self) -> None:
        assert infer_error_code(TimeoutError()) == ErrorCode.TIMEOUT

    def test_connection_errors_without_errno(self) -> None:
        """asyncio raises these on close without setting errno."""
        assert infer_error_code(ConnectionResetError("Connection closed")) == ErrorCode.ECONNRESET
        assert infer_error_code(ConnectionRefusedError("nope")) == ErrorCode.ECONNREFUSED

    def test_frame_error_defaults_to_protocol_error(self) -> None:
        assert infer_error_code(FrameError("bad checksum")) == ErrorCode.PROTOCOL_ERROR


# ===========================================================================
# AC2: enhance_error builds a new, fully populated error
# ===========================================================================


class TestEnhanceError:
    """AC2: Error enrichment."""

    def test_timeout_enrichment(self) -> None:
        """Timeout errors get host and timeout-based suggestions."""
        original = InverterError("Response timeout")
        enriched = enhance_error(original, _CONTEXT)

        assert enriched.code == ErrorCode.TIMEOUT
        assert enriched.details.host == "192.168.1.100"
        assert enriched.details.timeout == 1000
        assert any("1000ms" in s for s in enriched.suggestions)
        assert any("192.168.1.100" in s for s in enriched.suggestions)

    def test_original_is_not_mutated(self) -> None:
        original = InverterError("Response timeout")
        enriched = enhance_error(original, _CONTEXT)

        assert enriched is not original
        assert original.code is None
        assert original.record is None

    def test_message_preserved(self) -> None:
        enriched = enhance_error(Exception("Connection refused"), _CONTEXT)
        assert str(enriched) == "Connection refused"
        assert enriched.message == "Connection refused"

    def test_existing_code_kept(self) -> None:
        original = InverterError("Response timeout", code=ErrorCode.READ_ERROR)
        assert enhance_error(original, _CONTEXT).code == ErrorCode.READ_ERROR

    def test_subclass_type_preserved(self) -> None:
        enriched = enhance_error(ConfigurationError("Unsupported protocol: x"), _CONTEXT)
        assert isinstance(enriched, ConfigurationError)
        assert isinstance(enriched, ValueError)

    def test_plain_exception_becomes_inverter_error(self) -> None:
        enriched = enhance_error(ConnectionResetError(errno.ECONNRESET, "reset"), None)
        assert type(enriched) is InverterError
        assert enriched.code == ErrorCode.ECONNRESET

    def test_empty_message_uses_type_name(self) -> None:
        enriched = enhance_error(TimeoutError(), _CONTEXT)
        assert enriched.message == "TimeoutError"
        assert enriched.code == ErrorCode.TIMEOUT

    def test_unknown_code_gets_default_suggestions(self) -> None:
        enriched = enhance_error(Exception("mystery"), _CONTEXT)
        assert enriched.code == ErrorCode.UNKNOWN
        assert enriched.suggestions[0] == "Check inverter power and network connectivity"
        assert "Verify inverter is reachable at 192.168.1.100" in enriched.suggestions

    def test_default_suggestions_without_host_are_not_empty(self) -> None:
        enriched = enhance_error(Exception("mystery"), {})
        assert len(enriched.suggestions) >= 1

    def test_accepts_error_context(self) -> None:
        ctx = ErrorContext(host="10.0.0.5", port=502, protocol="tcp")
        enriched = enhance_error(Exception("ECONNREFUSED"), ctx)
        assert enriched.details == ctx
        assert any("502" in s for s in enriched.suggestions)

    def test_reenhancing_resnapshots_context(self) -> None:
        first = enhance_error(Exception("Response timeout"), {"host": "a"})
        second = enhance_error(first, {"host": "b"})
        assert second.code == ErrorCode.TIMEOUT
        assert second.details.host == "b"

    def test_unsupported_family_suggestions(self) -> None:
        enriched = enhance_error(
            Exception("Unsupported inverter family: XYZ"), {"family": "XYZ"}
        )
        assert enriched.suggestions[0] == 'Inverter family "XYZ" is not supported'
        assert any("Supported families:" in s for s in enriched.suggestions)

    def test_protocol_error_mentions_protocol(self) -> None:
        enriched = enhance_error(FrameError("Invalid AA55 checksum"), _CONTEXT)
        assert "Try a different protocol (currently: udp)" in enriched.suggestions


# ===========================================================================
# AC3: Suggestion generators and the record value type
# ===========================================================================


class TestSuggestionGenerators:
    """AC3: Every generator references the context it is given."""

    @pytest.mark.parametrize("code", list(SUGGESTION_GENERATORS))
    def test_generator_interpolates_context(self, code: ErrorCode) -> None:
        ctx = ErrorContext(**_CONTEXT)
        suggestions = SUGGESTION_GENERATORS[code](ctx)
        assert suggestions
        fields = ("192.168.1.100", "1000ms", "ET", "udp", "8899")
        assert any(field in s for s in suggestions for field in fields)

    def test_unknown_has_no_dedicated_generator(self) -> None:
        assert ErrorCode.UNKNOWN not in SUGGESTION_GENERATORS

    def test_record_rejects_empty_suggestions(self) -> None:
        with pytest.raises(ValueError):
            ErrorRecord(
                message="x",
                code=ErrorCode.UNKNOWN,
                details=ErrorContext(),
                suggestions=(),
            )

    def test_record_is_frozen(self) -> None:
        record = enhance_error(Exception("x"), _CONTEXT).record
        with pytest.raises(ValueError):
            record.message = "changed"


# ===========================================================================
# AC4: Codes outside the taxonomy are kept
# ===========================================================================


class TestCustomCodes:
    """AC4: A caller-supplied code is never rejected or replaced."""

    def test_constructor_accepts_custom_code(self) -> None:
        err = InverterError("Bad setting value", code="VALIDATION_ERROR")
        assert err.code == "VALIDATION_ERROR"
        assert not isinstance(err.code, ErrorCode)

    def test_known_code_string_becomes_enum(self) -> None:
        err = InverterError("late", code="TIMEOUT")
        assert err.code is ErrorCode.TIMEOUT

    def test_enhance_keeps_custom_code(self) -> None:
        original = InverterError("Bad setting value", code="VALIDATION_ERROR")
        enriched = enhance_error(original, _CONTEXT)

        assert enriched.code == "VALIDATION_ERROR"
        assert enriched.record.code == "VALIDATION_ERROR"
        assert enriched.suggestions[0] == "Check inverter power and network connectivity"
        assert original.record is None

    def test_custom_code_wins_over_message(self) -> None:
        # The message alone would classify as TIMEOUT
        err = InverterError("Response timeout after 1000ms", code="GATEWAY_BUSY")
        assert infer_error_code(err) == "GATEWAY_BUSY"

    def test_foreign_exception_code_kept(self) -> None:
        class LookupFailure(Exception):
            code = "ENOTFOUND"

        enriched = enhance_error(LookupFailure("getaddrinfo failed"), _CONTEXT)
        assert enriched.code == "ENOTFOUND"
        assert enriched.suggestions

    def test_non_string_code_attribute_ignored(self) -> None:
        err = SystemExit(2)
        assert infer_error_code(err) == ErrorCode.UNKNOWN
