"""Unit tests for the error taxonomy and its HTTP mapping."""

import pytest

from paygate.api.exceptions import get_http_status_for_error
from paygate.models.errors import (
    ConfigurationError,
    ErrorCode,
    LedgerConflict,
    PayloadMalformed,
    PaymentGatewayError,
    ProviderError,
    RecordNotFound,
    SignatureInvalid,
    StatusMappingError,
    TransportError,
    is_retryable,
    user_message,
)


class TestErrorDetail:
    def test_default_message_comes_from_code(self) -> None:
        error = RecordNotFound()

        assert error.message == "No matching payment or subscription record"
        assert str(error) == error.message

    def test_detail_drops_empty_fields(self) -> None:
        error = ProviderError("Declined", provider="stripe", provider_code="card_declined")

        detail = error.to_detail()

        assert detail.success is False
        assert detail.error_code == "ERR_PROVIDER"
        assert detail.message == "Declined"
        assert detail.details == {"provider": "stripe", "provider_code": "card_declined"}

    def test_detail_without_context(self) -> None:
        assert SignatureInvalid("bad").to_detail().details is None

    def test_subclasses_carry_their_codes(self) -> None:
        assert ConfigurationError().code == ErrorCode.CONFIGURATION
        assert TransportError("x").code == ErrorCode.PROVIDER_UNAVAILABLE
        assert StatusMappingError("x").code == ErrorCode.UNMAPPED_STATUS
        assert PayloadMalformed().code == ErrorCode.MALFORMED_WEBHOOK_PAYLOAD
        assert LedgerConflict().code == ErrorCode.LEDGER_CONFLICT
        assert isinstance(TransportError("x"), ProviderError)


class TestUserMessage:
    def test_known_decline_code(self) -> None:
        error = ProviderError("raw", provider_code="insufficient_funds")

        assert "insufficient funds" in user_message(error)

    def test_unknown_code_falls_back_to_generic(self) -> None:
        error = ProviderError("raw", provider_code="something_new")

        assert user_message(error) == "The payment provider rejected the request"

    def test_non_provider_error(self) -> None:
        assert user_message(LedgerConflict("x")) == "The change conflicts with the recorded state"


class TestRetryable:
    def test_transport_errors_are_retryable(self) -> None:
        assert is_retryable(TransportError("timeout"))

    def test_processing_error_is_retryable(self) -> None:
        assert is_retryable(ProviderError("x", provider_code="processing_error"))

    def test_decline_is_not_retryable(self) -> None:
        assert not is_retryable(ProviderError("x", provider_code="card_declined"))
        assert not is_retryable(LedgerConflict("x"))


class TestHttpStatus:
    @pytest.mark.parametrize(
        "error,status",
        [
            (ConfigurationError(), 503),
            (ProviderError("declined", http_status=402), 402),
            (ProviderError("no status"), 402),
            (ProviderError("boom", http_status=500), 502),
            (TransportError("timeout"), 504),
            (StatusMappingError("odd"), 502),
            (SignatureInvalid(), 400),
            (PayloadMalformed(), 400),
            (LedgerConflict(), 409),
            (RecordNotFound(), 404),
        ],
    )
    def test_mapping(self, error: PaymentGatewayError, status: int) -> None:
        assert get_http_status_for_error(error) == status
