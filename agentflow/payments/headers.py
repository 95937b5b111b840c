"""
Header codecs for the x402 challenge / payment / settlement exchange
All three headers carry base64-encoded JSON
"""

import base64
import binascii
from typing import Type, TypeVar

from pydantic import BaseModel, ValidationError

from agentflow.errors import PaymentProtocolError
from agentflow.payments.models import PaymentPayload, PaymentRequired, SettlementResponse


PAYMENT_REQUIRED_HEADER = "PAYMENT-REQUIRED"
PAYMENT_SIGNATURE_HEADER = "PAYMENT-SIGNATURE"
PAYMENT_RESPONSE_HEADER = "PAYMENT-RESPONSE"

_M = TypeVar("_M", bound=BaseModel)


def _encode(model: BaseModel) -> str:
    return base64.b64encode(
        model.model_dump_json(by_alias=True, exclude_none=True).encode()
    ).decode()


def _decode(encoded: str, model: Type[_M], header: str) -> _M:
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode()
        return model.model_validate_json(decoded)
    except (binascii.Error, UnicodeDecodeError, ValidationError, ValueError) as e:
        raise PaymentProtocolError(f"Malformed {header} header: {e}") from e


def encode_payment_required(payment_required: PaymentRequired) -> str:
    """Encode PaymentRequired as base64 for HTTP header"""
    return _encode(payment_required)


def decode_payment_required(encoded: str) -> PaymentRequired:
    """Decode base64 PaymentRequired from HTTP header"""
    return _decode(encoded, PaymentRequired, PAYMENT_REQUIRED_HEADER)


def encode_payment_payload(payment_payload: PaymentPayload) -> str:
    """Encode PaymentPayload as base64 for HTTP header"""
    return _encode(payment_payload)


def decode_payment_payload(encoded: str) -> PaymentPayload:
    """Decode base64 PaymentPayload from HTTP header"""
    return _decode(encoded, PaymentPayload, PAYMENT_SIGNATURE_HEADER)


def encode_settlement(settlement: SettlementResponse) -> str:
    return _encode(settlement)


def decode_settlement(encoded: str) -> SettlementResponse:
    return _decode(encoded, SettlementResponse, PAYMENT_RESPONSE_HEADER)
