"""
AgentFlow Payment Module
x402 protocol implementation for USDC micropayments on Arc
"""

from agentflow.payments.models import (
    PaymentRequired,
    PriceRequirement,
    RequirementExtra,
    PaymentPayload,
    PaymentAuthorization,
    SignedAuthorization,
    SettlementResponse,
    VerifyResponse,
)
from agentflow.payments.pricing import (
    build_price_requirement,
    format_price,
    to_minor_units,
    total_price,
    USDC_DECIMALS,
)
from agentflow.payments.signer import LocalAccountSigner, Signer
from agentflow.payments.verifier import FacilitatorClient, LocalVerifier, PaymentVerifier

__all__ = [
    "PaymentRequired",
    "PriceRequirement",
    "RequirementExtra",
    "PaymentPayload",
    "PaymentAuthorization",
    "SignedAuthorization",
    "SettlementResponse",
    "VerifyResponse",
    "build_price_requirement",
    "format_price",
    "to_minor_units",
    "total_price",
    "USDC_DECIMALS",
    "LocalAccountSigner",
    "Signer",
    "FacilitatorClient",
    "LocalVerifier",
    "PaymentVerifier",
]
