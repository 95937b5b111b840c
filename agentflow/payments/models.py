"""
x402-compliant payment models for AgentFlow
Wire names follow the x402 v2 headers; Python attributes are snake_case
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


X402_VERSION = 2

# Batched Gateway scheme understood by the verifying contract
GATEWAY_BATCHING_NAME = "GatewayWalletBatched"
GATEWAY_BATCHING_VERSION = "1"
GATEWAY_BATCHING_SCHEME = "exact"


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class RequirementExtra(WireModel):
    """EIP-712 domain details for the batched Gateway scheme"""
    name: str = GATEWAY_BATCHING_NAME
    version: str = GATEWAY_BATCHING_VERSION
    verifying_contract: str = Field(alias="verifyingContract")


class PriceRequirement(WireModel):
    """What a protected endpoint charges, and who gets paid"""
    scheme: str = Field(default=GATEWAY_BATCHING_SCHEME)
    network: str = Field(description="CAIP-2 network id, e.g. eip155:5042002")
    amount: str = Field(description="Amount in smallest unit (USDC has 6 decimals)")
    asset: str = Field(description="Token contract address")
    pay_to: str = Field(alias="payTo", description="Seller wallet address")
    max_timeout_seconds: int = Field(alias="maxTimeoutSeconds")
    extra: RequirementExtra

    @property
    def chain_id(self) -> int:
        return int(self.network.split(":", 1)[1])


class PaymentRequired(WireModel):
    """x402 Payment Required envelope (carried by the challenge header)"""
    x402_version: int = Field(default=X402_VERSION, alias="x402Version")
    error: Optional[str] = None
    resource: Optional[str] = None
    accepts: List[PriceRequirement]


class PaymentAuthorization(WireModel):
    """EIP-3009 TransferWithAuthorization message fields"""
    from_address: str = Field(alias="from")
    to: str
    value: str
    valid_after: str = Field(alias="validAfter")
    valid_before: str = Field(alias="validBefore")
    nonce: str


class SignedAuthorization(WireModel):
    authorization: PaymentAuthorization
    signature: str


class PaymentPayload(WireModel):
    """x402 payment submitted by the payer, bound to one requirement"""
    x402_version: int = Field(default=X402_VERSION, alias="x402Version")
    resource: Optional[str] = None
    accepted: PriceRequirement
    payload: SignedAuthorization

    @property
    def authorization(self) -> PaymentAuthorization:
        return self.payload.authorization

    @property
    def signature(self) -> str:
        return self.payload.signature


class VerifyResponse(WireModel):
    is_valid: bool = Field(alias="isValid")
    invalid_reason: Optional[str] = Field(default=None, alias="invalidReason")
    payer: Optional[str] = None


class SettlementResponse(WireModel):
    """Payment confirmation returned after settlement"""
    success: bool
    transaction: str = ""
    network: Optional[str] = None
    payer: Optional[str] = None
    error_reason: Optional[str] = Field(default=None, alias="errorReason")


def is_batch_requirement(requirement: PriceRequirement) -> bool:
    return (
        requirement.scheme == GATEWAY_BATCHING_SCHEME
        and requirement.extra.name == GATEWAY_BATCHING_NAME
        and requirement.extra.version == GATEWAY_BATCHING_VERSION
        and bool(requirement.extra.verifying_contract)
    )
