"""
Payment verification and settlement
The verifier is an external collaborator; this module defines its interface,
an HTTP client for a remote facilitator, and an in-process verifier that
simulates settlement (development and tests)
"""

import time
from typing import Callable, Optional, Protocol, Set, Tuple

import httpx
from pydantic import ValidationError
from web3 import Web3
import structlog

from agentflow.errors import FacilitatorError
from agentflow.payments.models import (
    PaymentPayload,
    PriceRequirement,
    SettlementResponse,
    VerifyResponse,
)
from agentflow.payments.signer import build_typed_data, recover_signer

logger = structlog.get_logger()


class PaymentVerifier(Protocol):
    async def verify(self, payload: PaymentPayload, requirement: PriceRequirement) -> VerifyResponse:
        ...

    async def settle(self, payload: PaymentPayload, requirement: PriceRequirement) -> SettlementResponse:
        ...


class LocalVerifier:
    """
    Verifies EIP-712 authorizations locally and simulates settlement.

    Nonces are tracked per payer so a payload is honored at most once.
    Nothing moves on-chain: the transaction reference is derived from the
    authorization, the way the testnet processor faked its tx hashes.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._used_nonces: Set[Tuple[str, str]] = set()

    def _check(self, payload: PaymentPayload, requirement: PriceRequirement) -> Optional[str]:
        """Return the reason the payload is unacceptable, or None"""
        if payload.accepted != requirement:
            return "requirement_mismatch"

        authorization = payload.authorization
        if authorization.to.lower() != requirement.pay_to.lower():
            return "recipient_mismatch"

        try:
            value = int(authorization.value)
            valid_after = int(authorization.valid_after)
            valid_before = int(authorization.valid_before)
        except ValueError:
            return "malformed_authorization"

        if value < int(requirement.amount):
            return f"insufficient_amount: got {value}, expected {requirement.amount}"

        now = int(self.clock())
        if valid_after > now:
            return "authorization_not_yet_valid"
        if valid_before <= now:
            return "authorization_expired"

        if self._nonce_key(payload) in self._used_nonces:
            return "nonce_already_used"

        try:
            typed_data = build_typed_data(requirement, authorization)
            recovered = recover_signer(typed_data, payload.signature)
        except Exception as e:
            logger.warning("signature_recovery_failed", error=str(e))
            return "invalid_signature"
        if recovered.lower() != authorization.from_address.lower():
            return "invalid_signature"

        return None

    @staticmethod
    def _nonce_key(payload: PaymentPayload) -> Tuple[str, str]:
        return payload.authorization.from_address.lower(), payload.authorization.nonce.lower()

    async def verify(self, payload: PaymentPayload, requirement: PriceRequirement) -> VerifyResponse:
        reason = self._check(payload, requirement)
        payer = payload.authorization.from_address
        if reason:
            logger.info("payment_verification_rejected", payer=payer, reason=reason)
            return VerifyResponse(is_valid=False, invalid_reason=reason, payer=payer)
        return VerifyResponse(is_valid=True, payer=payer)

    async def settle(self, payload: PaymentPayload, requirement: PriceRequirement) -> SettlementResponse:
        payer = payload.authorization.from_address
        # Re-checked here: the nonce may have been spent between verify and settle.
        reason = self._check(payload, requirement)
        if reason:
            logger.warning("payment_settlement_rejected", payer=payer, reason=reason)
            return SettlementResponse(
                success=False,
                network=requirement.network,
                payer=payer,
                error_reason=reason,
            )

        self._used_nonces.add(self._nonce_key(payload))
        tx_hash = Web3.to_hex(Web3.keccak(text=f"{payer.lower()}:{payload.authorization.nonce}"))

        logger.info(
            "payment_settlement_simulated",
            payer=payer,
            pay_to=requirement.pay_to,
            amount=requirement.amount,
            tx_hash=tx_hash,
        )
        return SettlementResponse(
            success=True,
            transaction=tx_hash,
            network=requirement.network,
            payer=payer,
        )


class FacilitatorClient:
    """Talks to a remote x402 facilitator over HTTP"""

    def __init__(self, base_url: str, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def _post(self, path: str, payload: PaymentPayload, requirement: PriceRequirement, model):
        body = {
            "paymentPayload": payload.to_wire(),
            "paymentRequirements": requirement.to_wire(),
        }
        try:
            response = await self.client.post(f"{self.base_url}{path}", json=body)
        except httpx.HTTPError as e:
            raise FacilitatorError(f"Facilitator unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise FacilitatorError(f"Facilitator returned non-JSON (HTTP {response.status_code})") from e

        if response.status_code >= 400:
            details = data.get("details") or data.get("error") if isinstance(data, dict) else data
            raise FacilitatorError(f"Facilitator {path} failed (HTTP {response.status_code}): {details}")

        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise FacilitatorError(f"Facilitator {path} returned an unexpected body") from e

    async def verify(self, payload: PaymentPayload, requirement: PriceRequirement) -> VerifyResponse:
        return await self._post("/v1/x402/verify", payload, requirement, VerifyResponse)

    async def settle(self, payload: PaymentPayload, requirement: PriceRequirement) -> SettlementResponse:
        return await self._post("/v1/x402/settle", payload, requirement, SettlementResponse)

    async def close(self):
        await self.client.aclose()
