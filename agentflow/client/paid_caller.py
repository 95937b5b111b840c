"""
Paid Caller
Client side of the x402 exchange: probe, sign the challenge, retry once
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import httpx
import structlog

from agentflow.errors import (
    ChallengeMismatch,
    PaymentProtocolError,
    PaymentRequestError,
    SettlementFailed,
    StepTimeout,
    UpstreamOperationFailed,
    VerificationFailed,
)
from agentflow.payments.headers import (
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PAYMENT_SIGNATURE_HEADER,
    decode_payment_required,
    decode_settlement,
    encode_payment_payload,
)
from agentflow.payments.models import (
    PaymentPayload,
    PaymentRequired,
    PriceRequirement,
    SignedAuthorization,
    is_batch_requirement,
)
from agentflow.payments.signer import Signer, build_authorization, build_typed_data

logger = structlog.get_logger()


@dataclass
class PaidResult:
    """Outcome of one paid call"""
    data: Any
    status: int
    transaction: Optional[str] = None


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return response.text


def _details(data: Any) -> str:
    return data if isinstance(data, str) else json.dumps(data)


class PaidCaller:
    """
    Calls endpoints guarded by an x402 challenge.

    A call is at most two requests: an unpaid probe and, if challenged,
    one retry carrying a freshly signed single-use authorization. A second
    402 is a hard failure; the caller never re-signs.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        chain_id: int,
        verifying_contract: Optional[str] = None,
        clock_skew_seconds: int = 600,
        signature_timeout_seconds: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.chain_id = chain_id
        self.verifying_contract = verifying_contract
        self.clock_skew_seconds = clock_skew_seconds
        self.signature_timeout_seconds = signature_timeout_seconds
        self.clock = clock

    def select_requirement(self, accepts: List[PriceRequirement]) -> PriceRequirement:
        """First batched Gateway option on the expected network and contract"""
        network = f"eip155:{self.chain_id}"
        for requirement in accepts:
            if requirement.network != network or not is_batch_requirement(requirement):
                continue
            if (
                self.verifying_contract
                and requirement.extra.verifying_contract.lower() != self.verifying_contract.lower()
            ):
                continue
            return requirement
        raise ChallengeMismatch(f"No GatewayWalletBatched payment option found for {network}.")

    async def pay(
        self,
        endpoint: str,
        body: dict,
        signer: Signer,
        on_await_signature: Optional[Callable[[], None]] = None,
    ) -> PaidResult:
        """
        POST `body` to `endpoint`, paying if challenged.

        Args:
            endpoint: Protected URL
            body: JSON request body, sent unchanged on both attempts
            signer: Produces the EIP-712 signature for the payer
            on_await_signature: Called right before the signer is asked

        Returns:
            PaidResult with the response data and the settlement transaction
        """
        response = await self.client.post(endpoint, json=body)

        if response.status_code != 402:
            data = _parse_body(response)
            if response.is_error:
                self._raise_for_status(response, data, "Agent call failed")
            return PaidResult(data=data, status=response.status_code, transaction=self._transaction(response))

        encoded_challenge = response.headers.get(PAYMENT_REQUIRED_HEADER)
        if not encoded_challenge:
            raise PaymentProtocolError("Missing PAYMENT-REQUIRED header in 402 response.")
        payment_required = decode_payment_required(encoded_challenge)
        requirement = self.select_requirement(payment_required.accepts)

        payload = await self._sign(payment_required, requirement, signer, on_await_signature)

        paid = await self.client.post(
            endpoint,
            json=body,
            headers={PAYMENT_SIGNATURE_HEADER: encode_payment_payload(payload)},
        )
        paid_data = _parse_body(paid)

        if paid.status_code == 402:
            reason = self._rejection_reason(paid, paid_data)
            logger.warning("paid_retry_rejected", endpoint=endpoint, reason=reason)
            if reason.startswith("settlement"):
                raise SettlementFailed(f"Payment settlement failed: {reason}")
            raise VerificationFailed(f"Payment rejected: {reason}")
        if paid.is_error:
            self._raise_for_status(paid, paid_data, "Payment retry failed")

        transaction = self._transaction(paid)
        logger.info(
            "paid_call_completed",
            endpoint=endpoint,
            amount=requirement.amount,
            payer=signer.address,
            tx=transaction,
        )
        return PaidResult(data=paid_data, status=paid.status_code, transaction=transaction)

    async def _sign(
        self,
        payment_required: PaymentRequired,
        requirement: PriceRequirement,
        signer: Signer,
        on_await_signature: Optional[Callable[[], None]],
    ) -> PaymentPayload:
        authorization = build_authorization(
            requirement,
            payer=signer.address,
            now=int(self.clock()),
            clock_skew_seconds=self.clock_skew_seconds,
        )
        typed_data = build_typed_data(requirement, authorization)

        if on_await_signature:
            on_await_signature()
        try:
            signature = await asyncio.wait_for(
                signer.sign_typed_data(typed_data),
                timeout=self.signature_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise StepTimeout("Signature", self.signature_timeout_seconds) from e

        return PaymentPayload(
            x402_version=payment_required.x402_version,
            resource=payment_required.resource,
            accepted=requirement,
            payload=SignedAuthorization(authorization=authorization, signature=signature),
        )

    @staticmethod
    def _transaction(response: httpx.Response) -> Optional[str]:
        encoded = response.headers.get(PAYMENT_RESPONSE_HEADER)
        if not encoded:
            return None
        return decode_settlement(encoded).transaction or None

    @staticmethod
    def _rejection_reason(response: httpx.Response, data: Any) -> str:
        encoded = response.headers.get(PAYMENT_REQUIRED_HEADER)
        if encoded:
            try:
                error = decode_payment_required(encoded).error
                if error:
                    return error
            except PaymentProtocolError:
                pass
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return "payment_rejected"

    @staticmethod
    def _raise_for_status(response: httpx.Response, data: Any, prefix: str):
        message = f"{prefix} with status {response.status_code}: {_details(data)}"
        if response.status_code >= 500:
            raise UpstreamOperationFailed(message, status_code=response.status_code, body=data)
        raise PaymentRequestError(message, status_code=response.status_code, body=data)
