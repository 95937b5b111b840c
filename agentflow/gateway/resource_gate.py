"""
Resource Gate
Puts one protected operation behind an x402 payment challenge
"""

import asyncio
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from fastapi.responses import JSONResponse
import structlog

from agentflow.errors import (
    InvalidOperationInput,
    PaymentProtocolError,
    StepTimeout,
    UpstreamOperationFailed,
    error_message,
)
from agentflow.payments.headers import (
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_RESPONSE_HEADER,
    decode_payment_payload,
    encode_payment_required,
    encode_settlement,
)
from agentflow.payments.models import PaymentRequired, PriceRequirement, SettlementResponse
from agentflow.payments.verifier import PaymentVerifier

logger = structlog.get_logger()

Operation = Callable[[], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class Challenge:
    """402 answer: pay first. Carries the requirement and, after a bad payment, why"""
    payment_required: PaymentRequired

    @property
    def status_code(self) -> int:
        return 402

    @property
    def headers(self) -> Dict[str, str]:
        return {PAYMENT_REQUIRED_HEADER: encode_payment_required(self.payment_required)}

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.payment_required.to_wire(),
            headers=self.headers,
        )


@dataclass(frozen=True)
class Proceed:
    """Paid and settled; the operation result is released"""
    result: Dict[str, Any]
    settlement: SettlementResponse

    @property
    def status_code(self) -> int:
        return 200

    @property
    def headers(self) -> Dict[str, str]:
        return {PAYMENT_RESPONSE_HEADER: encode_settlement(self.settlement)}

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.result, headers=self.headers)


GateOutcome = Union[Challenge, Proceed]


class ResourceGate:
    """
    Decides challenge vs. verify-then-invoke-then-settle for one operation.

    Ordering:
    1. No payment header: challenge, operation never runs
    2. Payment fails verification: challenge with reason, operation never runs
    3. Operation runs; if it raises, nothing is settled (payer is not charged)
    4. Settlement happens only after a known-good result, before the response
    """

    def __init__(
        self,
        requirement: PriceRequirement,
        verifier: PaymentVerifier,
        resource: Optional[str] = None,
        operation_timeout: Optional[float] = None,
        timeout_label: str = "operation",
    ):
        self.requirement = requirement
        self.verifier = verifier
        self.resource = resource
        self.operation_timeout = operation_timeout
        self.timeout_label = timeout_label
        self._pending_settlements: Set[asyncio.Future] = set()

    def challenge(self, error: Optional[str] = None) -> Challenge:
        return Challenge(
            PaymentRequired(
                error=error,
                resource=self.resource,
                accepts=[self.requirement],
            )
        )

    async def intercept(self, payment_header: Optional[str], operation: Operation) -> GateOutcome:
        if not payment_header:
            return self.challenge()

        try:
            payload = decode_payment_payload(payment_header)
        except PaymentProtocolError as e:
            logger.info("payment_header_rejected", resource=self.resource, error=str(e))
            return self.challenge(error="invalid_payment_header")

        verification = await self.verifier.verify(payload, self.requirement)
        if not verification.is_valid:
            logger.info(
                "payment_verification_failed",
                resource=self.resource,
                payer=verification.payer,
                reason=verification.invalid_reason,
            )
            return self.challenge(error=verification.invalid_reason or "verification_failed")

        result = await self._invoke(operation)

        # A client disconnect must not abort a settlement that was already requested.
        settle_task = asyncio.ensure_future(self.verifier.settle(payload, self.requirement))
        self._pending_settlements.add(settle_task)
        settle_task.add_done_callback(self._pending_settlements.discard)
        try:
            settlement = await asyncio.shield(settle_task)
        except asyncio.CancelledError:
            settle_task.add_done_callback(partial(self._collect_detached_settlement, verification.payer))
            raise
        if not settlement.success:
            logger.error(
                "payment_settlement_failed",
                resource=self.resource,
                payer=verification.payer,
                reason=settlement.error_reason,
            )
            return self.challenge(error=f"settlement_failed: {settlement.error_reason or 'unknown'}")

        logger.info(
            "payment_settled",
            resource=self.resource,
            payer=settlement.payer,
            tx=settlement.transaction,
            amount=self.requirement.amount,
        )
        return Proceed(result=result, settlement=settlement)

    @property
    def pending_settlements(self) -> int:
        return len(self._pending_settlements)

    def _collect_detached_settlement(self, payer: Optional[str], task: "asyncio.Future[SettlementResponse]"):
        """Outcome of a settlement whose request went away while it ran"""
        if task.cancelled():
            logger.error("payment_settlement_cancelled", resource=self.resource, payer=payer)
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "payment_settlement_failed",
                resource=self.resource,
                payer=payer,
                reason=error_message(error),
                detached=True,
            )
            return
        settlement = task.result()
        if not settlement.success:
            logger.error(
                "payment_settlement_failed",
                resource=self.resource,
                payer=payer,
                reason=settlement.error_reason,
                detached=True,
            )
            return
        logger.info(
            "payment_settled",
            resource=self.resource,
            payer=settlement.payer,
            tx=settlement.transaction,
            amount=self.requirement.amount,
            detached=True,
        )

    async def _invoke(self, operation: Operation) -> Dict[str, Any]:
        try:
            if self.operation_timeout:
                return await asyncio.wait_for(operation(), timeout=self.operation_timeout)
            return await operation()
        except asyncio.TimeoutError as e:
            timeout = StepTimeout(self.timeout_label, self.operation_timeout)
            logger.error("protected_operation_timed_out", resource=self.resource, seconds=self.operation_timeout)
            raise UpstreamOperationFailed(str(timeout), status_code=504) from e
        except StepTimeout as e:
            logger.error("protected_operation_timed_out", resource=self.resource, error=str(e))
            raise UpstreamOperationFailed(str(e), status_code=504) from e
        except InvalidOperationInput as e:
            raise UpstreamOperationFailed(str(e), status_code=400) from e
        except Exception as e:
            logger.error("protected_operation_failed", resource=self.resource, error=error_message(e))
            raise UpstreamOperationFailed(error_message(e), status_code=500) from e
