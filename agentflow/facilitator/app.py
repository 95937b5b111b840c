"""
Facilitator server
HTTP facade over a payment verifier, spoken to by the agents' FacilitatorClient
"""

from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
import structlog

from agentflow.agents.app import create_request_id
from agentflow.config import AgentFlowConfig
from agentflow.errors import error_message
from agentflow.payments.models import (
    GATEWAY_BATCHING_NAME,
    GATEWAY_BATCHING_SCHEME,
    GATEWAY_BATCHING_VERSION,
    PaymentPayload,
    PriceRequirement,
    X402_VERSION,
    is_batch_requirement,
)
from agentflow.payments.verifier import PaymentVerifier

logger = structlog.get_logger()


def _parse_payment_body(body: Any) -> Tuple[Optional[PaymentPayload], Optional[PriceRequirement], Optional[str]]:
    """Split a verify/settle body into its two models, or an error message"""
    if not isinstance(body, dict) or not body.get("paymentPayload") or not body.get("paymentRequirements"):
        return None, None, "Missing payment data"
    try:
        payload = PaymentPayload.model_validate(body["paymentPayload"])
        requirement = PriceRequirement.model_validate(body["paymentRequirements"])
    except ValidationError:
        return None, None, "Malformed payment data"
    if not is_batch_requirement(requirement):
        return None, None, "Only Gateway batched payments are supported"
    return payload, requirement, None


def create_facilitator_app(config: AgentFlowConfig, verifier: PaymentVerifier) -> FastAPI:
    app = FastAPI(title="AgentFlow Facilitator", version="0.1.0")

    async def handle(request: Request, action: str) -> JSONResponse:
        request_id = create_request_id(action)
        try:
            body = await request.json()
        except ValueError:
            body = None

        payload, requirement, problem = _parse_payment_body(body)
        if problem:
            return JSONResponse(status_code=400, content={"error": problem, "requestId": request_id})

        try:
            if action == "verify":
                result = await verifier.verify(payload, requirement)
                if not result.is_valid:
                    logger.warning("facilitator_verify_failed", request_id=request_id, reason=result.invalid_reason)
            else:
                result = await verifier.settle(payload, requirement)
                if not result.success:
                    logger.warning("facilitator_settle_failed", request_id=request_id, reason=result.error_reason)
        except Exception as e:
            logger.error(f"facilitator_{action}_error", request_id=request_id, error=error_message(e))
            return JSONResponse(
                status_code=500,
                content={
                    "error": f"Internal error during {action}",
                    "details": error_message(e),
                    "requestId": request_id,
                },
            )
        return JSONResponse(content=result.to_wire())

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/v1/x402/supported")
    async def supported() -> Dict[str, Any]:
        return {
            "kinds": [
                {
                    "x402Version": X402_VERSION,
                    "scheme": GATEWAY_BATCHING_SCHEME,
                    "network": config.network,
                    "extra": {
                        "name": GATEWAY_BATCHING_NAME,
                        "version": GATEWAY_BATCHING_VERSION,
                        "verifyingContract": config.verifying_contract,
                    },
                }
            ]
        }

    @app.post("/v1/x402/verify")
    async def verify(request: Request):
        return await handle(request, "verify")

    @app.post("/v1/x402/settle")
    async def settle(request: Request):
        return await handle(request, "settle")

    return app
