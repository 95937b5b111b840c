"""
Agent server
One FastAPI app per pipeline step, its /run endpoint behind the resource gate
"""

import time
import uuid
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog

from agentflow.agents.operations import build_operation
from agentflow.agents.text_generation import TextGenerator
from agentflow.config import AgentFlowConfig
from agentflow.errors import FacilitatorError, UpstreamOperationFailed
from agentflow.gateway.resource_gate import Proceed, ResourceGate
from agentflow.payments.headers import PAYMENT_SIGNATURE_HEADER
from agentflow.payments.pricing import build_price_requirement
from agentflow.payments.verifier import PaymentVerifier

logger = structlog.get_logger()


def create_request_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


async def read_body(request: Request) -> Dict[str, Any]:
    """JSON body for POST, query parameters for GET"""
    if request.method == "GET":
        return dict(request.query_params)
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def create_agent_app(
    step: str,
    config: AgentFlowConfig,
    verifier: PaymentVerifier,
    generator: TextGenerator,
    pay_to: str,
) -> FastAPI:
    """
    Build the app for one agent.

    Args:
        step: research, analyst or writer
        config: Static configuration (price, timeouts, network)
        verifier: Verifies and settles payments (usually a FacilitatorClient)
        generator: Text generation collaborator
        pay_to: Seller wallet receiving the payment
    """
    app = FastAPI(title=f"AgentFlow {step.capitalize()} Agent", version="0.1.0")
    operation = build_operation(step, generator)
    gate = ResourceGate(
        requirement=build_price_requirement(config, step, pay_to),
        verifier=verifier,
        resource=config.agent_url(step),
        operation_timeout=config.agent_timeout_seconds,
        timeout_label=f"{step} agent",
    )
    app.state.gate = gate

    @app.get("/health")
    async def health():
        return {"status": "ok", "agent": step}

    @app.api_route("/run", methods=["GET", "POST"])
    async def run(request: Request):
        request_id = create_request_id(step)
        start = time.monotonic()
        body = await read_body(request)

        try:
            outcome = await gate.intercept(
                request.headers.get(PAYMENT_SIGNATURE_HEADER),
                lambda: operation(body),
            )
        except UpstreamOperationFailed as e:
            logger.error("agent_run_failed", agent=step, request_id=request_id, status=e.status_code, error=str(e))
            if e.status_code == 400:
                return JSONResponse(status_code=400, content={"error": str(e), "requestId": request_id})
            return JSONResponse(
                status_code=e.status_code,
                content={"error": f"{step} agent failed", "details": str(e), "requestId": request_id},
            )
        except FacilitatorError as e:
            logger.error("agent_facilitator_failed", agent=step, request_id=request_id, error=str(e))
            return JSONResponse(
                status_code=502,
                content={"error": "Payment facilitator unavailable", "details": str(e), "requestId": request_id},
            )

        if isinstance(outcome, Proceed):
            logger.info(
                "agent_run_completed",
                agent=step,
                request_id=request_id,
                duration_ms=int((time.monotonic() - start) * 1000),
            )
        return outcome.to_response()

    return app
