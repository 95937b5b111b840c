"""
AgentFlow Public API
Health, balances, manifest, the streamed pipeline run and a pass-through to the paid agents
"""

import asyncio
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
import httpx
from pydantic import BaseModel, ConfigDict, Field
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import structlog
from web3 import Web3

from agentflow.config import AgentFlowConfig
from agentflow.errors import error_message
from agentflow.orchestrator.models import PIPELINE_ORDER
from agentflow.payments.balance import UsdcBalanceReader, format_usdc
from agentflow.payments.headers import (
    PAYMENT_REQUIRED_HEADER,
    PAYMENT_RESPONSE_HEADER,
    PAYMENT_SIGNATURE_HEADER,
)
from agentflow.payments.pricing import format_price
from agentflow.server.dependencies import create_limiter
from agentflow.server.progress import ProgressPublisher

logger = structlog.get_logger()

AGENT_STEPS = [step.value for step in PIPELINE_ORDER]


class RunRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    task: Optional[str] = None
    user_address: Optional[str] = Field(default=None, alias="userAddress")


class X402Manifest(BaseModel):
    """x402 protocol manifest"""
    version: str = "2"
    name: str = "AgentFlow"
    description: str = "Pay-per-step research pipeline for the agentic economy"
    payment_methods: List[str] = ["x402-usdc-gateway-batched"]
    supported_networks: List[str]
    prices: Dict[str, str]
    endpoints: Dict[str, str]


async def _probe(client: httpx.AsyncClient, url: str, timeout: float, accept_payment_required: bool) -> bool:
    try:
        response = await client.get(url, timeout=timeout)
    except httpx.HTTPError:
        return False
    if accept_payment_required and response.status_code == 402:
        return True
    if not response.is_success:
        return False
    if accept_payment_required:
        return True
    try:
        return response.json().get("status") == "ok"
    except ValueError:
        return False


def create_app(
    config: AgentFlowConfig,
    publisher: ProgressPublisher,
    http_client: httpx.AsyncClient,
    balance_reader: Optional[UsdcBalanceReader] = None,
) -> FastAPI:
    app = FastAPI(
        title="AgentFlow",
        description="Research, analysis and writing agents paid per call over x402",
        version="0.1.0",
    )
    balance_reader = balance_reader or UsdcBalanceReader.from_config(config)
    limiter = create_limiter()
    app.state.limiter = limiter
    app.state.publisher = publisher
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=config.cors_origin_regex,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[PAYMENT_REQUIRED_HEADER, PAYMENT_RESPONSE_HEADER],
    )

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {
            "status": "ok",
            "agents": AGENT_STEPS,
            "network": config.network_name,
            "chainId": config.chain_id,
        }

    @app.get("/health/stack")
    async def stack_health():
        """Facilitator answers ok; each agent answers with a challenge or ok"""
        timeout = config.health_timeout_seconds
        checks = await asyncio.gather(
            _probe(http_client, f"{config.facilitator_url}/health", timeout, False),
            *(_probe(http_client, config.agent_url(step), timeout, True) for step in AGENT_STEPS),
        )
        result = {"facilitator": checks[0]}
        result.update(dict(zip(AGENT_STEPS, checks[1:])))
        return {"ok": all(checks), **result}

    @app.get("/balance")
    @app.get("/gateway-balance")
    async def get_balance(address: Optional[str] = None):
        """USDC balance of `address`, or of the wallet that pays for /run"""
        if address and not Web3.is_address(address):
            return JSONResponse(status_code=400, content={"error": "Invalid address query parameter."})
        target = Web3.to_checksum_address(address) if address else publisher.orchestrator.signer.address

        try:
            balance = format_usdc(await balance_reader.balance_of(target))
        except Exception as e:
            logger.error("balance_lookup_failed", address=target, error=error_message(e))
            return JSONResponse(status_code=500, content={"error": error_message(e)})

        return {
            "address": target,
            "balance": balance,
            "formatted": balance,
            "total": balance,
            "network": config.network_name,
            "chainId": config.chain_id,
        }

    @app.get("/x402.json", response_model=X402Manifest)
    async def get_x402_manifest():
        """
        x402 protocol manifest
        Machine-readable description of what is paid for, and how much
        """
        return X402Manifest(
            supported_networks=[config.network],
            prices={step: format_price(config.price_for(step)) for step in AGENT_STEPS},
            endpoints={
                "run": "/run",
                "balance": "/balance",
                **{step: f"/agent/{step}/run" for step in AGENT_STEPS},
            },
        )

    @app.post("/run")
    @limiter.limit(config.run_rate_limit)
    async def run_pipeline(request: Request, body: RunRequest):
        """Stream pipeline progress as server-sent events"""
        logger.info("run_requested", task_length=len(body.task or ""), user_address=body.user_address)
        frames = publisher.subscribe(body.task, request.is_disconnected, body.user_address)
        return StreamingResponse(
            frames,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    @app.post("/agent/{step}/run")
    async def proxy_agent(step: str, request: Request):
        """Forward a (possibly paid) call to one agent without touching the exchange"""
        if step not in AGENT_STEPS:
            return JSONResponse(status_code=404, content={"error": f"Unknown agent: {step}"})

        headers = {"Content-Type": request.headers.get("content-type", "application/json")}
        payment = request.headers.get(PAYMENT_SIGNATURE_HEADER)
        if payment:
            headers[PAYMENT_SIGNATURE_HEADER] = payment

        try:
            upstream = await http_client.post(
                config.agent_url(step),
                content=await request.body(),
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error("agent_proxy_failed", agent=step, error=str(e))
            return JSONResponse(status_code=502, content={"error": f"{step} agent unreachable", "details": str(e)})

        forwarded = {
            name: upstream.headers[name]
            for name in (PAYMENT_REQUIRED_HEADER, PAYMENT_RESPONSE_HEADER)
            if name in upstream.headers
        }
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            headers=forwarded,
            media_type=upstream.headers.get("content-type"),
        )

    return app
