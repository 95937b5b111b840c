"""
AgentFlow stack launcher
Runs the facilitator, the three agents and the public API in one event loop
"""

import asyncio
import sys
from typing import List

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from agentflow.agents.app import create_agent_app
from agentflow.agents.text_generation import HermesClient
from agentflow.client.paid_caller import PaidCaller
from agentflow.config import AgentFlowConfig, get_config
from agentflow.facilitator.app import create_facilitator_app
from agentflow.log import configure_logging
from agentflow.orchestrator.pipeline import PipelineOrchestrator
from agentflow.payments.signer import LocalAccountSigner
from agentflow.payments.verifier import FacilitatorClient, LocalVerifier
from agentflow.server.app import AGENT_STEPS, create_app
from agentflow.server.progress import ProgressPublisher

logger = structlog.get_logger()


def build_orchestrator(config: AgentFlowConfig, http_client: httpx.AsyncClient) -> PipelineOrchestrator:
    signer = LocalAccountSigner(config.private_key)
    caller = PaidCaller(
        http_client,
        chain_id=config.chain_id,
        verifying_contract=config.verifying_contract,
        clock_skew_seconds=config.clock_skew_seconds,
        signature_timeout_seconds=config.signature_timeout_seconds,
    )
    return PipelineOrchestrator(config, caller, signer, HermesClient.from_config(config))


def _server(app: FastAPI, host: str, port: int) -> uvicorn.Server:
    return uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_level="warning", access_log=False))


async def serve(config: AgentFlowConfig):
    http_client = httpx.AsyncClient(timeout=config.http_timeout_seconds)
    facilitator_client = FacilitatorClient(config.facilitator_url, timeout=config.http_timeout_seconds)

    orchestrator = build_orchestrator(config, http_client)
    pay_to = config.seller_address or orchestrator.signer.address
    generator = HermesClient.from_config(config)

    servers: List[uvicorn.Server] = [
        _server(create_facilitator_app(config, LocalVerifier()), config.host, config.facilitator_port),
    ]
    for step in AGENT_STEPS:
        app = create_agent_app(step, config, facilitator_client, generator, pay_to)
        servers.append(_server(app, config.host, config.agent_port(step)))
    servers.append(_server(create_app(config, ProgressPublisher(orchestrator), http_client), config.host, config.port))

    logger.info(
        "agentflow_starting",
        network=config.network,
        public_port=config.port,
        facilitator=config.facilitator_url,
        payer=orchestrator.signer.address,
        pay_to=pay_to,
    )
    try:
        await asyncio.gather(*(server.serve() for server in servers))
    finally:
        await facilitator_client.close()
        await http_client.aclose()
        logger.info("agentflow_stopped")


def main():
    config = get_config()
    configure_logging(config.log_level, config.log_format)
    if not config.private_key:
        logger.error("private_key_missing", hint="Set PRIVATE_KEY in .env")
        sys.exit(1)
    asyncio.run(serve(config))


if __name__ == "__main__":
    main()
