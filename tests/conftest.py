"""
Pytest configuration and shared fixtures
"""

from typing import Dict, Optional

import httpx
import pytest
from eth_account import Account

from agentflow.agents.app import create_agent_app
from agentflow.client.paid_caller import PaidCaller
from agentflow.config import AgentFlowConfig
from agentflow.facilitator.app import create_facilitator_app
from agentflow.orchestrator.pipeline import PipelineOrchestrator
from agentflow.payments.signer import LocalAccountSigner
from agentflow.payments.verifier import LocalVerifier

from tests.factories import FakeGenerator

SELLER_KEY = "0x1234567890abcdef1234567890abcdef1234567890abcdef1234567890abcdef"
PAYER_KEY = "0xabcdef1234567890abcdef1234567890abcdef1234567890abcdef1234567890"

STEPS = ("research", "analyst", "writer")


@pytest.fixture
def test_seller_account():
    """Create a test seller account"""
    return Account.from_key(SELLER_KEY)


@pytest.fixture
def test_payer_account():
    """Create a test payer account"""
    return Account.from_key(PAYER_KEY)


@pytest.fixture
def config(test_seller_account) -> AgentFlowConfig:
    """Configuration with test keys and short timeouts, ignoring any .env"""
    return AgentFlowConfig(
        _env_file=None,
        private_key=PAYER_KEY,
        seller_address=test_seller_account.address,
        payment_timeout_seconds=10,
        agent_timeout_seconds=5,
        signature_timeout_seconds=5,
        health_timeout_seconds=1,
    )


@pytest.fixture
def signer() -> LocalAccountSigner:
    return LocalAccountSigner(PAYER_KEY)


@pytest.fixture
def verifier() -> LocalVerifier:
    """Verifier shared by the three in-process agents"""
    return LocalVerifier()


@pytest.fixture
def generators() -> Dict[str, FakeGenerator]:
    return {
        "research": FakeGenerator("research notes"),
        "analyst": FakeGenerator("analysis notes"),
        "writer": FakeGenerator("# Ethereum rollups report"),
        "summary": FakeGenerator("summary text"),
    }


@pytest.fixture
def make_stack(config, verifier, test_seller_account):
    """
    Build an httpx client whose agent and facilitator URLs are served
    in-process by the real apps.
    """

    def build(
        generators: Dict[str, FakeGenerator],
        agent_verifier=None,
        facilitator_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> httpx.AsyncClient:
        mounts = {}
        for step in STEPS:
            app = create_agent_app(
                step,
                config,
                agent_verifier or verifier,
                generators[step],
                test_seller_account.address,
            )
            mounts[f"http://{config.host}:{config.agent_port(step)}"] = httpx.ASGITransport(app=app)
        mounts[config.facilitator_url] = facilitator_transport or httpx.ASGITransport(
            app=create_facilitator_app(config, LocalVerifier())
        )
        return httpx.AsyncClient(mounts=mounts, timeout=10.0)

    return build


@pytest.fixture
def stack_client(make_stack, generators) -> httpx.AsyncClient:
    return make_stack(generators)


@pytest.fixture
def caller(config, stack_client) -> PaidCaller:
    return PaidCaller(
        stack_client,
        chain_id=config.chain_id,
        verifying_contract=config.verifying_contract,
        clock_skew_seconds=config.clock_skew_seconds,
        signature_timeout_seconds=config.signature_timeout_seconds,
    )


@pytest.fixture
def orchestrator(config, caller, signer, generators) -> PipelineOrchestrator:
    return PipelineOrchestrator(config, caller, signer, generators["summary"])

