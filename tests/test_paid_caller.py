"""
Tests for the paid caller against in-process agents
"""

import httpx
import pytest
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from agentflow.client.paid_caller import PaidCaller
from agentflow.errors import (
    ChallengeMismatch,
    PaymentProtocolError,
    PaymentRequestError,
    SettlementFailed,
    SigningRejected,
    StepTimeout,
    UpstreamOperationFailed,
    VerificationFailed,
)

from tests.factories import CountingSigner, FakeGenerator, ScriptedVerifier

RESEARCH_URL = "http://127.0.0.1:3001/run"


def make_caller(client, config, **overrides) -> PaidCaller:
    options = dict(
        chain_id=config.chain_id,
        verifying_contract=config.verifying_contract,
        clock_skew_seconds=config.clock_skew_seconds,
        signature_timeout_seconds=config.signature_timeout_seconds,
    )
    options.update(overrides)
    return PaidCaller(client, **options)


class TestPaidCall:
    """Challenge, sign, retry once"""

    @pytest.mark.asyncio
    async def test_pays_and_returns_result(self, caller, test_payer_account, verifier, generators):
        signer = CountingSigner(test_payer_account)
        awaited = []

        result = await caller.pay(RESEARCH_URL, {"task": "Ethereum rollups"}, signer, on_await_signature=lambda: awaited.append(True))

        assert result.status == 200
        assert result.data == {"task": "Ethereum rollups", "result": "research notes"}
        assert result.transaction.startswith("0x")
        assert signer.calls == 1
        assert awaited == [True]
        assert len(verifier._used_nonces) == 1
        assert generators["research"].calls[0][1] == "Ethereum rollups"

    @pytest.mark.asyncio
    async def test_each_call_uses_a_fresh_nonce(self, caller, test_payer_account, verifier):
        signer = CountingSigner(test_payer_account)

        first = await caller.pay(RESEARCH_URL, {"task": "a"}, signer)
        second = await caller.pay(RESEARCH_URL, {"task": "b"}, signer)

        assert first.transaction != second.transaction
        assert len(verifier._used_nonces) == 2

    @pytest.mark.asyncio
    async def test_unprotected_endpoint_is_not_paid(self, config, test_payer_account):
        app = FastAPI()

        @app.post("/free")
        async def free():
            return {"ok": True}

        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://free")
        signer = CountingSigner(test_payer_account)

        result = await make_caller(client, config).pay("http://free/free", {}, signer)

        assert result.data == {"ok": True}
        assert result.transaction is None
        assert signer.calls == 0


class TestChallengeHandling:
    """Bad or foreign challenges fail before anything is signed"""

    @pytest.mark.asyncio
    async def test_wrong_network_is_rejected_before_signing(self, config, stack_client, test_payer_account):
        signer = CountingSigner(test_payer_account)
        caller = make_caller(stack_client, config, chain_id=8453)

        with pytest.raises(ChallengeMismatch):
            await caller.pay(RESEARCH_URL, {"task": "x"}, signer)

        assert signer.calls == 0

    @pytest.mark.asyncio
    async def test_wrong_verifying_contract_is_rejected(self, config, stack_client, test_payer_account):
        signer = CountingSigner(test_payer_account)
        caller = make_caller(stack_client, config, verifying_contract="0x" + "11" * 20)

        with pytest.raises(ChallengeMismatch):
            await caller.pay(RESEARCH_URL, {"task": "x"}, signer)

        assert signer.calls == 0

    @pytest.mark.asyncio
    async def test_402_without_challenge_header(self, config, test_payer_account):
        app = FastAPI()

        @app.post("/run")
        async def run():
            return JSONResponse(status_code=402, content={})

        client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://agent")

        with pytest.raises(PaymentProtocolError):
            await make_caller(client, config).pay("http://agent/run", {}, CountingSigner(test_payer_account))


class TestSigning:
    @pytest.mark.asyncio
    async def test_signature_timeout(self, config, stack_client, test_payer_account, generators):
        caller = make_caller(stack_client, config, signature_timeout_seconds=0.05)

        with pytest.raises(StepTimeout) as exc_info:
            await caller.pay(RESEARCH_URL, {"task": "x"}, CountingSigner(test_payer_account, delay=1.0))

        assert str(exc_info.value) == "Signature timed out after 0.05s"
        assert generators["research"].calls == []

    @pytest.mark.asyncio
    async def test_signer_rejection_propagates(self, caller, test_payer_account, generators):
        with pytest.raises(SigningRejected):
            await caller.pay(RESEARCH_URL, {"task": "x"}, CountingSigner(test_payer_account, reject=True))

        assert generators["research"].calls == []


class TestRetryFailures:
    """The retry is the last attempt"""

    @pytest.mark.asyncio
    async def test_rejected_payment_is_not_resigned(self, config, make_stack, generators, test_payer_account):
        verifier = ScriptedVerifier(valid=False, invalid_reason="insufficient_balance")
        caller = make_caller(make_stack(generators, agent_verifier=verifier), config)
        signer = CountingSigner(test_payer_account)

        with pytest.raises(VerificationFailed) as exc_info:
            await caller.pay(RESEARCH_URL, {"task": "x"}, signer)

        assert "insufficient_balance" in str(exc_info.value)
        assert signer.calls == 1
        assert verifier.verify_calls == 1
        assert generators["research"].calls == []

    @pytest.mark.asyncio
    async def test_settlement_failure(self, config, make_stack, generators, test_payer_account):
        verifier = ScriptedVerifier(settle_ok=False, settle_reason="gateway_unavailable")
        caller = make_caller(make_stack(generators, agent_verifier=verifier), config)

        with pytest.raises(SettlementFailed) as exc_info:
            await caller.pay(RESEARCH_URL, {"task": "x"}, CountingSigner(test_payer_account))

        assert "gateway_unavailable" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_operation_failure_is_reported_unsettled(self, config, make_stack, generators, verifier, test_payer_account):
        generators["research"] = FakeGenerator(error=RuntimeError("upstream model down"))
        caller = make_caller(make_stack(generators), config)

        with pytest.raises(UpstreamOperationFailed) as exc_info:
            await caller.pay(RESEARCH_URL, {"task": "x"}, CountingSigner(test_payer_account))

        assert exc_info.value.status_code == 500
        assert exc_info.value.body["error"] == "research agent failed"
        assert exc_info.value.body["details"] == "upstream model down"
        assert "requestId" in exc_info.value.body
        assert len(verifier._used_nonces) == 0

    @pytest.mark.asyncio
    async def test_invalid_input_is_400(self, caller, verifier, test_payer_account):
        with pytest.raises(PaymentRequestError) as exc_info:
            await caller.pay(RESEARCH_URL, {"task": "   "}, CountingSigner(test_payer_account))

        assert exc_info.value.status_code == 400
        assert not isinstance(exc_info.value, UpstreamOperationFailed)
        assert exc_info.value.body["error"] == "Task is required"
        assert len(verifier._used_nonces) == 0
