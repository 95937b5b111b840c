"""
Tests for the pipeline orchestrator
Sequencing, receipts, and per-step failure attribution
"""

import asyncio
import json

import pytest
from eth_account import Account

from agentflow.client.paid_caller import PaidCaller
from agentflow.orchestrator.channel import EventChannel
from agentflow.orchestrator.events import (
    ErrorEvent,
    ReceiptEvent,
    ReportEvent,
    StepCompleteEvent,
    StepStartEvent,
)
from agentflow.orchestrator.models import RunState, StepId, StepStatus
from agentflow.orchestrator.pipeline import PipelineOrchestrator

from tests.factories import CountingSigner, FakeGenerator


async def collect(channel: EventChannel):
    return [event async for event in channel]


class StallingCaller:
    """Paid caller that never answers"""

    async def pay(self, endpoint, body, signer, on_await_signature=None):
        await asyncio.sleep(60)


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_example_trace(self, orchestrator):
        channel = EventChannel()
        run = await orchestrator.run("Ethereum rollups", channel)
        events = await collect(channel)

        assert [event.type for event in events] == [
            "step_start", "step_complete",
            "step_start", "step_complete",
            "step_start", "step_complete",
            "receipt", "report",
        ]
        assert [(e.step, e.price) for e in events if isinstance(e, StepStartEvent)] == [
            ("research", "0.005"),
            ("analyst", "0.003"),
            ("writer", "0.008"),
        ]
        completes = [e for e in events if isinstance(e, StepCompleteEvent)]
        assert [e.amount for e in completes] == ["0.005", "0.003", "0.008"]
        assert all(e.tx.startswith("0x") for e in completes)

        receipt = events[6]
        assert isinstance(receipt, ReceiptEvent)
        assert receipt.total == "0.016"
        assert [receipt.research_tx, receipt.analyst_tx, receipt.writer_tx] == [e.tx for e in completes]

        report = events[7]
        assert isinstance(report, ReportEvent)
        assert report.markdown == "# Ethereum rollups report"
        assert report.summary == "summary text"

        assert run.state == RunState.DONE
        assert all(record.status == StepStatus.COMPLETE for record in run.steps)

    @pytest.mark.asyncio
    async def test_step_outputs_feed_the_next_step(self, orchestrator, generators):
        await orchestrator.run("Ethereum rollups", EventChannel())

        research_output = {"task": "Ethereum rollups", "result": "research notes"}
        analyst_input = generators["analyst"].calls[0][1]
        writer_input = generators["writer"].calls[0][1]

        assert json.loads(analyst_input) == research_output
        assert writer_input.startswith("RESEARCH:\n")
        assert "\n\nANALYSIS:\n" in writer_input
        analysis_json = writer_input.split("\n\nANALYSIS:\n", 1)[1]
        assert json.loads(analysis_json)["result"] == "analysis notes"

    @pytest.mark.asyncio
    async def test_summary_sees_every_output(self, orchestrator, generators, signer):
        await orchestrator.run("Ethereum rollups", EventChannel())

        summary_input = json.loads(generators["summary"].calls[0][1])
        assert summary_input["task"] == "Ethereum rollups"
        assert summary_input["writer"]["result"] == "# Ethereum rollups report"
        assert summary_input["userAddress"] == signer.address

    @pytest.mark.asyncio
    async def test_receipt_total_ignores_content(self, config, caller, signer, generators):
        generators["writer"].reply = "x" * 10_000
        orchestrator = PipelineOrchestrator(config, caller, signer, generators["summary"])
        channel = EventChannel()

        run = await orchestrator.run("Ethereum rollups", channel)

        assert run.receipt.total == "0.016"

    @pytest.mark.asyncio
    async def test_matching_user_address_is_accepted(self, orchestrator, signer):
        channel = EventChannel()
        run = await orchestrator.run("Ethereum rollups", channel, user_address=signer.address.lower())

        assert run.state == RunState.DONE


class TestFailures:
    """The first failure ends the run with exactly one error event"""

    @pytest.mark.asyncio
    async def test_empty_task(self, orchestrator, generators):
        channel = EventChannel()
        run = await orchestrator.run("   ", channel)
        events = await collect(channel)

        assert events == [ErrorEvent(message="Task is required.")]
        assert run.state == RunState.FAILED
        assert generators["research"].calls == []

    @pytest.mark.asyncio
    async def test_analyst_failure(self, config, make_stack, generators, verifier, signer):
        generators["analyst"] = FakeGenerator(error=RuntimeError("analyst model unavailable"))
        stack = make_stack(generators)
        caller = PaidCaller(stack, chain_id=config.chain_id, verifying_contract=config.verifying_contract)
        orchestrator = PipelineOrchestrator(config, caller, signer, generators["summary"])
        channel = EventChannel()

        run = await orchestrator.run("Ethereum rollups", channel)
        events = await collect(channel)

        assert [event.type for event in events] == ["step_start", "step_complete", "step_start", "error"]
        error = events[-1]
        assert error.step == "analyst"
        assert error.message.startswith("Analyst step failed: ")
        assert "analyst model unavailable" in error.message

        assert run.state == RunState.FAILED
        assert run.failed_step == StepId.ANALYST
        assert run.record(StepId.RESEARCH).status == StepStatus.COMPLETE
        assert run.record(StepId.ANALYST).status == StepStatus.FAILED
        assert run.record(StepId.WRITER).status == StepStatus.PENDING

        # Research stays paid; the failed analyst call was never settled
        assert len(verifier._used_nonces) == 1
        assert generators["writer"].calls == []
        assert generators["summary"].calls == []

    @pytest.mark.asyncio
    async def test_signing_rejected_at_analyst(self, config, caller, generators, verifier, test_payer_account):
        signer = CountingSigner(test_payer_account, reject_from_call=2)
        orchestrator = PipelineOrchestrator(config, caller, signer, generators["summary"])
        channel = EventChannel()

        run = await orchestrator.run("Ethereum rollups", channel)
        events = await collect(channel)

        assert [event.type for event in events] == ["step_start", "step_complete", "step_start", "error"]
        assert [event.step for event in events] == ["research", "research", "analyst", "analyst"]
        assert events[-1] == ErrorEvent(
            message="Analyst step failed: User rejected the request.",
            step="analyst",
        )
        assert run.failed_step == StepId.ANALYST
        assert signer.calls == 2

        # Only research was paid; the rejected analyst payment never reached the agent
        assert len(verifier._used_nonces) == 1
        assert generators["analyst"].calls == []
        assert generators["writer"].calls == []

    @pytest.mark.asyncio
    async def test_payment_timeout_names_the_step(self, config, signer, generators):
        config = config.model_copy(update={"payment_timeout_seconds": 0.05})
        orchestrator = PipelineOrchestrator(config, StallingCaller(), signer, generators["summary"])
        channel = EventChannel()

        run = await orchestrator.run("Ethereum rollups", channel)
        events = await collect(channel)

        assert events[-1] == ErrorEvent(
            message="Research step failed: Research payment timed out after 0.05s",
            step="research",
        )
        assert run.failed_step == StepId.RESEARCH

    @pytest.mark.asyncio
    async def test_mismatched_user_address(self, orchestrator, generators):
        channel = EventChannel()
        other = Account.create().address

        run = await orchestrator.run("Ethereum rollups", channel, user_address=other)
        events = await collect(channel)

        assert len(events) == 1
        assert events[0].type == "error"
        assert "does not match backend signer" in events[0].message
        assert run.state == RunState.FAILED
        assert generators["research"].calls == []

    @pytest.mark.asyncio
    async def test_summary_failure_after_receipt(self, config, caller, signer):
        orchestrator = PipelineOrchestrator(config, caller, signer, FakeGenerator(error=RuntimeError("summary down")))
        channel = EventChannel()

        run = await orchestrator.run("Ethereum rollups", channel)
        events = await collect(channel)

        assert [event.type for event in events][-2:] == ["receipt", "error"]
        assert events[-1].message == "summary down"
        assert run.receipt is not None
        assert run.report is None

    @pytest.mark.asyncio
    async def test_channel_always_closes(self, orchestrator):
        channel = EventChannel()
        await orchestrator.run("", channel)

        assert channel.closed
