"""
Pipeline Orchestrator
Runs research -> analyst -> writer as three paid calls, then a receipt and a summary
"""

import asyncio
import json
from typing import Any, Optional

from web3 import Web3
import structlog

from agentflow.agents.prompts import SUMMARY_PROMPT
from agentflow.agents.text_generation import TextGenerator
from agentflow.client.paid_caller import PaidCaller, PaidResult
from agentflow.config import AgentFlowConfig
from agentflow.errors import AgentFlowError, StepFailed, StepTimeout, error_message
from agentflow.orchestrator.channel import EventChannel
from agentflow.orchestrator.events import (
    ErrorEvent,
    ReceiptEvent,
    ReportEvent,
    StepCompleteEvent,
    StepStartEvent,
)
from agentflow.orchestrator.models import (
    PIPELINE_ORDER,
    PipelineRun,
    RunState,
    StepId,
    StepRecord,
    StepStatus,
)
from agentflow.payments.pricing import format_price, total_price
from agentflow.payments.signer import Signer

logger = structlog.get_logger()

TASK_REQUIRED = "Task is required."


def to_json(value: Any) -> str:
    """Compact JSON, the form step outputs are forwarded in"""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class PipelineOrchestrator:
    """
    Sequences the three paid steps and reports progress on a channel.

    A step starts only after the previous one completed, with its payment
    settled. The first failure ends the run: one error event naming the
    step, and nothing after it. Payments already settled stay settled.
    """

    def __init__(
        self,
        config: AgentFlowConfig,
        caller: PaidCaller,
        signer: Signer,
        summarizer: TextGenerator,
    ):
        self.config = config
        self.caller = caller
        self.signer = signer
        self.summarizer = summarizer

    def new_run(self, task: str, user_address: Optional[str] = None) -> PipelineRun:
        return PipelineRun(
            task=task,
            user_address=user_address,
            steps=[StepRecord(step=step, price=self.config.price_for(step.value)) for step in PIPELINE_ORDER],
        )

    def check_user_address(self, user_address: Optional[str]) -> None:
        """The connected wallet, when given, must be the one that signs"""
        if not user_address:
            return
        if not Web3.is_address(user_address):
            raise AgentFlowError("userAddress is invalid.")
        normalized = Web3.to_checksum_address(user_address)
        if normalized.lower() != self.signer.address.lower():
            raise AgentFlowError(
                f"Connected wallet {normalized} does not match backend signer {self.signer.address}. "
                "Configure PRIVATE_KEY to the connected wallet for server-side payments."
            )

    async def run(self, task: Optional[str], channel: EventChannel, user_address: Optional[str] = None) -> PipelineRun:
        task = (task or "").strip()
        user_address = (user_address or "").strip() or None
        run = self.new_run(task, user_address)

        try:
            if not task:
                run.state = RunState.FAILED
                run.error = TASK_REQUIRED
                channel.publish(ErrorEvent(message=TASK_REQUIRED))
                return run

            self.check_user_address(user_address)
            logger.info("pipeline_started", task_length=len(task), payer=self.signer.address)
            run.state = RunState.RUNNING

            research = await self._step(run, StepId.RESEARCH, {"task": task}, channel)
            analyst = await self._step(run, StepId.ANALYST, {"research": to_json(research.data)}, channel)
            writer = await self._step(
                run,
                StepId.WRITER,
                {"research": to_json(research.data), "analysis": to_json(analyst.data)},
                channel,
            )

            run.receipt = ReceiptEvent(
                total=format_price(total_price(record.price for record in run.steps)),
                research_tx=research.transaction,
                analyst_tx=analyst.transaction,
                writer_tx=writer.transaction,
            )
            run.state = RunState.RECEIPTED
            channel.publish(run.receipt)

            summary = await self._summarize(run, research, analyst, writer)
            markdown = writer.data.get("result") if isinstance(writer.data, dict) else None
            run.report = ReportEvent(markdown=markdown or "", summary=summary)
            run.state = RunState.REPORTED
            channel.publish(run.report)

            run.state = RunState.DONE
            logger.info("pipeline_completed", total=run.receipt.total)

        except StepFailed as e:
            run.state = RunState.FAILED
            run.failed_step = StepId(e.step)
            run.error = str(e)
            logger.error("pipeline_failed", step=e.step, error=str(e))
            channel.publish(ErrorEvent(message=str(e), step=e.step))
        except Exception as e:
            run.state = RunState.FAILED
            run.error = error_message(e)
            logger.error("pipeline_failed", error=run.error)
            channel.publish(ErrorEvent(message=run.error))
        finally:
            channel.close()

        return run

    async def _step(self, run: PipelineRun, step: StepId, body: dict, channel: EventChannel) -> PaidResult:
        record = run.record(step)
        record.status = StepStatus.RUNNING
        channel.publish(StepStartEvent(step=step.value, price=format_price(record.price)))

        def awaiting_signature():
            record.status = StepStatus.AWAITING_SIGNATURE

        timeout = self.config.payment_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self.caller.pay(
                    self.config.agent_url(step.value),
                    body,
                    self.signer,
                    on_await_signature=awaiting_signature,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            record.status = StepStatus.FAILED
            raise StepFailed(step.value, StepTimeout(f"{step.label} payment", timeout)) from e
        except Exception as e:
            record.status = StepStatus.FAILED
            raise StepFailed(step.value, e) from e

        record.status = StepStatus.COMPLETE
        record.transaction = result.transaction
        logger.info("step_completed", step=step.value, tx=result.transaction, amount=format_price(record.price))
        channel.publish(
            StepCompleteEvent(step=step.value, tx=result.transaction, amount=format_price(record.price))
        )
        return result

    async def _summarize(self, run: PipelineRun, research: PaidResult, analyst: PaidResult, writer: PaidResult) -> str:
        message = to_json(
            {
                "task": run.task,
                "research": research.data,
                "analyst": analyst.data,
                "writer": writer.data,
                "userAddress": run.user_address or self.signer.address,
            }
        )
        timeout = self.config.agent_timeout_seconds
        try:
            return await asyncio.wait_for(self.summarizer.generate(SUMMARY_PROMPT, message), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise StepTimeout("Summary", timeout) from e
