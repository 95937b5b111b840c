"""
Pipeline data models
"""

from enum import Enum
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from agentflow.orchestrator.events import ReceiptEvent, ReportEvent


class StepId(str, Enum):
    """Pipeline steps, in execution order"""
    RESEARCH = "research"
    ANALYST = "analyst"
    WRITER = "writer"

    @property
    def label(self) -> str:
        return self.value.capitalize()


PIPELINE_ORDER = [StepId.RESEARCH, StepId.ANALYST, StepId.WRITER]


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    AWAITING_SIGNATURE = "awaiting_signature"
    COMPLETE = "complete"
    FAILED = "failed"


class RunState(str, Enum):
    """Idle -> Running -> Receipted -> Reported -> Done, or Failed"""
    IDLE = "idle"
    RUNNING = "running"
    RECEIPTED = "receipted"
    REPORTED = "reported"
    DONE = "done"
    FAILED = "failed"


class StepRecord(BaseModel):
    step: StepId
    price: Decimal
    status: StepStatus = StepStatus.PENDING
    transaction: Optional[str] = None


class PipelineRun(BaseModel):
    """One invocation of the pipeline; lives only as long as the request"""
    task: str
    user_address: Optional[str] = None
    steps: List[StepRecord] = Field(default_factory=list)
    state: RunState = RunState.IDLE
    receipt: Optional[ReceiptEvent] = None
    report: Optional[ReportEvent] = None
    failed_step: Optional[StepId] = None
    error: Optional[str] = None

    def record(self, step: StepId) -> StepRecord:
        for record in self.steps:
            if record.step == step:
                return record
        raise KeyError(step)
