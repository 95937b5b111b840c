from agentflow.orchestrator.channel import EventChannel
from agentflow.orchestrator.events import (
    ErrorEvent,
    ProgressEvent,
    ReceiptEvent,
    ReportEvent,
    StepCompleteEvent,
    StepStartEvent,
    encode_frame,
)
from agentflow.orchestrator.models import PipelineRun, RunState, StepId, StepRecord, StepStatus
from agentflow.orchestrator.pipeline import PipelineOrchestrator

__all__ = [
    "EventChannel",
    "ErrorEvent",
    "ProgressEvent",
    "ReceiptEvent",
    "ReportEvent",
    "StepCompleteEvent",
    "StepStartEvent",
    "encode_frame",
    "PipelineRun",
    "RunState",
    "StepId",
    "StepRecord",
    "StepStatus",
    "PipelineOrchestrator",
]
