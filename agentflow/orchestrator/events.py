"""
Progress events
The tagged union pushed to the caller while a pipeline runs
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class StepStartEvent(_Event):
    type: Literal["step_start"] = "step_start"
    step: str
    price: str


class StepCompleteEvent(_Event):
    type: Literal["step_complete"] = "step_complete"
    step: str
    tx: Optional[str] = None
    amount: str


class ReceiptEvent(_Event):
    type: Literal["receipt"] = "receipt"
    total: str
    research_tx: Optional[str] = Field(default=None, alias="researchTx")
    analyst_tx: Optional[str] = Field(default=None, alias="analystTx")
    writer_tx: Optional[str] = Field(default=None, alias="writerTx")


class ReportEvent(_Event):
    type: Literal["report"] = "report"
    markdown: str
    summary: str


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    message: str
    step: Optional[str] = None


ProgressEvent = Union[StepStartEvent, StepCompleteEvent, ReceiptEvent, ReportEvent, ErrorEvent]

TERMINAL_EVENTS = (ReportEvent, ErrorEvent)


def encode_frame(event: ProgressEvent) -> str:
    """Serialize one event as a server-sent event frame"""
    if isinstance(event, (StepStartEvent, StepCompleteEvent, ReceiptEvent, ReportEvent, ErrorEvent)):
        body = event.model_dump_json(by_alias=True, exclude_none=True)
        return f"data: {body}\n\n"
    raise TypeError(f"Unknown progress event: {type(event).__name__}")
