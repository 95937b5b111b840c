"""
Tests for the pipeline CLI
"""

import json

import httpx
import pytest

from agentflow.cli.run_pipeline import PipelineCLI, read_events
from agentflow.orchestrator.events import encode_frame

from tests.factories import ErrorEventFactory, ReceiptEventFactory, StepStartEventFactory


@pytest.mark.asyncio
async def test_read_events_parses_data_frames():
    body = "".join(encode_frame(event) for event in (StepStartEventFactory(), ReceiptEventFactory()))
    body += ": keep-alive\n\n"

    def handler(request):
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        response = await client.get("http://agentflow/run")
        events = [event async for event in read_events(response)]

    assert [event["type"] for event in events] == ["step_start", "receipt"]
    assert events[1]["researchTx"] == "0xaaa"


def test_json_output_prints_one_line_per_event(capsys):
    cli = PipelineCLI("http://127.0.0.1:4000/", json_output=True)
    event = json.loads(encode_frame(ErrorEventFactory())[len("data: "):])

    cli.render(event)

    assert cli.base_url == "http://127.0.0.1:4000"
    assert json.loads(capsys.readouterr().out) == {
        "type": "error",
        "message": "Analyst step failed: boom",
        "step": "analyst",
    }
