"""
The three protected operations
Each takes the request body and returns the JSON the agent releases once paid
"""

from typing import Any, Awaitable, Callable, Dict

from agentflow.agents.prompts import ANALYST_PROMPT, WRITER_PROMPT, research_prompt
from agentflow.agents.text_generation import TextGenerator
from agentflow.errors import InvalidOperationInput

AgentOperation = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


def _text_field(body: Dict[str, Any], name: str) -> str:
    value = body.get(name)
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def research_operation(generator: TextGenerator) -> AgentOperation:
    async def run(body: Dict[str, Any]) -> Dict[str, Any]:
        task = _text_field(body, "task")
        if not task.strip():
            raise InvalidOperationInput("Task is required")
        return {"task": task, "result": await generator.generate(research_prompt(), task)}

    return run


def analyst_operation(generator: TextGenerator) -> AgentOperation:
    async def run(body: Dict[str, Any]) -> Dict[str, Any]:
        research = _text_field(body, "research")
        return {"research": research, "result": await generator.generate(ANALYST_PROMPT, research)}

    return run


def writer_operation(generator: TextGenerator) -> AgentOperation:
    async def run(body: Dict[str, Any]) -> Dict[str, Any]:
        research = _text_field(body, "research")
        analysis = _text_field(body, "analysis")
        combined = f"RESEARCH:\n{research}\n\nANALYSIS:\n{analysis}"
        return {
            "research": research,
            "analysis": analysis,
            "result": await generator.generate(WRITER_PROMPT, combined),
        }

    return run


OPERATIONS = {
    "research": research_operation,
    "analyst": analyst_operation,
    "writer": writer_operation,
}


def build_operation(step: str, generator: TextGenerator) -> AgentOperation:
    return OPERATIONS[step](generator)
