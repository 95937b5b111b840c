"""
Text generation collaborator
Prompt in, text out, against an OpenAI-compatible Hermes endpoint
"""

from typing import Optional, Protocol

from openai import AsyncOpenAI
import structlog

from agentflow.config import AgentFlowConfig

logger = structlog.get_logger()


class TextGenerator(Protocol):
    async def generate(self, system_prompt: str, user_message: str) -> str:
        ...


class HermesClient:
    """Chat completion against the configured Hermes model"""

    def __init__(self, model: str, client: AsyncOpenAI):
        self.model = model
        self.client = client

    @classmethod
    def from_config(cls, config: AgentFlowConfig, timeout: Optional[float] = None) -> "HermesClient":
        client = AsyncOpenAI(
            api_key=config.hermes_api_key or "local",
            base_url=config.hermes_base_url,
            timeout=timeout or config.agent_timeout_seconds,
            max_retries=0,
        )
        return cls(model=config.hermes_model, client=client)

    async def generate(self, system_prompt: str, user_message: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
        )
        if not response.choices:
            logger.warning("hermes_empty_response", model=self.model)
            return ""
        return response.choices[0].message.content or ""
