"""
Text-completion providers.

Pipeline stages only need complete(prompt, system_message, max_tokens,
temperature) -> str, so OpenAI and Anthropic sit behind one small interface
and the rest of the code never imports a provider SDK.
"""
from typing import Optional, Protocol

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from resume_engine.config import get_settings
from resume_engine.services.gateway import ServiceGateway, get_gateway
from resume_engine.utils.logger import logger

DEFAULT_SYSTEM_MESSAGE = "You are an expert resume analyst. Return only valid JSON."


class CompletionService(Protocol):
    async def complete(
        self,
        prompt: str,
        system_message: str = DEFAULT_SYSTEM_MESSAGE,
        max_tokens: int = 4000,
        temperature: float = 0.1,
    ) -> str:
        ...


class OpenAICompletionService:
    """Chat completions against OpenAI, with a fallback model list"""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        fallback_models: tuple = ("gpt-4o-mini",),
        gateway: Optional[ServiceGateway] = None,
    ):
        if not api_key:
            raise ValueError("OPENAI_API_KEY not configured")
        self.client = AsyncOpenAI(api_key=api_key)
        self.models = (model,) + tuple(m for m in fallback_models if m != model)
        self.gateway = gateway or get_gateway()

    async def complete(
        self,
        prompt: str,
        system_message: str = DEFAULT_SYSTEM_MESSAGE,
        max_tokens: int = 4000,
        temperature: float = 0.1,
    ) -> str:
        last_error: Optional[Exception] = None
        for model in self.models:
            try:
                response = await self.gateway.execute(
                    "openai",
                    self.client.chat.completions.create,
                    model=model,
                    messages=[
                        {"role": "system", "content": system_message},
                        {"role": "user", "content": prompt},
                    ],
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
            except Exception as e:
                # Only an unknown/unavailable model moves on to the next one
                if getattr(e, "status_code", None) not in (400, 404):
                    raise
                logger.warning(f"OpenAI model {model} unavailable, trying fallback: {e}")
                last_error = e
                continue
            return response.choices[0].message.content or ""
        raise last_error


class AnthropicCompletionService:
    """Messages API against Claude"""

    def __init__(self, api_key: str, model: str, gateway: Optional[ServiceGateway] = None):
        if not api_key:
            raise ValueError("CLAUDE_API_KEY not configured")
        self.client = AsyncAnthropic(api_key=api_key)
        self.model = model
        self.gateway = gateway or get_gateway()

    async def complete(
        self,
        prompt: str,
        system_message: str = DEFAULT_SYSTEM_MESSAGE,
        max_tokens: int = 4000,
        temperature: float = 0.1,
    ) -> str:
        message = await self.gateway.execute(
            "anthropic",
            self.client.messages.create,
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_message,
            messages=[{"role": "user", "content": prompt}],
        )
        return "".join(block.text for block in message.content if getattr(block, "type", "") == "text")


_completion_service: Optional[CompletionService] = None


def get_completion_service() -> CompletionService:
    """Provider selected by LLM_PROVIDER; built once per process."""
    global _completion_service
    if _completion_service is None:
        settings = get_settings()
        if settings.llm_provider == "anthropic":
            _completion_service = AnthropicCompletionService(settings.claude_api_key, settings.claude_model)
        else:
            _completion_service = OpenAICompletionService(settings.openai_api_key, settings.openai_model)
        logger.info("llm.provider_selected", extra={"service": settings.llm_provider})
    return _completion_service
