"""AI judges that score proof images against a task.

Each provider is a ``Verifier``: given an image reference and the task, it
returns a ``Judgement`` (confidence in [0, 1] plus a reason). Judges run on
pydantic-ai agents with structured output, so no JSON scraping is needed.
``judge_safely`` is the only entry point the verification flow uses; it never
raises.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import ClassVar, Protocol

import httpx
from pydantic_ai import Agent, BinaryContent, ImageUrl
from pydantic_ai.models import Model
from pydantic_ai.models.anthropic import AnthropicModel
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.anthropic import AnthropicProvider
from pydantic_ai.providers.google import GoogleProvider
from pydantic_ai.providers.openai import OpenAIProvider

from src.core.config import Constants
from src.core.errors import ExternalServiceError, MisconfiguredVerifierError
from src.core.logging import span
from src.domain.verification import AiProvider
from src.models.service_models import Judgement


logger = logging.getLogger(__name__)

FAILED_JUDGEMENT_REASON = "AI verification failed"


@dataclass(frozen=True)
class JudgeRequest:
    image_url: str
    task_title: str
    task_description: str | None = None
    custom_prompt: str | None = None


class Verifier(Protocol):
    async def judge(self, request: JudgeRequest) -> Judgement: ...


def build_prompt(request: JudgeRequest) -> str:
    """Default instructions, replaced wholesale by a custom per-target prompt."""
    if request.custom_prompt:
        return request.custom_prompt

    lines = [
        "You are verifying if a user completed a task.",
        f"Task: {request.task_title}",
    ]
    if request.task_description:
        lines.append(f"Description: {request.task_description}")
    lines += [
        "",
        "Analyze the provided image and determine if it shows evidence of completing this task.",
        "",
        "Respond with:",
        "- confidence: a number between 0 and 1 indicating how confident you are that the task was completed",
        "- reason: a brief explanation of your assessment",
    ]
    return "\n".join(lines)


async def fetch_image(url: str) -> BinaryContent:
    """Download a proof image for providers that need inline bytes."""
    async with httpx.AsyncClient(timeout=Constants.API_TIMEOUT_SECONDS, follow_redirects=True) as client:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalServiceError(f"Could not fetch proof image: {e}") from e

    media_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip() or "image/jpeg"
    return BinaryContent(data=response.content, media_type=media_type)


class PydanticAIVerifier:
    """Shared judge flow; subclasses choose the model and how the image is attached."""

    provider: ClassVar[AiProvider]
    default_model: ClassVar[str]

    def __init__(self, *, api_key: str, model: str | None = None) -> None:
        self.api_key = api_key
        self.model_name = model or self.default_model

    def build_model(self) -> Model:
        raise NotImplementedError

    async def image_part(self, request: JudgeRequest) -> ImageUrl | BinaryContent:
        return await fetch_image(request.image_url)

    async def judge(self, request: JudgeRequest) -> Judgement:
        agent = Agent(self.build_model(), output_type=Judgement, retries=1)
        result = await agent.run([build_prompt(request), await self.image_part(request)])
        return result.output


class OpenAIVerifier(PydanticAIVerifier):
    provider = AiProvider.OPENAI
    default_model = "gpt-4o"

    def build_model(self) -> Model:
        return OpenAIChatModel(self.model_name, provider=OpenAIProvider(api_key=self.api_key))

    async def image_part(self, request: JudgeRequest) -> ImageUrl | BinaryContent:
        # OpenAI downloads the image itself
        return ImageUrl(url=request.image_url)


class AnthropicVerifier(PydanticAIVerifier):
    provider = AiProvider.ANTHROPIC
    default_model = "claude-sonnet-4-20250514"

    def build_model(self) -> Model:
        return AnthropicModel(self.model_name, provider=AnthropicProvider(api_key=self.api_key))


class GoogleVerifier(PydanticAIVerifier):
    provider = AiProvider.GOOGLE
    default_model = "gemini-2.5-flash"

    def build_model(self) -> Model:
        return GoogleModel(self.model_name, provider=GoogleProvider(api_key=self.api_key))


_VERIFIERS: dict[str, type[PydanticAIVerifier]] = {
    cls.provider: cls for cls in (OpenAIVerifier, AnthropicVerifier, GoogleVerifier)
}


def build_verifier(*, provider: str, api_key: str, model: str | None = None) -> Verifier:
    """Instantiate the judge for a configured provider.

    Raises:
        MisconfiguredVerifierError: If the provider is not supported
    """
    verifier_cls = _VERIFIERS.get(provider)
    if verifier_cls is None:
        raise MisconfiguredVerifierError(f"Unsupported AI provider: {provider}")
    return verifier_cls(api_key=api_key, model=model)


async def judge_safely(verifier: Verifier, request: JudgeRequest, *, timeout: float) -> Judgement:
    """Run a judge with a deadline, converting every failure to zero confidence."""
    with span("ai_verifier.judge"):
        try:
            async with asyncio.timeout(timeout):
                return await verifier.judge(request)
        except TimeoutError:
            logger.warning("AI judge timed out after %.1fs", timeout, extra={"timeout_seconds": timeout})
        except Exception:
            logger.exception("AI judge failed")
        return Judgement(confidence=0.0, reason=FAILED_JUDGEMENT_REASON)
