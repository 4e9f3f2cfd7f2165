"""
Coach Agent - streams one JSON coaching reply from Gemini.

The provider is a black box to the rest of the service: given a prompt it
yields cumulative snapshots of the reply text (each snapshot contains
everything received so far). Parsing, validation and coercion happen
downstream.
"""

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Protocol, Tuple

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI

from argument_coach.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class CoachPrompt:
    """Everything the model sees for one turn."""
    system_prompt: str
    user_message: str
    history: List[Tuple[str, str]] = field(default_factory=list)  # (role, content), oldest first


class CoachProvider(Protocol):
    def stream(self, prompt: CoachPrompt) -> AsyncIterator[str]:
        """Yield cumulative snapshots of the reply text."""
        ...


def build_messages(prompt: CoachPrompt) -> List[BaseMessage]:
    messages: List[BaseMessage] = [SystemMessage(content=prompt.system_prompt)]
    for role, content in prompt.history:
        if not content or not content.strip():
            continue
        if role == "user":
            messages.append(HumanMessage(content=content))
        elif role == "assistant":
            messages.append(AIMessage(content=content))
    messages.append(HumanMessage(content=prompt.user_message))
    return messages


def extract_text_content(content) -> str:
    """Text from a chunk's content (string or list of parts). Thinking parts are dropped."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text" and "text" in part:
                parts.append(part["text"])
        return "".join(parts)
    return ""


class GeminiCoachProvider:
    """Streams JSON replies from a Gemini chat model via LangChain."""

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        llm: Optional[ChatGoogleGenerativeAI] = None,
    ):
        """
        Initialize the Coach provider.

        Args:
            model: Gemini model name (defaults to settings.GEMINI_MODEL)
            temperature: Sampling temperature (defaults to settings.COACH_TEMPERATURE)
            llm: Pre-built chat model, mainly for tests
        """
        self.llm = llm or ChatGoogleGenerativeAI(
            model=model or settings.GEMINI_MODEL,
            temperature=settings.COACH_TEMPERATURE if temperature is None else temperature,
            google_api_key=settings.GEMINI_API_KEY,
            response_mime_type="application/json",
        )

    async def stream(self, prompt: CoachPrompt) -> AsyncIterator[str]:
        accumulated = ""
        async for chunk in self.llm.astream(build_messages(prompt)):
            text = extract_text_content(getattr(chunk, "content", ""))
            if not text:
                continue
            accumulated += text
            yield accumulated
        logger.debug("Coach reply complete (%d chars)", len(accumulated))
