# chat_chain.py
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from .config import SUPPORTED_PROVIDERS, RelaySettings
from .models import ChatPayload, TripContextRequest, Turn

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """
You are a highly knowledgeable, professional, and friendly travel assistant
specializing in helping users plan trips, book flights, find accommodations,
and explore destinations. When answering users' queries:

1. Keep responses concise: answer in small, digestible chunks. If the user
   needs more details, wait for them to ask rather than giving everything at once.
2. Maintain context: remember the details of the conversation during the session
   and refer back to previous answers when the user repeats a question.
3. Flight assistance: offer flight booking options and check-in reminders.
   Suggest airlines based on preferences (budget, luxury, eco-friendly).
4. Accommodation: help users find hotels or rentals based on budget and location.
   Avoid listing too many options in one response.
5. Destination insights: share relevant details such as weather and activities,
   and only go further when asked.
6. Activities: offer 1-2 recommendations at a time, including local events or
   tours. Wait for the user to request more.
7. Travel tips: answer specific questions with basic tips and do not overwhelm
   the user with details.

Be polite and patient. If you cannot handle a query, direct the user to a human
travel consultant. Engage with users by offering help step by step.
""".strip()

CHECKLIST: Dict[str, Any] = {
    "general": [
        "Got your passport?",
        "Double-check your boarding passes! Wrong date or time? That could be a nightmare!",
        "Packed your meds? Make sure you've got enough for the whole trip plus extra, just in case!",
        "Charged all your devices? No one wants to fight for an airport outlet!",
    ],
    "country_specific": {
        "us": ["Do you have your ESTA if you're eligible for the Visa Waiver Program?"],
        "canada": ["Got your eTA (Electronic Travel Authorization) for Canada?"],
        "china": ["Do you have your visa for China?"],
    },
}

# Destination spellings that map onto a country_specific checklist key.
COUNTRY_ALIASES: Dict[str, str] = {
    "us": "us",
    "usa": "us",
    "united states": "us",
    "united states of america": "us",
    "america": "us",
    "canada": "canada",
    "china": "china",
    "prc": "china",
}


def checklist_for(destination: Optional[str]) -> List[str]:
    """General checklist items plus any country-specific ones for the destination."""
    items = list(CHECKLIST["general"])
    if not destination:
        return items

    normalized = destination.strip().lower()
    candidates = [normalized] + [part.strip() for part in normalized.split(",")]
    for candidate in candidates:
        key = COUNTRY_ALIASES.get(candidate)
        if key:
            items.extend(CHECKLIST["country_specific"][key])
            break
    return items


def build_preamble(context: Optional[TripContextRequest] = None) -> Turn:
    checklist_text = ", ".join(checklist_for(context.destination if context else None))

    if context is None:
        content = (
            f"{SYSTEM_PROMPT}\n\n"
            f"Use the following checklist to guide the conversation: {checklist_text}.\n"
            "Ask about the destination and travel date if the user has not shared "
            "them, and adjust for country-specific requirements once you know them."
        )
        return Turn(role="system", content=content)

    destination = context.destination or "not specified"
    date = context.date or "not specified"
    step = context.currentStep or "not specified"
    content = (
        f"{SYSTEM_PROMPT}\n\n"
        f"The user is traveling to {destination} on {date}.\n"
        f"The current checklist step is: {step}.\n"
        f"Use the following checklist to guide the conversation: {checklist_text}.\n"
        "Ask relevant questions based on the current checklist step, and adjust for "
        f"country-specific requirements of {destination} if necessary."
    )
    return Turn(role="system", content=content)


def build_messages(payload: ChatPayload) -> List[Turn]:
    """Outbound message list: the preamble first, then the caller's turns in order."""
    if isinstance(payload, TripContextRequest):
        return [
            build_preamble(payload),
            Turn(role="user", content=payload.userMessage),
        ]
    return [build_preamble()] + list(payload)


# -------------------- COMPLETION PROVIDERS --------------------


class CompletionServiceError(RuntimeError):
    """The completion provider is not configured well enough to be called."""


def extract_fragment(chunk: Any) -> Optional[str]:
    """Text at choices[0].delta.content of a streamed completion chunk, if any."""
    choices = getattr(chunk, "choices", None)
    if not choices:
        return None
    delta = getattr(choices[0], "delta", None)
    content = getattr(delta, "content", None)
    return content if isinstance(content, str) and content else None


def _chunk_text(chunk: Any) -> Optional[str]:
    content = getattr(chunk, "content", None)
    if isinstance(content, str):
        return content or None

    # Gemini can return a list of content parts instead of a plain string
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        text = "".join(parts)
        return text or None
    return None


def to_langchain_messages(messages: List[Turn]) -> List[BaseMessage]:
    converted: List[BaseMessage] = []
    for msg in messages:
        if msg.role == "system":
            converted.append(SystemMessage(content=msg.content))
        elif msg.role == "user":
            converted.append(HumanMessage(content=msg.content))
        else:
            converted.append(AIMessage(content=msg.content))
    return converted


class CompletionService:
    """Streams one assistant reply as non-empty text fragments, in order."""

    def stream(self, messages: List[Turn]) -> AsyncIterator[str]:
        raise NotImplementedError


class OpenAICompletionService(CompletionService):
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        temperature: float = 0.7,
        timeout: float = 60.0,
        client: Any = None,
    ) -> None:
        if client is None:
            from openai import AsyncOpenAI

            client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        self._client = client
        self._model = model
        self._temperature = temperature

    async def stream(self, messages: List[Turn]) -> AsyncIterator[str]:
        completion = await self._client.chat.completions.create(
            messages=[msg.model_dump() for msg in messages],
            model=self._model,
            temperature=self._temperature,
            stream=True,
        )
        try:
            async for chunk in completion:
                fragment = extract_fragment(chunk)
                if fragment:
                    yield fragment
        finally:
            await completion.close()


class GeminiCompletionService(CompletionService):
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        temperature: float = 0.7,
        timeout: float = 60.0,
        llm: Any = None,
    ) -> None:
        if llm is None:
            from langchain_google_genai import ChatGoogleGenerativeAI

            llm = ChatGoogleGenerativeAI(
                model=model,
                google_api_key=api_key,
                temperature=temperature,
                timeout=timeout,
                max_retries=0,
            )
        self._llm = llm

    async def stream(self, messages: List[Turn]) -> AsyncIterator[str]:
        async for chunk in self._llm.astream(to_langchain_messages(messages)):
            fragment = _chunk_text(chunk)
            if fragment:
                yield fragment


def build_completion_service(settings: RelaySettings) -> CompletionService:
    if settings.provider not in SUPPORTED_PROVIDERS:
        raise CompletionServiceError(
            f"Unknown CHAT_PROVIDER '{settings.provider}'. "
            f"Expected one of: {', '.join(sorted(SUPPORTED_PROVIDERS))}."
        )

    if settings.provider == "gemini":
        if not settings.google_api_key:
            raise CompletionServiceError("GOOGLE_API_KEY is not set.")
        logger.info("Using Gemini completion provider (model=%s)", settings.model)
        return GeminiCompletionService(
            api_key=settings.google_api_key,
            model=settings.model,
            temperature=settings.temperature,
            timeout=settings.request_timeout,
        )

    if not settings.openai_api_key:
        raise CompletionServiceError("OPENAI_API_KEY is not set.")
    logger.info("Using OpenAI completion provider (model=%s)", settings.model)
    return OpenAICompletionService(
        api_key=settings.openai_api_key,
        model=settings.model,
        base_url=settings.openai_base_url,
        temperature=settings.temperature,
        timeout=settings.request_timeout,
    )
