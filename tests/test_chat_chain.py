from __future__ import annotations

from types import SimpleNamespace

import pytest
from langchain_core.messages import AIMessage, AIMessageChunk, HumanMessage, SystemMessage

from backend.chat_chain import (
    CHECKLIST,
    CompletionServiceError,
    GeminiCompletionService,
    OpenAICompletionService,
    SYSTEM_PROMPT,
    build_completion_service,
    build_messages,
    build_preamble,
    checklist_for,
    extract_fragment,
    to_langchain_messages,
)
from backend.config import RelaySettings
from backend.models import TripContextRequest, Turn


def _settings(**overrides) -> RelaySettings:
    values = dict(
        provider="openai",
        model="gpt-3.5-turbo",
        openai_api_key=None,
        openai_base_url=None,
        google_api_key=None,
        temperature=0.7,
        request_timeout=60.0,
        cors_allow_origins=["*"],
        log_level="INFO",
    )
    values.update(overrides)
    return RelaySettings(**values)


def _delta_chunk(content):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


def test_build_messages_puts_preamble_first_and_keeps_order() -> None:
    turns = [
        Turn(role="assistant", content="Hi! Ready to get started?"),
        Turn(role="user", content="Yes"),
        Turn(role="assistant", content="Where are you going?"),
        Turn(role="user", content="Canada"),
    ]

    messages = build_messages(turns)

    assert messages[0] == build_preamble()
    assert messages[0].role == "system"
    assert messages[1:] == turns


def test_empty_transcript_yields_only_preamble() -> None:
    assert build_messages([]) == [build_preamble()]


def test_trip_context_builds_preamble_and_single_user_turn() -> None:
    payload = TripContextRequest(
        userMessage="Anything else?",
        destination="China",
        date="2026-11-02",
        currentStep="documents",
    )

    messages = build_messages(payload)

    assert len(messages) == 2
    preamble, user = messages
    assert preamble.role == "system"
    assert preamble.content.startswith(SYSTEM_PROMPT)
    assert "traveling to China on 2026-11-02" in preamble.content
    assert "The current checklist step is: documents." in preamble.content
    assert "Do you have your visa for China?" in preamble.content
    assert user == Turn(role="user", content="Anything else?")


def test_trip_context_without_details_says_not_specified() -> None:
    preamble = build_preamble(TripContextRequest(userMessage="Hi"))

    assert "traveling to not specified on not specified" in preamble.content


def test_checklist_adds_country_specific_items() -> None:
    general = CHECKLIST["general"]

    assert checklist_for(None) == general
    assert checklist_for("Paris, France") == general
    assert checklist_for("Toronto, Canada")[-1] == CHECKLIST["country_specific"]["canada"][0]
    assert checklist_for("USA")[-1] == CHECKLIST["country_specific"]["us"][0]


def test_extract_fragment_reads_delta_content() -> None:
    assert extract_fragment(_delta_chunk("Sure")) == "Sure"
    assert extract_fragment(_delta_chunk("")) is None
    assert extract_fragment(_delta_chunk(None)) is None
    assert extract_fragment(SimpleNamespace(choices=[])) is None


def test_to_langchain_messages_maps_roles() -> None:
    converted = to_langchain_messages(
        [
            Turn(role="system", content="s"),
            Turn(role="user", content="u"),
            Turn(role="assistant", content="a"),
        ]
    )

    assert [type(m) for m in converted] == [SystemMessage, HumanMessage, AIMessage]
    assert [m.content for m in converted] == ["s", "u", "a"]


class _FakeAsyncStream:
    def __init__(self, chunks) -> None:
        self._chunks = list(chunks)
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            yield chunk

    async def close(self) -> None:
        self.closed = True


class _FakeCompletions:
    def __init__(self, stream: _FakeAsyncStream) -> None:
        self.stream = stream
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return self.stream


@pytest.mark.asyncio
async def test_openai_service_streams_non_empty_fragments_in_order() -> None:
    stream = _FakeAsyncStream(
        [_delta_chunk("Sure"), _delta_chunk(None), _delta_chunk(", "), _delta_chunk(""), _delta_chunk("here you go.")]
    )
    completions = _FakeCompletions(stream)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    service = OpenAICompletionService(api_key="k", model="gpt-3.5-turbo", client=client)
    messages = build_messages([Turn(role="user", content="Hi")])

    fragments = [fragment async for fragment in service.stream(messages)]

    assert fragments == ["Sure", ", ", "here you go."]
    assert "".join(fragments) == "Sure, here you go."
    assert stream.closed is True
    call = completions.calls[0]
    assert call["stream"] is True
    assert call["model"] == "gpt-3.5-turbo"
    assert call["messages"][0]["role"] == "system"
    assert call["messages"][1] == {"role": "user", "content": "Hi"}


@pytest.mark.asyncio
async def test_gemini_service_streams_chunk_text() -> None:
    class _FakeLLM:
        def __init__(self) -> None:
            self.received = None

        async def astream(self, messages):
            self.received = messages
            for content in ["Hello", "", [{"type": "text", "text": "!"}]]:
                yield AIMessageChunk(content=content)

    llm = _FakeLLM()
    service = GeminiCompletionService(api_key="k", model="gemini-2.5-flash", llm=llm)

    fragments = [f async for f in service.stream([Turn(role="user", content="Hi")])]

    assert fragments == ["Hello", "!"]
    assert isinstance(llm.received[0], HumanMessage)


def test_build_completion_service_requires_api_key() -> None:
    with pytest.raises(CompletionServiceError, match="OPENAI_API_KEY"):
        build_completion_service(_settings())

    with pytest.raises(CompletionServiceError, match="GOOGLE_API_KEY"):
        build_completion_service(_settings(provider="gemini", model="gemini-2.5-flash"))


def test_build_completion_service_rejects_unknown_provider() -> None:
    with pytest.raises(CompletionServiceError, match="Unknown CHAT_PROVIDER"):
        build_completion_service(_settings(provider="mystery"))


def test_build_completion_service_returns_openai_service() -> None:
    service = build_completion_service(_settings(openai_api_key="test-key"))

    assert isinstance(service, OpenAICompletionService)
