"""
Client-side chat state for the travel-preparation chatbot.

The Streamlit page owns one ChatSession per browser session. A session keeps the
transcript, talks to the relay over HTTP, and grows the in-progress assistant
turn fragment by fragment while the reply streams in.
"""
from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional

import requests

from backend.models import Turn

logger = logging.getLogger(__name__)

GREETING = (
    "Hi! I'm your travel assistant. I'll help you make sure you're fully prepared "
    "for your trip. From packing to documents, I'll guide you every step of the way. "
    "Ready to get started?"
)
APOLOGY = "I'm sorry, but I encountered an error. Please try again later."


class RelayError(RuntimeError):
    def __init__(self, status_code: int, details: str):
        super().__init__(f"Relay responded with HTTP {status_code}: {details}")
        self.status_code = status_code
        self.details = details


@dataclass
class AssistantTurnBuilder:
    """The assistant reply while it is still streaming."""

    fragments: List[str] = field(default_factory=list)

    def append(self, fragment: str) -> None:
        self.fragments.append(fragment)

    @property
    def content(self) -> str:
        return "".join(self.fragments)

    def build(self) -> Turn:
        return Turn(role="assistant", content=self.content)


class Transcript:
    """Ordered turns of one session, plus at most one streaming assistant turn."""

    def __init__(self, turns: Optional[List[Turn]] = None):
        self._turns: List[Turn] = list(turns or [])
        self.pending: Optional[AssistantTurnBuilder] = None

    @classmethod
    def seeded(cls) -> "Transcript":
        return cls([Turn(role="assistant", content=GREETING)])

    def __len__(self) -> int:
        return len(self._turns) + (1 if self.pending is not None else 0)

    @property
    def turns(self) -> List[Turn]:
        """Snapshot of the transcript; the streaming turn, if any, comes last."""
        snapshot = list(self._turns)
        if self.pending is not None:
            snapshot.append(self.pending.build())
        return snapshot

    def append(self, turn: Turn) -> None:
        if self.pending is not None:
            raise RuntimeError("Cannot append a turn while an assistant reply is streaming.")
        self._turns.append(turn)

    def open_assistant_turn(self) -> AssistantTurnBuilder:
        if self.pending is not None:
            raise RuntimeError("An assistant reply is already streaming.")
        self.pending = AssistantTurnBuilder()
        return self.pending

    def close_assistant_turn(self) -> Turn:
        if self.pending is None:
            raise RuntimeError("No assistant reply is streaming.")
        turn = self.pending.build()
        self.pending = None
        self._turns.append(turn)
        return turn

    def discard_assistant_turn(self) -> None:
        self.pending = None

    def payload(self) -> List[dict]:
        """Committed turns in the JSON shape the relay expects."""
        return [turn.model_dump() for turn in self._turns]


def iter_fragments(response: requests.Response) -> Iterator[str]:
    """Decode a streamed relay body into text as the bytes arrive."""
    decoder = codecs.getincrementaldecoder("utf-8")()
    with response:
        for chunk in response.iter_content(chunk_size=None):
            text = decoder.decode(chunk)
            if text:
                yield text
        tail = decoder.decode(b"", final=True)
        if tail:
            yield tail


class RelayTransport:
    """HTTP connection to the chat relay."""

    def __init__(
        self,
        base_url: str,
        *,
        connect_timeout: float = 10.0,
        read_timeout: float = 120.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = base_url.rstrip("/") + "/api/chat"
        self.timeout = (connect_timeout, read_timeout)
        self.session = session or requests.Session()

    def open(self, turns: List[dict]) -> Iterator[str]:
        response = self.session.post(
            self.url,
            json=turns,
            stream=True,
            timeout=self.timeout,
        )
        if not response.ok:
            details = response.reason
            try:
                body = response.json()
            except ValueError:
                body = None
            finally:
                response.close()
            # Proxies in front of the relay may answer with any JSON shape
            if isinstance(body, dict) and body.get("details"):
                details = body["details"]
            raise RelayError(response.status_code, str(details))
        return iter_fragments(response)


RenderCallback = Callable[[Transcript], None]


class ChatSession:
    def __init__(self, transport: RelayTransport, transcript: Optional[Transcript] = None):
        self.transport = transport
        self.transcript = transcript if transcript is not None else Transcript.seeded()
        self.in_flight = False

    def can_submit(self) -> bool:
        return not self.in_flight

    def reset(self) -> None:
        if self.in_flight:
            return
        self.transcript = Transcript.seeded()

    def submit(self, text: str, on_update: Optional[RenderCallback] = None) -> bool:
        """
        Send one user message and stream the reply into the transcript.

        Returns False without doing anything when the message is blank or a
        reply is still streaming.
        """
        if not text or not text.strip() or self.in_flight:
            return False

        def render() -> None:
            if on_update is not None:
                on_update(self.transcript)

        self.transcript.append(Turn(role="user", content=text))
        self.in_flight = True
        fragments: Optional[Iterator[str]] = None

        try:
            render()
            fragments = self.transport.open(self.transcript.payload())
            builder = self.transcript.open_assistant_turn()
            render()
            for fragment in fragments:
                builder.append(fragment)
                render()
            self.transcript.close_assistant_turn()
        except (requests.RequestException, RelayError, UnicodeDecodeError) as exc:
            logger.error("Chat relay call failed: %s", exc)
            self.transcript.discard_assistant_turn()
            self.transcript.append(Turn(role="assistant", content=APOLOGY))
        finally:
            # Anything else (a page rerun, a render failure) abandons the reply.
            if self.transcript.pending is not None:
                logger.warning("Chat reply abandoned before the stream finished")
                self.transcript.discard_assistant_turn()
            close = getattr(fragments, "close", None)
            if close is not None:
                close()
            self.in_flight = False

        render()
        return True
