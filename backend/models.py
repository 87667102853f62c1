# backend/models.py
from __future__ import annotations

import json
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

Role = Literal["system", "user", "assistant"]


class MalformedPayloadError(ValueError):
    """Request body is valid JSON but not one of the accepted shapes."""


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class TripContextRequest(BaseModel):
    userMessage: str = Field(min_length=1)
    destination: Optional[str] = None
    date: Optional[str] = None
    currentStep: Optional[str] = None


ChatPayload = Union[list[Turn], TripContextRequest]

_TURNS = TypeAdapter(list[Turn])


def parse_chat_payload(body: bytes | str) -> ChatPayload:
    """
    Decode a /api/chat request body.

    A JSON array is read as the full transcript; a JSON object is read as a
    single user message with trip context. json.JSONDecodeError propagates
    for bodies that are not JSON at all.
    """
    data = json.loads(body)

    try:
        if isinstance(data, list):
            return _TURNS.validate_python(data)
        if isinstance(data, dict):
            return TripContextRequest.model_validate(data)
    except ValidationError as exc:
        raise MalformedPayloadError(str(exc)) from exc

    raise MalformedPayloadError(
        "Request body must be an array of turns or an object with userMessage."
    )
