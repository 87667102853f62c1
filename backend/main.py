# backend/main.py
import json
import logging
from functools import lru_cache
from typing import AsyncGenerator, AsyncIterator, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from .chat_chain import (
    CompletionService,
    CompletionServiceError,
    build_completion_service,
    build_messages,
)
from .config import load_settings
from .models import ChatPayload, MalformedPayloadError, parse_chat_payload

settings = load_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Travel Preparation Chatbot Relay",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_completion_service() -> CompletionService:
    return build_completion_service(settings)


def error_response(status_code: int, error: str, details: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "details": details},
    )


@app.exception_handler(CompletionServiceError)
async def completion_service_error_handler(
    request: Request, exc: CompletionServiceError
) -> JSONResponse:
    logger.error("Completion service unavailable: %s", exc)
    return error_response(500, "Internal Server Error", str(exc))


async def relay_fragments(
    first: Optional[str], fragments: AsyncGenerator[str, None]
) -> AsyncIterator[str]:
    """
    Forward fragments to the response body in the order they were produced.

    An upstream failure is logged and re-raised so the server aborts the
    response instead of finishing it as a successful (truncated) reply.
    """
    count = 0
    try:
        if first is not None:
            count += 1
            yield first
        async for fragment in fragments:
            count += 1
            yield fragment
    except Exception:
        logger.exception("Error during streaming after %d fragment(s)", count)
        raise
    finally:
        await fragments.aclose()
    logger.debug("Stream completed with %d fragment(s)", count)


@app.exception_handler(MalformedPayloadError)
async def malformed_payload_handler(
    request: Request, exc: MalformedPayloadError
) -> JSONResponse:
    logger.warning("Rejected malformed chat payload: %s", exc)
    return error_response(400, "Bad Request", str(exc))


@app.exception_handler(json.JSONDecodeError)
@app.exception_handler(UnicodeDecodeError)
async def undecodable_body_handler(request: Request, exc: ValueError) -> JSONResponse:
    logger.error("Error in chat handler: %s", exc)
    return error_response(500, "Internal Server Error", str(exc))


async def read_chat_payload(request: Request) -> ChatPayload:
    body = await request.body()
    return parse_chat_payload(body)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/api/chat")
async def chat_endpoint(
    # Declared first so a bad body is rejected before the provider is built.
    payload: ChatPayload = Depends(read_chat_payload),
    service: CompletionService = Depends(get_completion_service),
):
    messages = build_messages(payload)
    fragments = service.stream(messages)

    # Pull the first fragment here so a failing upstream call still gets a JSON error.
    try:
        first: Optional[str] = await fragments.__anext__()
    except StopAsyncIteration:
        first = None
    except Exception as exc:
        logger.exception("Completion call failed before streaming")
        return error_response(500, "Internal Server Error", str(exc))

    return StreamingResponse(
        relay_fragments(first, fragments),
        media_type="text/plain; charset=utf-8",
    )
