"""
Streaming Answer Events

Turns a streaming completion into an ordered event sequence suitable for
Server-Sent Events:

    metadata -> content* -> done
    metadata? -> content* -> error -> done

Every sequence ends with `done`, so a consumer can always tell a finished
answer from a truncated one.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from typing import AsyncIterator, Literal, Optional, Union

from pydantic import BaseModel

from ..providers.models import ProviderName
from .qa import ChatHistory, QAEngine

logger = logging.getLogger("kb.qa")

EventType = Literal["metadata", "content", "error", "done"]


class QAEvent(BaseModel):
    type: EventType
    data: str = ""
    id: Optional[str] = None

    def to_sse(self) -> str:
        payload = self.model_dump(exclude_none=True)
        return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


async def stream_answer_events(
    engine: QAEngine,
    question: str,
    chat_history: ChatHistory = None,
    provider: Optional[Union[str, ProviderName]] = None,
    request_id: Optional[str] = None,
) -> AsyncIterator[QAEvent]:
    request_id = request_id or str(uuid.uuid4())
    started = time.monotonic()
    tokens = 0
    stream = None

    try:
        completion = await engine.create_streaming_completion(question, chat_history, provider)
        stream = completion.stream

        yield QAEvent(
            type="metadata",
            data=json.dumps(
                {
                    "request_id": request_id,
                    "references": [r.model_dump() for r in completion.references],
                    "provider": completion.provider.value,
                },
                ensure_ascii=False,
            ),
        )

        async for token in stream:
            if not token:
                continue
            yield QAEvent(type="content", data=token, id=f"{request_id}-chunk-{tokens}")
            tokens += 1

    except Exception as exc:
        logger.error("QA request %s failed after %d tokens: %s", request_id, tokens, exc)
        yield QAEvent(
            type="error",
            data=str(exc) or "Unable to answer the question at this time.",
            id=f"{request_id}-error",
        )
    finally:
        if stream is not None and hasattr(stream, "aclose"):
            await stream.aclose()

    logger.info(
        "QA request %s finished: %d tokens in %.0f ms",
        request_id,
        tokens,
        (time.monotonic() - started) * 1000,
    )
    yield QAEvent(type="done", id=f"{request_id}-done")
