"""
Question Answering Engine

Flow for every question:

1. Reject empty input locally.
2. Retrieve the top-K chunks for the raw question text.
3. Keep only results at or above the similarity threshold.
4. Build a grounded prompt from the survivors, or the fallback prompt when
   none survive. The fallback is a normal answer path, not an error.
5. Complete, either blocking or streaming.

References returned to the caller are exactly the numbered blocks shown to
the model, whether or not the model cites them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from ..config import settings
from ..core.errors import ValidationError
from ..providers import registry as providers
from ..providers.models import ChatMessage, ProviderName, normalize_provider_name
from ..vectorstore.base import VectorStore
from ..vectorstore.models import SearchResult
from ..vectorstore.registry import get_vector_store
from .prompts import ReferenceBlock, build_fallback_prompt, build_grounded_prompt, build_messages

logger = logging.getLogger("kb.qa")

NO_ANSWER_MESSAGE = "I do not have enough information to answer that."

ChatHistory = Union[str, Sequence[Union[ChatMessage, Dict[str, Any]]], None]


# ---------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------

class Reference(BaseModel):
    index: int = Field(..., ge=1)
    title: str
    url: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class AnswerResponse(BaseModel):
    answer: str
    references: List[Reference] = Field(default_factory=list)


@dataclass
class StreamingCompletion:
    """
    References are known before the first token; `stream` is single-pass.
    """

    references: List[Reference]
    stream: AsyncIterator[str]
    provider: ProviderName


@dataclass
class PreparedPrompt:
    messages: List[ChatMessage]
    references: List[Reference]
    grounded: bool


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def format_chat_history(messages: Sequence[Union[ChatMessage, Dict[str, Any]]]) -> str:
    """
    Render prior turns as 'role: content' lines.
    """
    lines: List[str] = []
    for message in messages:
        if isinstance(message, ChatMessage):
            role, content = message.role, message.content
        else:
            role, content = message.get("role", "user"), message.get("content", "")
        lines.append(f"{role}: {content}")
    return "\n".join(lines)


def collect_references(results: Sequence[SearchResult]) -> Tuple[List[Reference], List[ReferenceBlock]]:
    """
    Number results by first appearance of each (title, url) pair.

    Results sharing a pair are merged into one block so the numbers in the
    prompt and in the returned list always agree.
    """
    order: List[Tuple[str, Optional[str]]] = []
    contents: Dict[Tuple[str, Optional[str]], List[str]] = {}

    for result in results:
        key = (result.chunk.title, result.chunk.url)
        if key not in contents:
            order.append(key)
            contents[key] = []
        contents[key].append(result.chunk.content)

    references: List[Reference] = []
    blocks: List[ReferenceBlock] = []
    for position, key in enumerate(order, start=1):
        title, url = key
        references.append(Reference(index=position, title=title, url=url))
        blocks.append((position, title, url, "\n\n".join(contents[key])))
    return references, blocks


# ---------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------

class QAEngine:
    """
    Retrieval-augmented question answering over a VectorStore.
    """

    def __init__(
        self,
        store: Optional[VectorStore] = None,
        top_k: Optional[int] = None,
        threshold: Optional[float] = None,
        provider: Optional[Union[str, ProviderName]] = None,
        temperature: Optional[float] = None,
    ) -> None:
        """
        Parameters
        ----------
        store : Optional[VectorStore]
            Store to search. Defaults to the process-wide store.

        top_k : Optional[int]
            Results to retrieve. Defaults to settings.qa_top_k.

        threshold : Optional[float]
            Minimum score, clamped to [0, 1]. Defaults to settings.

        provider : Optional[str]
            Default chat provider when a call passes none.
        """
        self._store = store
        self.top_k = top_k if top_k is not None else settings.qa_top_k
        raw_threshold = settings.qa_similarity_threshold if threshold is None else threshold
        self.threshold = min(1.0, max(0.0, raw_threshold))
        self.provider = provider
        self.temperature = settings.qa_temperature if temperature is None else temperature

    async def _get_store(self) -> VectorStore:
        if self._store is None:
            self._store = await get_vector_store()
        return self._store

    async def prepare(self, question: str, chat_history: ChatHistory = None) -> PreparedPrompt:
        """
        Validate, retrieve, filter and build the chat messages.

        Raises
        ------
        ValidationError
            If the question is empty or whitespace.
        """
        if not question or not question.strip():
            raise ValidationError("Question must not be empty")
        question = question.strip()

        history = chat_history if isinstance(chat_history, str) or chat_history is None else (
            format_chat_history(chat_history)
        )

        store = await self._get_store()
        results = await store.search(question, self.top_k)
        relevant = [r for r in results if r.score >= self.threshold]

        logger.info(
            "Retrieved %d results, %d at or above threshold %.2f",
            len(results),
            len(relevant),
            self.threshold,
        )

        if not relevant:
            prompt = build_fallback_prompt(question, self.threshold, history)
            return PreparedPrompt(messages=build_messages(prompt), references=[], grounded=False)

        references, blocks = collect_references(relevant)
        prompt = build_grounded_prompt(question, blocks, history)
        return PreparedPrompt(messages=build_messages(prompt), references=references, grounded=True)

    def _resolve_provider(self, provider: Optional[Union[str, ProviderName]]) -> ProviderName:
        return normalize_provider_name(provider, default=self.provider)

    async def answer_question(
        self,
        question: str,
        chat_history: ChatHistory = None,
        provider: Optional[Union[str, ProviderName]] = None,
    ) -> AnswerResponse:
        prepared = await self.prepare(question, chat_history)
        completion = await providers.chat_completion(
            prepared.messages,
            temperature=self.temperature,
            provider=self._resolve_provider(provider),
        )
        answer = completion.text.strip() or NO_ANSWER_MESSAGE
        return AnswerResponse(answer=answer, references=prepared.references)

    async def create_streaming_completion(
        self,
        question: str,
        chat_history: ChatHistory = None,
        provider: Optional[Union[str, ProviderName]] = None,
    ) -> StreamingCompletion:
        """
        Prepare the prompt and open a token stream.

        Configuration and retrieval errors raise here, before any token is
        produced. Closing the returned stream cancels the upstream request.
        """
        prepared = await self.prepare(question, chat_history)
        name = self._resolve_provider(provider)
        stream = await providers.chat_completion_stream(
            prepared.messages,
            temperature=self.temperature,
            provider=name,
        )
        return StreamingCompletion(references=prepared.references, stream=stream, provider=name)
