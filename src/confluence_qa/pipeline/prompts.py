"""
QA Prompt Templates

Two prompt shapes exist:

- grounded: retrieved chunks are embedded as numbered reference blocks and
  the model is told to cite them inline as [n] only where they apply
- fallback: nothing cleared the similarity threshold, so the model answers
  from general knowledge and must say that no documentation matched
"""

from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from ..providers.models import ChatMessage

SYSTEM_PROMPT = """\
You are a helpful, expert assistant for the team's documentation.

Context usage:
- Prefer the provided context when it is relevant to the question.
- If the context is irrelevant or incomplete, say so and give a general helpful answer.
- Cite references inline as [1], [2] only when the reference directly supports the statement.
- Never invent or force citations.

Formatting:
- Use structured Markdown with short paragraphs.
- Use fenced code blocks for commands and code.
- Do not add a separate "References" section; the caller lists references."""


# (index, title, url, content)
ReferenceBlock = Tuple[int, str, Optional[str], str]


def format_reference_block(index: int, title: str, url: Optional[str], content: str) -> str:
    lines = [f"Reference [{index}]: {title}"]
    if url:
        lines.append(f"Source: {url}")
    lines.append(content)
    return "\n".join(lines)


def build_context(blocks: Sequence[ReferenceBlock]) -> str:
    return "\n\n---\n\n".join(format_reference_block(*block) for block in blocks)


def _history_section(chat_history: Optional[str]) -> str:
    if not chat_history or not chat_history.strip():
        return ""
    return f"Conversation so far:\n{chat_history.strip()}\n\n"


def build_grounded_prompt(
    question: str,
    blocks: Sequence[ReferenceBlock],
    chat_history: Optional[str] = None,
) -> str:
    return (
        f"{_history_section(chat_history)}"
        "Answer the question using the context below.\n"
        "- Cite a reference inline as [n] only when it is truly relevant to that statement.\n"
        "- Never fabricate citations or cite a reference number that is not listed.\n"
        "- Prefer the context over general knowledge; if it does not cover the question, say so.\n\n"
        f"Context:\n{build_context(blocks)}\n\n"
        f"Question: {question}"
    )


def build_fallback_prompt(
    question: str,
    threshold: float,
    chat_history: Optional[str] = None,
) -> str:
    return (
        f"{_history_section(chat_history)}"
        "No relevant context was found in the documentation for this question "
        f"(no retrieved passage reached the similarity threshold of {threshold:.2f}).\n"
        "Answer from your general knowledge, and tell the user clearly that the answer "
        "is not based on the documentation. Do not include citations.\n\n"
        f"Question: {question}"
    )


def build_messages(user_prompt: str) -> List[ChatMessage]:
    return [
        ChatMessage(role="system", content=SYSTEM_PROMPT),
        ChatMessage(role="user", content=user_prompt),
    ]
