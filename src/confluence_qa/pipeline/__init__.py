from .cache import CacheEntry, ChangeResult, VectorCache, build_entry, evaluate_change, upgrade_cache_payload
from .run_log import RunLog, read_run_log, write_run_log
from .build import BuildOptions, KnowledgeBase, KnowledgeBaseStats, build_knowledge_base
from .qa import (
    NO_ANSWER_MESSAGE,
    AnswerResponse,
    QAEngine,
    Reference,
    StreamingCompletion,
    format_chat_history,
)
from .events import QAEvent, stream_answer_events

__all__ = [
    "AnswerResponse",
    "BuildOptions",
    "CacheEntry",
    "ChangeResult",
    "KnowledgeBase",
    "KnowledgeBaseStats",
    "NO_ANSWER_MESSAGE",
    "QAEngine",
    "QAEvent",
    "Reference",
    "RunLog",
    "StreamingCompletion",
    "VectorCache",
    "build_entry",
    "build_knowledge_base",
    "evaluate_change",
    "format_chat_history",
    "stream_answer_events",
    "upgrade_cache_payload",
    "read_run_log",
    "write_run_log",
]
