"""
Common utilities shared across picturebook modules.
"""

from .config import EngineConfig
from .errors import (
    InvalidInput,
    Locked,
    MalformedOutput,
    NoImage,
    NotFound,
    PageNotFound,
    PicturebookError,
    ProjectNotFound,
    StorageFailure,
    Unauthorized,
)
from .keys import normalize_key, strip_query
from .llm import ChatResult, CompletionCallable, ToolCall, call_chat_completion

__all__ = [
    "ChatResult",
    "CompletionCallable",
    "EngineConfig",
    "InvalidInput",
    "Locked",
    "MalformedOutput",
    "NoImage",
    "NotFound",
    "PageNotFound",
    "PicturebookError",
    "ProjectNotFound",
    "StorageFailure",
    "ToolCall",
    "Unauthorized",
    "call_chat_completion",
    "normalize_key",
    "strip_query",
]
