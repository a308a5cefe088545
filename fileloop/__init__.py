"""fileloop: let a model read, request and edit project files through a registry."""

from .loop import ConversationResult, LoopResult
from .registry import DirectoryRegistry, FileReference, FileRegistry, InMemoryRegistry
from .report import AgentError, ConfigError, TransportError
from .session import Session

__all__ = [
    "AgentError",
    "ConfigError",
    "ConversationResult",
    "DirectoryRegistry",
    "FileReference",
    "FileRegistry",
    "InMemoryRegistry",
    "LoopResult",
    "Session",
    "TransportError",
]
