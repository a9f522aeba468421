"""Streamed completions applied as live document edits."""

from .events import (
    HunkApplied,
    HunkUnresolved,
    StreamCancelled,
    StreamCompleted,
    StreamEvent,
    StreamFailed,
    encode_sse,
)
from .orchestrator import CompletionOrchestrator, CompletionStream, OrchestratorConfig, StreamHandle
from .prompts import PromptBuilder, PromptBuilderConfig
from .providers import (
    CompletionRequest,
    ModelProvider,
    OpenAIStreamProvider,
    ProviderEvent,
    ScriptedProvider,
    echo_region,
)

__all__ = [
    "CompletionOrchestrator",
    "CompletionRequest",
    "CompletionStream",
    "HunkApplied",
    "HunkUnresolved",
    "ModelProvider",
    "OpenAIStreamProvider",
    "OrchestratorConfig",
    "PromptBuilder",
    "PromptBuilderConfig",
    "ProviderEvent",
    "ScriptedProvider",
    "StreamCancelled",
    "StreamCompleted",
    "StreamEvent",
    "StreamFailed",
    "StreamHandle",
    "echo_region",
    "encode_sse",
]
