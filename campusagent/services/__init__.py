from .composio_client import AccountNotFoundError, CapabilityProviderError, ComposioClient
from .connection_registry import (
    ConnectionRegistry,
    ConnectionSnapshot,
    ServiceConnection,
)
from .llm_client import (
    AnthropicConfig,
    AnthropicMessagesClient,
    LLMRequestError,
    PromptTooLongError,
)
from .speech import SpeechClient

__all__ = [
    "AccountNotFoundError",
    "AnthropicConfig",
    "AnthropicMessagesClient",
    "CapabilityProviderError",
    "ComposioClient",
    "ConnectionRegistry",
    "ConnectionSnapshot",
    "LLMRequestError",
    "PromptTooLongError",
    "ServiceConnection",
    "SpeechClient",
    "ConversationOrchestrator",
    "TurnOutcome",
    "TurnState",
]


def __getattr__(name: str):
    if name in {"ConversationOrchestrator", "TurnOutcome", "TurnState"}:
        from .orchestrator import ConversationOrchestrator, TurnOutcome, TurnState

        return {
            "ConversationOrchestrator": ConversationOrchestrator,
            "TurnOutcome": TurnOutcome,
            "TurnState": TurnState,
        }[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
