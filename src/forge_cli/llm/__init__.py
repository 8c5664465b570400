"""Generative backend access: key rotation, retries and the Gemini client."""

from forge_cli.llm.backend import (
    CompletionOptions,
    GeminiBackend,
    GenerativeBackend,
    KeyCheck,
)
from forge_cli.llm.keys import KeyRotationManager, mask_key
from forge_cli.llm.retry import RetryDecision, RetryHandler, RetryPolicy, decide

__all__ = [
    "CompletionOptions",
    "GeminiBackend",
    "GenerativeBackend",
    "KeyCheck",
    "KeyRotationManager",
    "RetryDecision",
    "RetryHandler",
    "RetryPolicy",
    "decide",
    "mask_key",
]
