"""Generative backends.

The planner only depends on the ``GenerativeBackend`` protocol: one
``complete(system_prompt, user_prompt, options)`` call returning text.
``GeminiBackend`` implements it on ``google-genai`` with one client per
configured key, retries and key rotation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

from google import genai
from google.genai import types

from forge_cli.errors import ApiError, ErrorCode
from forge_cli.llm.keys import KeyRotationManager
from forge_cli.llm.retry import RetryHandler, RetryPolicy
from forge_cli.logging import Loggers

if TYPE_CHECKING:
    from forge_cli.config import ForgeSettings

logger = Loggers.llm()

DEFAULT_MODEL = "gemini-2.5-flash"
KEY_CHECK_PROMPT = "Test connection"


@dataclass(frozen=True)
class CompletionOptions:
    """Sampling parameters for one completion."""

    temperature: float = 0.1
    max_tokens: int = 2048
    top_p: float = 0.95
    top_k: int = 40

    @classmethod
    def from_settings(cls, settings: "ForgeSettings") -> "CompletionOptions":
        return cls(
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            top_p=settings.top_p,
            top_k=settings.top_k,
        )


@runtime_checkable
class GenerativeBackend(Protocol):
    """A text-completion service."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions | None = None,
    ) -> str:
        """Return the model's text answer to ``user_prompt``."""
        ...


@dataclass(frozen=True)
class KeyCheck:
    """Outcome of probing one configured key."""

    index: int
    valid: bool
    detail: str


def _default_client_factory(api_key: str) -> Any:
    return genai.Client(api_key=api_key)


class GeminiBackend:
    """Gemini text completion with retry and key rotation.

    Example:
        backend = GeminiBackend.from_settings(settings)
        text = await backend.complete(SYSTEM_PROMPT, "List files")
    """

    def __init__(
        self,
        keys: KeyRotationManager,
        model: str = DEFAULT_MODEL,
        retry: RetryHandler | None = None,
        client_factory: Callable[[str], Any] = _default_client_factory,
    ):
        """Initialize the backend.

        Args:
            keys: Key rotation manager shared with the retry handler.
            model: Gemini model name.
            retry: Retry handler; a default one bound to ``keys`` is created
                when not given.
            client_factory: Builds a ``genai.Client`` for an API key.
        """
        self.keys = keys
        self.model = model
        self.retry = retry or RetryHandler(RetryPolicy(), keys)
        self._client_factory = client_factory
        self._clients: dict[int, Any] = {}

    @classmethod
    def from_settings(cls, settings: "ForgeSettings") -> "GeminiBackend":
        keys = KeyRotationManager(settings.all_api_keys, state_file=settings.key_state_file)
        return cls(
            keys,
            model=settings.model,
            retry=RetryHandler(RetryPolicy.from_settings(settings), keys),
        )

    def _client(self, index: int) -> Any:
        client = self._clients.get(index)
        if client is None:
            client = self._client_factory(self.keys.keys[index])
            self._clients[index] = client
        return client

    async def _generate(
        self,
        index: int,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions,
    ) -> str:
        client = self._client(index)
        response = await client.aio.models.generate_content(
            model=self.model,
            contents=user_prompt,
            config=types.GenerateContentConfig(
                system_instruction=system_prompt or None,
                temperature=options.temperature,
                top_p=options.top_p,
                top_k=options.top_k,
                max_output_tokens=options.max_tokens,
            ),
        )
        return response.text or ""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        options: CompletionOptions | None = None,
    ) -> str:
        """Run one completion through the retry handler.

        Raises:
            ApiError: If no key is configured or a failure is not retryable.
            RetryExhaustedError: If every attempt failed.
        """
        if not self.keys.key_count:
            raise ApiError(
                "No API keys configured. Run 'forge config add-key <KEY>' or set GEMINI_API_KEY.",
                ErrorCode.NO_API_KEYS,
            )
        options = options or CompletionOptions()

        async def attempt() -> str:
            return await self._generate(
                self.keys.current_index, system_prompt, user_prompt, options
            )

        text = await self.retry.execute(attempt)
        logger.debug(
            "completion_received",
            model=self.model,
            key_index=self.keys.current_index,
            prompt_length=len(user_prompt),
            response_length=len(text),
        )
        return text

    async def validate_keys(self) -> list[KeyCheck]:
        """Check every configured key with a tiny request, without retries."""
        checks = []
        for index in range(self.keys.key_count):
            try:
                text = await self._generate(
                    index, "", KEY_CHECK_PROMPT, CompletionOptions(max_tokens=16)
                )
            except Exception as e:
                checks.append(KeyCheck(index, False, ApiError.from_exception(e).message))
            else:
                checks.append(KeyCheck(index, True, text[:50]))

        logger.info(
            "api_keys_validated",
            total=len(checks),
            valid=sum(1 for c in checks if c.valid),
            invalid=sum(1 for c in checks if not c.valid),
        )
        return checks
