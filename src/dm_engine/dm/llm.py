"""Chat-completion client.

The orchestrator talks to the narrating model through the small
ChatClient protocol. OpenAIChatClient is the production implementation;
tests drive the orchestrator with scripted clients instead.

Failures here are terminal for a turn and surface as AIControlError
subclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from openai import APIConnectionError, APIStatusError, OpenAI, OpenAIError, RateLimitError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from dm_engine.core.config import AIProviderSettings, get_settings
from dm_engine.core.exceptions import (
    AIConnectionError,
    AIRateLimitError,
    AIResponseError,
)
from dm_engine.core.logging import get_logger


logger = get_logger(__name__)

PROVIDER = "openai"


@dataclass(frozen=True)
class ToolCallRequest:
    """A tool invocation requested by the model.

    Attributes:
        id: Provider-assigned call id, echoed back in the tool message.
        name: Requested tool name (not yet validated).
        arguments: Raw JSON argument string (not yet validated).
    """

    id: str
    name: str
    arguments: str


@dataclass(frozen=True)
class ChatResponse:
    """One model reply: free text, tool requests, or both."""

    content: str | None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class ChatClient(Protocol):
    """Anything that can run one chat-completion round."""

    def complete(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> ChatResponse: ...


class OpenAIChatClient:
    """Chat-completion client for OpenAI or any compatible endpoint.

    Connection failures and rate limits are retried with exponential
    backoff before they are raised.
    """

    def __init__(self, *, settings: AIProviderSettings | None = None, client: Any | None = None) -> None:
        """Initialize the client.

        Args:
            settings: Provider settings; defaults to the application settings.
            client: Pre-built OpenAI client, mainly for tests.
        """
        self._settings = settings or get_settings().ai
        self.model = self._settings.chat_model
        self._client = client

        logger.info("OpenAIChatClient initialized", model=self.model)

    def _get_client(self) -> Any:
        """Get or create the OpenAI client."""
        if self._client is None:
            api_key = self._settings.openai_api_key
            self._client = OpenAI(
                api_key=api_key.get_secret_value() if api_key else None,
                base_url=self._settings.base_url,
                timeout=self._settings.timeout_seconds,
                max_retries=0,
            )
        return self._client

    @retry(
        retry=retry_if_exception_type((APIConnectionError, RateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _create(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> Any:
        return self._get_client().chat.completions.create(
            model=self.model,
            messages=messages,
            tools=tools,
            tool_choice="auto",
            temperature=self._settings.temperature,
            max_tokens=self._settings.max_tokens,
        )

    def complete(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> ChatResponse:
        """Run one chat-completion round.

        Args:
            messages: Conversation in OpenAI message format.
            tools: Tool schemas in OpenAI function format.

        Returns:
            The parsed model reply.

        Raises:
            AIRateLimitError: If rate limits persist after retries.
            AIConnectionError: If the service is unreachable or times out.
            AIResponseError: If the service rejects the request or returns
                something unusable.
        """
        try:
            response = self._create(messages, tools)
        except RateLimitError as exc:
            raise AIRateLimitError(
                f"Rate limit exceeded: {exc}", model=self.model, provider=PROVIDER
            ) from exc
        except APIConnectionError as exc:
            raise AIConnectionError(
                f"Failed to reach chat service: {exc}", model=self.model, provider=PROVIDER
            ) from exc
        except APIStatusError as exc:
            raise AIResponseError(
                f"Chat API error: {exc}",
                model=self.model,
                provider=PROVIDER,
                details={"status_code": exc.status_code},
            ) from exc
        except OpenAIError as exc:
            raise AIResponseError(f"Chat request failed: {exc}", model=self.model, provider=PROVIDER) from exc

        if not response.choices:
            raise AIResponseError("Chat response contained no choices", model=self.model, provider=PROVIDER)

        message = response.choices[0].message
        tool_calls = [
            ToolCallRequest(
                id=call.id,
                name=call.function.name,
                arguments=call.function.arguments or "{}",
            )
            for call in (message.tool_calls or [])
        ]

        logger.debug(
            "Chat completion received",
            model=self.model,
            tool_calls=len(tool_calls),
            content_length=len(message.content or ""),
        )
        return ChatResponse(content=message.content, tool_calls=tool_calls)


__all__ = [
    "ToolCallRequest",
    "ChatResponse",
    "ChatClient",
    "OpenAIChatClient",
]
