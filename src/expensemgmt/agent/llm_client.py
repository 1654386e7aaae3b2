"""Provider-neutral LLM client with optional fallback.

Defines a protocol-based interface for chat completions with function
calling, and concrete implementations:

- :class:`AzureOpenAILLMClient` — Azure OpenAI deployment (default provider)
- :class:`OpenAILLMClient` — OpenAI chat completions API
- :class:`AnthropicLLMClient` — Anthropic messages API
- :class:`OllamaLLMClient` — local Ollama server
- :class:`FallbackLLMClient` — composite: tries a primary, falls back on error

All implementations speak the same :class:`ChatMessage` transcript, including
assistant turns that carry tool calls and ``tool`` turns carrying results;
each client converts those to its provider's wire format.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from expensemgmt.config import Settings, settings

logger = logging.getLogger(__name__)


# ── Data models ───────────────────────────────────────────────────────────────


class ToolCall(BaseModel):
    """A single tool call requested by the LLM."""

    id: str = ""
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    #: Set when the provider sent arguments that are not a JSON object.
    parse_error: str | None = None


class LLMResponse(BaseModel):
    """Structured response from an LLM call."""

    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    finish_reason: str = "stop"
    input_tokens: int | None = None
    output_tokens: int | None = None
    latency_ms: int | None = None
    provider: str = ""
    model: str = ""


# ── Message types ─────────────────────────────────────────────────────────────


class ChatMessage(BaseModel):
    """A single message in a chat conversation."""

    role: str  # "system", "user", "assistant", "tool"
    content: str = ""
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] | None = None


# ── Tool schema type (matches OpenAI function-calling format) ─────────────────

ToolSchema = dict[str, Any]
"""JSON-serializable tool schema in OpenAI function-calling format:

    {
        "type": "function",
        "function": {
            "name": "...",
            "description": "...",
            "parameters": { ... JSON Schema ... }
        }
    }
"""


# ── Protocol ──────────────────────────────────────────────────────────────────


@runtime_checkable
class LLMClient(Protocol):
    """Abstract interface for LLM communication."""

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
    ) -> LLMResponse:
        """Send a chat completion request to the LLM.

        Args:
            messages: Conversation transcript as a list of chat messages.
            tools: Optional list of tool schemas the LLM may call.

        Returns:
            Structured LLM response with content and/or tool calls.
        """
        ...


# ── OpenAI implementation ─────────────────────────────────────────────────────


class OpenAILLMClient:
    """LLM client wrapping the OpenAI chat completions API.

    Uses ``settings.openai_api_key`` and ``settings.openai_model``.
    """

    provider = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
    ) -> None:
        self._api_key = api_key or settings.openai_api_key
        self._model = model or settings.openai_model

    def _make_client(self) -> Any:
        import openai

        return openai.AsyncOpenAI(api_key=self._api_key)

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
    ) -> LLMResponse:
        """Send a request to the chat completions endpoint."""
        client = self._make_client()

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": _messages_to_openai(messages),
        }
        if tools:
            kwargs["tools"] = tools  # OpenAI format is the canonical format

        start = time.monotonic()
        response = await client.chat.completions.create(**kwargs)
        latency_ms = int((time.monotonic() - start) * 1000)

        choice = response.choices[0]
        content = choice.message.content or ""
        tool_calls: list[ToolCall] = []

        if choice.message.tool_calls:
            for tc in choice.message.tool_calls:
                arguments, error = _parse_arguments(tc.function.arguments)
                tool_calls.append(
                    ToolCall(
                        id=tc.id,
                        name=tc.function.name,
                        arguments=arguments,
                        parse_error=error,
                    )
                )

        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            finish_reason="tool_calls" if tool_calls else (choice.finish_reason or "stop"),
            input_tokens=response.usage.prompt_tokens if response.usage else None,
            output_tokens=response.usage.completion_tokens if response.usage else None,
            latency_ms=latency_ms,
            provider=self.provider,
            model=self._model,
        )


AZURE_COGNITIVE_SCOPE = "https://cognitiveservices.azure.com/.default"


class AzureOpenAILLMClient(OpenAILLMClient):
    """LLM client for an Azure OpenAI chat deployment.

    The deployment name takes the place of the model name.  With an API key
    the key is sent as-is; without one the client authenticates through
    Microsoft Entra ID:

    - :class:`ManagedIdentityCredential` when a managed identity client ID
      is configured (user-assigned identity)
    - :class:`DefaultAzureCredential` otherwise (environment, workload or
      system-assigned identity, Azure CLI login, ...)

    The credential and its token provider are created once per client.
    """

    provider = "azure_openai"

    def __init__(
        self,
        endpoint: str | None = None,
        deployment: str | None = None,
        api_key: str | None = None,
        api_version: str | None = None,
        use_identity: bool | None = None,
        managed_identity_client_id: str | None = None,
    ) -> None:
        super().__init__(
            api_key=api_key or settings.azure_openai_api_key,
            model=deployment or settings.azure_openai_deployment,
        )
        self._endpoint = endpoint or settings.azure_openai_endpoint
        self._api_version = api_version or settings.azure_openai_api_version
        self._use_identity = (
            settings.azure_openai_use_identity if use_identity is None else use_identity
        )
        self._managed_identity_client_id = (
            managed_identity_client_id or settings.managed_identity_client_id
        )
        self._token_provider: Any = None

    def _azure_ad_token_provider(self) -> Any:
        if self._token_provider is None:
            from azure.identity.aio import (
                DefaultAzureCredential,
                ManagedIdentityCredential,
                get_bearer_token_provider,
            )

            if self._managed_identity_client_id:
                logger.info(
                    "Using ManagedIdentityCredential with client ID %s",
                    self._managed_identity_client_id,
                )
                credential = ManagedIdentityCredential(client_id=self._managed_identity_client_id)
            else:
                logger.info("Using DefaultAzureCredential")
                credential = DefaultAzureCredential()
            self._token_provider = get_bearer_token_provider(credential, AZURE_COGNITIVE_SCOPE)
        return self._token_provider

    def _make_client(self) -> Any:
        import openai

        if self._api_key:
            return openai.AsyncAzureOpenAI(
                azure_endpoint=self._endpoint,
                api_key=self._api_key,
                api_version=self._api_version,
            )
        if not self._use_identity:
            raise openai.OpenAIError(
                "Azure OpenAI has no API key and identity authentication is disabled"
            )
        return openai.AsyncAzureOpenAI(
            azure_endpoint=self._endpoint,
            azure_ad_token_provider=self._azure_ad_token_provider(),
            api_version=self._api_version,
        )


# ── Anthropic implementation ──────────────────────────────────────────────────


class AnthropicLLMClient:
    """LLM client wrapping the Anthropic messages API."""

    provider = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_tokens: int = 2048,
    ) -> None:
        self._api_key = api_key or settings.anthropic_api_key
        self._model = model or settings.anthropic_model
        self._max_tokens = max_tokens

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
    ) -> LLMResponse:
        """Send a request to the Anthropic API."""
        import anthropic

        client = anthropic.AsyncAnthropic(api_key=self._api_key)

        system_text, api_messages = _messages_to_anthropic(messages)
        anthropic_tools = _tools_to_anthropic(tools) if tools else []

        kwargs: dict[str, Any] = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": api_messages,
        }
        if system_text:
            kwargs["system"] = system_text
        if anthropic_tools:
            kwargs["tools"] = anthropic_tools

        start = time.monotonic()
        response = await client.messages.create(**kwargs)
        latency_ms = int((time.monotonic() - start) * 1000)

        content = ""
        tool_calls: list[ToolCall] = []

        for block in response.content:
            if block.type == "text":
                content += block.text
            elif block.type == "tool_use":
                if isinstance(block.input, dict):
                    tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=block.input))
                else:
                    tool_calls.append(
                        ToolCall(
                            id=block.id,
                            name=block.name,
                            parse_error="tool input is not an object",
                        )
                    )

        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            finish_reason=_ANTHROPIC_STOP_REASONS.get(response.stop_reason or "", "stop"),
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            latency_ms=latency_ms,
            provider=self.provider,
            model=self._model,
        )


_ANTHROPIC_STOP_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "tool_use": "tool_calls",
    "max_tokens": "length",
}


# ── Ollama implementation ─────────────────────────────────────────────────────


class OllamaLLMClient:
    """LLM client wrapping the Ollama async API.

    Uses ``settings.ollama_base_url`` and ``settings.ollama_model``.
    """

    provider = "ollama"

    def __init__(
        self,
        base_url: str | None = None,
        model: str | None = None,
    ) -> None:
        self._base_url = base_url or settings.ollama_base_url
        self._model = model or settings.ollama_model

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
    ) -> LLMResponse:
        """Send a chat request to the Ollama server."""
        import ollama

        client = ollama.AsyncClient(host=self._base_url)

        start = time.monotonic()
        try:
            kwargs: dict[str, Any] = {
                "model": self._model,
                "messages": _messages_to_ollama(messages),
            }
            if tools:
                # Ollama uses the same format as OpenAI for function-calling tools.
                kwargs["tools"] = tools

            response = await client.chat(**kwargs)
        finally:
            latency_ms = int((time.monotonic() - start) * 1000)

        message = response.get("message", {})
        content = message.get("content", "") or ""
        raw_tool_calls = message.get("tool_calls") or []

        tool_calls: list[ToolCall] = []
        for i, tc in enumerate(raw_tool_calls):
            func = tc.get("function", {})
            arguments, error = _parse_arguments(func.get("arguments") or {})
            tool_calls.append(
                ToolCall(
                    id=f"call_{i}",
                    name=func.get("name", ""),
                    arguments=arguments,
                    parse_error=error,
                )
            )

        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            finish_reason="tool_calls" if tool_calls else (response.get("done_reason") or "stop"),
            input_tokens=response.get("prompt_eval_count"),
            output_tokens=response.get("eval_count"),
            latency_ms=latency_ms,
            provider=self.provider,
            model=self._model,
        )


# ── Fallback composite client ────────────────────────────────────────────────


class FallbackLLMClient:
    """Composite client: tries the primary provider, falls back on failure.

    On any primary failure (connection error, auth error, malformed
    response) the same request is retried once via the fallback client.
    """

    def __init__(self, primary: LLMClient, fallback: LLMClient) -> None:
        self._primary = primary
        self._fallback = fallback

    async def chat(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
    ) -> LLMResponse:
        """Try the primary client; on failure use the fallback."""
        try:
            response = await self._primary.chat(messages, tools)
            logger.debug(
                "%s responded in %dms (tokens: %s/%s)",
                response.provider,
                response.latency_ms or 0,
                response.input_tokens,
                response.output_tokens,
            )
            return response

        except Exception as exc:
            fallback_reason = f"{type(exc).__name__}: {exc}"
            logger.warning(
                "Primary LLM call failed (%s), falling back",
                fallback_reason,
            )

        try:
            response = await self._fallback.chat(messages, tools)
            # Tag the response so the caller knows it was a fallback.
            response.provider = f"{response.provider} (fallback)"
            logger.info(
                "Fallback LLM responded in %dms (reason: %s)",
                response.latency_ms or 0,
                fallback_reason,
            )
            return response

        except Exception as fallback_exc:
            logger.error("Fallback LLM also failed: %s", fallback_exc)
            raise


# ── Factory ───────────────────────────────────────────────────────────────────


def build_provider_client(provider: str, config: Settings | None = None) -> LLMClient:
    """Instantiate the client for a single *provider* name."""
    config = config or settings
    if provider == "azure_openai":
        return AzureOpenAILLMClient(
            endpoint=config.azure_openai_endpoint,
            deployment=config.azure_openai_deployment,
            api_key=config.azure_openai_api_key,
            api_version=config.azure_openai_api_version,
            use_identity=config.azure_openai_use_identity,
            managed_identity_client_id=config.managed_identity_client_id,
        )
    if provider == "openai":
        return OpenAILLMClient(api_key=config.openai_api_key, model=config.openai_model)
    if provider == "anthropic":
        return AnthropicLLMClient(api_key=config.anthropic_api_key, model=config.anthropic_model)
    if provider == "ollama":
        return OllamaLLMClient(base_url=config.ollama_base_url, model=config.ollama_model)
    raise ValueError(f"Unknown LLM provider: {provider}")


def create_llm_client(config: Settings | None = None) -> LLMClient:
    """Build the configured client, wrapped with a fallback when one is set."""
    config = config or settings
    primary = build_provider_client(config.llm_provider, config)

    fallback_provider = config.fallback_llm_provider
    if not fallback_provider or fallback_provider == config.llm_provider:
        return primary
    if not config.provider_configured(fallback_provider):
        logger.warning(
            "Fallback provider %s is not configured; running without fallback",
            fallback_provider,
        )
        return primary

    logger.info("LLM provider %s with fallback %s", config.llm_provider, fallback_provider)
    return FallbackLLMClient(primary, build_provider_client(fallback_provider, config))


# ── Format conversion helpers ─────────────────────────────────────────────────


def _parse_arguments(raw: Any) -> tuple[dict[str, Any], str | None]:
    """Decode provider tool-call arguments into a dict.

    Returns ``(arguments, error)``; *error* is set when the payload is not a
    JSON object, in which case *arguments* is empty.
    """
    if isinstance(raw, str):
        if not raw.strip():
            return {}, None
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            return {}, f"arguments are not valid JSON ({exc.msg})"
    if isinstance(raw, dict):
        return dict(raw), None
    if hasattr(raw, "items"):
        return dict(raw.items()), None
    return {}, "arguments must be a JSON object"


def _messages_to_openai(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """Convert ChatMessage list to OpenAI's message format."""
    result: list[dict[str, Any]] = []
    for msg in messages:
        entry: dict[str, Any] = {"role": msg.role, "content": msg.content}
        if msg.role == "assistant" and msg.tool_calls:
            entry["content"] = msg.content or None
            entry["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {
                        "name": tc.name,
                        "arguments": json.dumps(tc.arguments, ensure_ascii=False),
                    },
                }
                for tc in msg.tool_calls
            ]
        elif msg.role == "tool":
            entry["tool_call_id"] = msg.tool_call_id
        result.append(entry)
    return result


def _messages_to_anthropic(
    messages: list[ChatMessage],
) -> tuple[str, list[dict[str, Any]]]:
    """Convert ChatMessage list to Anthropic's ``(system, messages)`` pair.

    Assistant tool calls become ``tool_use`` content blocks.  Tool results
    become ``tool_result`` blocks inside a user message; consecutive tool
    turns (one round) are merged into a single user message, as the API
    requires strictly alternating roles.
    """
    system_text = ""
    result: list[dict[str, Any]] = []
    for msg in messages:
        if msg.role == "system":
            system_text = msg.content
        elif msg.role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": msg.tool_call_id,
                "content": msg.content,
            }
            previous = result[-1] if result else None
            if (
                previous is not None
                and previous["role"] == "user"
                and isinstance(previous["content"], list)
            ):
                previous["content"].append(block)
            else:
                result.append({"role": "user", "content": [block]})
        elif msg.role == "assistant" and msg.tool_calls:
            blocks: list[dict[str, Any]] = []
            if msg.content:
                blocks.append({"type": "text", "text": msg.content})
            for tc in msg.tool_calls:
                blocks.append(
                    {"type": "tool_use", "id": tc.id, "name": tc.name, "input": tc.arguments}
                )
            result.append({"role": "assistant", "content": blocks})
        else:
            result.append({"role": msg.role, "content": msg.content})
    return system_text, result


def _messages_to_ollama(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """Convert ChatMessage list to Ollama's message format."""
    result: list[dict[str, Any]] = []
    for msg in messages:
        entry: dict[str, Any] = {"role": msg.role, "content": msg.content}
        if msg.role == "assistant" and msg.tool_calls:
            entry["tool_calls"] = [
                {"function": {"name": tc.name, "arguments": tc.arguments}}
                for tc in msg.tool_calls
            ]
        result.append(entry)
    return result


def _tools_to_anthropic(tools: list[ToolSchema] | None) -> list[dict[str, Any]]:
    """Convert OpenAI-format tool schemas to Anthropic's tool format.

    OpenAI format::

        {"type": "function", "function": {"name": ..., "description": ..., "parameters": ...}}

    Anthropic format::

        {"name": ..., "description": ..., "input_schema": ...}
    """
    if not tools:
        return []

    result: list[dict[str, Any]] = []
    for tool in tools:
        func = tool.get("function", {})
        result.append(
            {
                "name": func.get("name", ""),
                "description": func.get("description", ""),
                "input_schema": func.get("parameters", {}),
            }
        )
    return result
