"""
LiteLLM-powered chat completion helper utilities.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, MutableMapping, Sequence

from litellm import completion

ChatMessage = Mapping[str, Any]


@dataclass(frozen=True)
class ToolCall:
    """A single function call requested by the model."""

    name: str
    arguments: str
    call_id: str | None = None


@dataclass
class ChatResult:
    """
    Structured response returned from an LLM chat completion.
    """

    text: str
    raw: Any
    tool_calls: list[ToolCall] = field(default_factory=list)


CompletionCallable = Callable[..., ChatResult]


def call_chat_completion(
    *,
    model: str,
    messages: Sequence[ChatMessage],
    temperature: float | None = None,
    max_tokens: int | None = None,
    api_key: str | None = None,
    timeout: float | None = None,
    tools: Sequence[Mapping[str, Any]] | None = None,
    tool_choice: Any = None,
    **extra_kwargs: Any,
) -> ChatResult:
    """
    Invoke LiteLLM's `completion` API and return the consolidated text and tool calls.
    """
    payload: MutableMapping[str, Any] = {
        "model": model,
        "messages": list(messages),
    }

    if temperature is not None:
        payload["temperature"] = temperature

    if max_tokens is not None:
        payload["max_tokens"] = max_tokens

    if api_key is not None:
        payload["api_key"] = api_key

    if timeout is not None:
        payload["timeout"] = timeout

    if tools:
        payload["tools"] = list(tools)
        if tool_choice is not None:
            payload["tool_choice"] = tool_choice

    payload.update(extra_kwargs)

    response = completion(**payload)

    try:
        message = response["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as exc:
        raise RuntimeError("Unexpected LiteLLM response format.") from exc

    content = _field(message, "content")
    text = str(content).strip() if content is not None else ""
    return ChatResult(text=text, raw=response, tool_calls=_collect_tool_calls(message))


def _collect_tool_calls(message: Any) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for raw_call in _field(message, "tool_calls") or []:
        function = _field(raw_call, "function")
        if function is None:
            continue
        name = _field(function, "name")
        if not name:
            continue
        arguments = _field(function, "arguments") or "{}"
        calls.append(
            ToolCall(
                name=str(name),
                arguments=str(arguments),
                call_id=_field(raw_call, "id"),
            )
        )
    return calls


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)
