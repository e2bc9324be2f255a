"""Text-generation backend contract and the default litellm adapter."""

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Any, Protocol

import structlog

from chatkeep.models.config import GenerationConfig
from chatkeep.models.message import ContentBlock


class GenerationError(Exception):
    """
    The single failure condition of a generation call.

    Missing credentials, missing retrieval-store configuration, provider
    errors and malformed or empty responses all surface as this error, with
    the underlying detail attached.
    """

    def __init__(self, detail: str, *, model: str | None = None) -> None:
        super().__init__(f"Generation failed ({model or 'unknown model'}): {detail}")
        self.detail = detail
        self.model = model


class GenerationBackend(Protocol):
    """
    Anything that turns a system instruction and ordered content blocks into text.

    Implementations must raise ``GenerationError`` on every failure.
    """

    async def generate(
        self,
        system_instruction: str,
        contents: Sequence[ContentBlock],
        *,
        use_retrieval: bool,
        model_hint: str | None = None,
    ) -> str: ...


class LiteLLMBackend:
    """
    ``GenerationBackend`` over ``litellm.acompletion``.

    When retrieval is requested the configured file-search store is attached
    as a tool; a missing store name is a configuration error raised before
    any network call.

    Set ``CHATKEEP_MOCK_LLM=1`` to get deterministic local replies without a
    provider key (examples, smoke tests).
    """

    def __init__(self, config: GenerationConfig) -> None:
        self._config = config
        self._logger = structlog.get_logger("chatkeep.generation")

    async def generate(
        self,
        system_instruction: str,
        contents: Sequence[ContentBlock],
        *,
        use_retrieval: bool,
        model_hint: str | None = None,
    ) -> str:
        model = model_hint or self._config.chat_model
        messages = [{"role": "system", "content": system_instruction}] + [
            {"role": block.role, "content": block.text} for block in contents
        ]

        if os.environ.get("CHATKEEP_MOCK_LLM") == "1":
            return _mock_reply(messages, summarising=not use_retrieval)

        if use_retrieval and not self._config.retrieval_store:
            raise GenerationError("Missing retrieval store configuration", model=model)

        call_kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": self._config.max_output_tokens,
            "temperature": self._config.temperature,
        }
        if self._config.api_key:
            call_kwargs["api_key"] = self._config.api_key
        if use_retrieval:
            call_kwargs["tools"] = [
                {"file_search": {"file_search_store_names": [self._config.retrieval_store]}}
            ]

        import litellm

        try:
            response = await litellm.acompletion(**call_kwargs)
        except Exception as exc:
            self._logger.error("generation_call_failed", model=model, error=str(exc))
            raise GenerationError(str(exc), model=model) from exc

        return _extract_text(response, model)


def _extract_text(response: Any, model: str) -> str:
    choices = getattr(response, "choices", None)
    if not choices:
        raise GenerationError("Malformed response: no choices", model=model)
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if isinstance(content, list):
        content = "".join(
            part.get("text", "") for part in content if isinstance(part, dict)
        )
    if not isinstance(content, str) or not content.strip():
        raise GenerationError("Malformed response: empty text", model=model)
    return content.strip()


def _mock_reply(messages: list[dict[str, str]], *, summarising: bool) -> str:
    """Deterministic reply used when CHATKEEP_MOCK_LLM=1."""
    last_user = next(
        (m["content"] for m in reversed(messages) if m["role"] == "user"),
        "",
    )
    if summarising:
        lines = [m["content"][:120] for m in messages[1:] if m["role"] in ("user", "assistant")]
        bullets = "\n".join(f"- {line}" for line in lines[-15:])
        return f"Summary of earlier conversation:\n{bullets}"
    return f"[Mock reply to: {last_user[:100]}]"
