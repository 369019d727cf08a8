from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from legalbridge.services.document_store import utc_timestamp

logger = structlog.get_logger()


class CompletionError(RuntimeError):
    pass


class CompletionClient:
    async def complete(self, messages: list[dict[str, Any]], question: str) -> str:
        raise NotImplementedError


def _answer_from(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
        return payload["message"]
    return ""


class HttpCompletionClient(CompletionClient):
    """Posts `{messages, question}` to the chat-completion endpoint.

    The endpoint answers either with a plain text body or with JSON carrying a
    `message` string; anything else counts as no answer.
    """

    def __init__(self, url: str, http_client_factory: Callable[[], httpx.AsyncClient] = httpx.AsyncClient):
        self.url = url
        self._http_client_factory = http_client_factory

    async def complete(self, messages: list[dict[str, Any]], question: str) -> str:
        logger.info("completion_requested", url=self.url, message_count=len(messages))
        try:
            async with self._http_client_factory() as client:
                response = await client.post(self.url, json={"messages": messages, "question": question})
        except httpx.HTTPError as exc:
            raise CompletionError(f"Completion request failed: {exc}") from exc
        if not response.is_success:
            raise CompletionError(f"Completion endpoint answered {response.status_code}")

        if "application/json" in response.headers.get("content-type", ""):
            try:
                payload = response.json()
            except ValueError as exc:
                raise CompletionError("Completion endpoint returned malformed JSON") from exc
        else:
            payload = response.text
        return _answer_from(payload)


def build_completion_client(url: str | None) -> HttpCompletionClient | None:
    if not url or not url.strip():
        return None
    return HttpCompletionClient(url=url.strip())


def pending_question(messages: Any) -> str | None:
    """Content of the trailing user message, or None when no reply is due."""
    if not isinstance(messages, list) or not messages:
        return None
    last = messages[-1]
    if not isinstance(last, dict) or last.get("type") != "user":
        return None
    return str(last.get("content") or "")


def assistant_message(content: str) -> dict[str, str]:
    return {
        "id": str(int(time.time() * 1000)),
        "type": "assistant",
        "content": content,
        "timestamp": utc_timestamp(),
    }
