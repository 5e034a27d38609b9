"""OpenCode server engine adapter."""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator, Mapping
from pathlib import Path
from typing import Any

import httpx
from loguru import logger

from chatrelay.engines.base import ChatEngine, apply_limit
from chatrelay.types import (
    ChatTurnRequest,
    ConversationHistory,
    ConversationMessage,
    ConversationSummary,
    Envelope,
    EnvelopeSink,
)

# Seconds to wait for `session.idle` once the prompt request itself has returned.
IDLE_GRACE_SECONDS = 5.0
_PROMPT_DONE = object()


async def iter_sse_json(lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    """Decode a server-sent-event line stream into JSON objects."""

    data: list[str] = []
    async for line in lines:
        if line.startswith("data:"):
            data.append(line[5:].lstrip())
            continue
        if line.strip() or not data:
            continue
        raw = "\n".join(data)
        data = []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("opencode.event.non_json data={}", raw[:200])
            continue
        if isinstance(payload, dict):
            yield payload


def event_session_id(event: Mapping[str, Any]) -> str | None:
    properties = event.get("properties")
    if not isinstance(properties, Mapping):
        return None
    if isinstance(properties.get("sessionID"), str):
        return properties["sessionID"]
    for key in ("info", "part"):
        nested = properties.get(key)
        if isinstance(nested, Mapping) and isinstance(nested.get("sessionID"), str):
            return nested["sessionID"]
    return None


def _event_error(event: Mapping[str, Any]) -> str:
    error = (event.get("properties") or {}).get("error")
    if isinstance(error, Mapping):
        data = error.get("data")
        if isinstance(data, Mapping) and data.get("message"):
            return str(data["message"])
        return str(error.get("name") or "OpenCode session error")
    return str(error or "OpenCode session error")


def _message_text(item: Mapping[str, Any]) -> str:
    parts = item.get("parts") or []
    texts = [str(part.get("text", "")) for part in parts if isinstance(part, Mapping) and part.get("type") == "text"]
    return "\n".join(text for text in texts if text)


def _millis(raw: object) -> float | None:
    if isinstance(raw, (int, float)):
        return raw / 1000
    return None


class OpenCodeEngine(ChatEngine):
    """Drives an `opencode serve` instance over its HTTP API and event stream."""

    name = "opencode"

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:4096",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        probe_timeout: float = 5.0,
    ) -> None:
        self.base_url = base_url
        self.probe_timeout = probe_timeout
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=30.0)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def is_available(self) -> bool:
        try:
            response = await self._client.get("/config", timeout=self.probe_timeout)
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def _create_session(self, directory: str) -> str:
        response = await self._client.post("/session", params={"directory": directory}, json={})
        response.raise_for_status()
        return str(response.json()["id"])

    async def execute_turn(self, request: ChatTurnRequest, on_envelope: EnvelopeSink) -> None:
        directory = request.working_directory
        try:
            session_id = request.prior_session_id or await self._create_session(directory)
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            await on_envelope(Envelope.error(f"OpenCode session could not be created: {exc}"))
            return

        logger.info("opencode.turn.start session_id={} cwd={}", session_id, directory)
        await on_envelope(Envelope.progress({"type": "system", "subtype": "init", "session_id": session_id}))

        queue: asyncio.Queue[Any] = asyncio.Queue()
        subscribed = asyncio.Event()
        events_task = asyncio.create_task(self._pump_events(session_id, directory, queue, subscribed))
        prompt_task = asyncio.create_task(self._send_prompt(session_id, directory, request.message, queue, subscribed))
        prompt_finished = False
        try:
            while True:
                if prompt_finished:
                    try:
                        item = await asyncio.wait_for(queue.get(), timeout=IDLE_GRACE_SECONDS)
                    except TimeoutError:
                        item = Envelope.done(session_id)
                else:
                    item = await queue.get()
                if item is _PROMPT_DONE:
                    prompt_finished = True
                    continue
                await on_envelope(item)
                if item.is_terminal:
                    return
        finally:
            for task in (events_task, prompt_task):
                task.cancel()
            for task in (events_task, prompt_task):
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def _pump_events(
        self,
        session_id: str,
        directory: str,
        queue: asyncio.Queue[Any],
        subscribed: asyncio.Event,
    ) -> None:
        try:
            async with self._client.stream("GET", "/event", params={"directory": directory}, timeout=None) as response:
                response.raise_for_status()
                subscribed.set()
                async for event in iter_sse_json(response.aiter_lines()):
                    if event_session_id(event) != session_id:
                        continue
                    event_type = event.get("type")
                    if event_type == "session.idle":
                        await queue.put(Envelope.done(session_id))
                        return
                    if event_type == "session.error":
                        await queue.put(Envelope.error(_event_error(event)))
                        return
                    await queue.put(Envelope.progress(event))
            await queue.put(Envelope.error("OpenCode event stream closed before the turn finished"))
        except httpx.HTTPError as exc:
            await queue.put(Envelope.error(f"OpenCode event stream failed: {exc}"))
        finally:
            subscribed.set()

    async def _send_prompt(
        self,
        session_id: str,
        directory: str,
        message: str,
        queue: asyncio.Queue[Any],
        subscribed: asyncio.Event,
    ) -> None:
        await subscribed.wait()
        try:
            response = await self._client.post(
                f"/session/{session_id}/message",
                params={"directory": directory},
                json={"parts": [{"type": "text", "text": message}]},
                timeout=None,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            await queue.put(Envelope.error(f"OpenCode prompt failed: {exc}"))
            return
        await queue.put(_PROMPT_DONE)

    async def _messages(self, session_id: str, directory: str) -> list[dict[str, Any]] | None:
        response = await self._client.get(f"/session/{session_id}/message", params={"directory": directory})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        items = response.json()
        return [item for item in items if isinstance(item, dict)] if isinstance(items, list) else []

    @staticmethod
    def _chat_messages(items: list[dict[str, Any]]) -> list[ConversationMessage]:
        messages: list[ConversationMessage] = []
        for item in items:
            info = item.get("info") or {}
            role = info.get("role")
            if role not in ("user", "assistant"):
                continue
            text = _message_text(item)
            if not text:
                continue
            messages.append(ConversationMessage(role=role, content=text, timestamp=_millis((info.get("time") or {}).get("created"))))
        return messages

    async def list_conversations(self, scope_dir: Path, limit: int = 0) -> list[ConversationSummary]:
        directory = str(scope_dir)
        response = await self._client.get("/session", params={"directory": directory})
        response.raise_for_status()
        sessions = [
            item
            for item in response.json()
            if isinstance(item, dict) and item.get("directory", directory) == directory and not item.get("parentID")
        ]
        sessions.sort(key=lambda item: (item.get("time") or {}).get("updated", 0), reverse=True)
        sessions = apply_limit(sessions, limit)

        async def _summary(item: dict[str, Any]) -> ConversationSummary:
            session_id = str(item["id"])
            items = await self._messages(session_id, directory) or []
            return ConversationSummary(
                session_id=session_id,
                title=str(item.get("title") or ""),
                message_count=len(self._chat_messages(items)),
                updated_at=_millis((item.get("time") or {}).get("updated")) or 0.0,
            )

        return list(await asyncio.gather(*(_summary(item) for item in sessions)))

    async def get_conversation(self, scope_dir: Path, session_id: str) -> ConversationHistory | None:
        items = await self._messages(session_id, str(scope_dir))
        if items is None:
            return None
        return ConversationHistory(session_id=session_id, messages=self._chat_messages(items))
