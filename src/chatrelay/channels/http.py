"""HTTP channel: pairing, SSE chat streaming and history routes."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sse_starlette.sse import EventSourceResponse

from chatrelay.app.runtime import GatewayRuntime
from chatrelay.channels.base import BaseChannel
from chatrelay.errors import AuthError, InvalidTokenError, MalformedPayloadError, NotFoundError
from chatrelay.types import ChatTurnRequest, Envelope


def _runtime(request: Request) -> GatewayRuntime:
    return request.app.state.runtime


async def require_token(request: Request) -> None:
    """Reject the request unless it carries the issued bearer token."""

    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    if scheme.lower() != "bearer" or not _runtime(request).pairing.authorize(token.strip()):
        raise InvalidTokenError()


async def read_json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedPayloadError("Request body is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise MalformedPayloadError("Request body must be a JSON object")
    return payload


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _on_auth_error(_request: Request, exc: Exception) -> JSONResponse:
    return _error(401, str(exc))


async def _on_not_found(_request: Request, exc: Exception) -> JSONResponse:
    return _error(404, str(exc))


async def _on_malformed(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("http.payload.malformed path={} error={}", request.url.path, exc)
    return _error(500, "Internal server error")


def _frame(envelope: Envelope) -> dict[str, str]:
    return {"data": json.dumps(envelope.to_dict(), ensure_ascii=False)}


def create_app(runtime: GatewayRuntime) -> FastAPI:
    """Build the FastAPI application bound to one gateway runtime."""

    app = FastAPI(title="chatrelay", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.runtime = runtime
    app.state.turns = set()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(AuthError, _on_auth_error)
    app.add_exception_handler(NotFoundError, _on_not_found)
    app.add_exception_handler(MalformedPayloadError, _on_malformed)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "paired": runtime.pairing.paired}

    @app.post("/pair")
    async def pair(request: Request) -> dict[str, Any]:
        body = await read_json_object(request)
        token = runtime.pairing.attempt_pair(body.get("pairCode"))
        return {"success": True, "token": token}

    @app.post("/chat", dependencies=[Depends(require_token)])
    async def chat(request: Request) -> Any:
        body = await read_json_object(request)
        message = body.get("message")
        if not isinstance(message, str) or not message.strip():
            return _error(400, "message is required")
        session_id = body.get("sessionId")
        turn = runtime.build_request(message, session_id if isinstance(session_id, str) else None)
        logger.info("http.chat.start session_id={}", turn.prior_session_id or "")
        return EventSourceResponse(stream_turn(app, turn))

    @app.get("/history/list", dependencies=[Depends(require_token)])
    async def history_list(limit: int | None = Query(default=None, ge=0)) -> Any:
        page_size = runtime.settings.history_default_limit if limit is None else limit
        try:
            conversations = await runtime.engine.list_conversations(runtime.workspace, 0)
        except Exception:
            logger.exception("http.history.list.error engine={}", runtime.engine.name)
            return _error(500, "Failed to load history")
        total = len(conversations)
        page = conversations if page_size == 0 else conversations[:page_size]
        return {
            "conversations": [summary.to_dict() for summary in page],
            "count": len(page),
            "total": total,
            "hasMore": len(page) < total,
        }

    @app.get("/history/{session_id}", dependencies=[Depends(require_token)])
    async def history_detail(session_id: str) -> Any:
        try:
            history = await runtime.engine.get_conversation(runtime.workspace, session_id)
        except Exception:
            logger.exception("http.history.get.error engine={} session_id={}", runtime.engine.name, session_id)
            return _error(500, "Failed to load history")
        if history is None:
            raise NotFoundError("Conversation not found")
        return history.to_dict()

    return app


async def stream_turn(app: FastAPI, turn: ChatTurnRequest) -> AsyncIterator[dict[str, str]]:
    """Yield one SSE frame per envelope until the terminal one.

    The engine turn runs as its own task so a client disconnect does not interrupt it.
    """

    runtime: GatewayRuntime = app.state.runtime
    queue: asyncio.Queue[Envelope] = asyncio.Queue()
    task = asyncio.create_task(runtime.run_turn(turn, queue.put))
    turns: set[asyncio.Task[Any]] = app.state.turns
    turns.add(task)
    task.add_done_callback(turns.discard)
    while True:
        envelope = await queue.get()
        yield _frame(envelope)
        if envelope.is_terminal:
            logger.info("http.chat.end kind={} session_id={}", envelope.kind, envelope.session_id)
            return


class HttpChannel(BaseChannel):
    """Serves the FastAPI application with uvicorn."""

    name = "http"

    def __init__(self, runtime: GatewayRuntime) -> None:
        super().__init__(runtime)
        self.app = create_app(runtime)
        self._server: uvicorn.Server | None = None

    async def start(self) -> None:
        settings = self.runtime.settings
        config = uvicorn.Config(self.app, host=settings.host, port=settings.port, log_config=None, access_log=False)
        self._server = uvicorn.Server(config)
        logger.info("http.channel.listen host={} port={}", settings.host, settings.port)
        try:
            await self._server.serve()
        finally:
            self._server = None
            logger.info("http.channel.stopped")

    async def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
