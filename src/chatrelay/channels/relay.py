"""Relay channel: one persistent, self-healing websocket to a remote broker."""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import StrEnum
from typing import Any, Protocol

from loguru import logger
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from chatrelay.app.runtime import GatewayRuntime
from chatrelay.channels.base import BaseChannel
from chatrelay.types import ChatTurnRequest, Envelope


class RelaySocket(Protocol):
    """The part of a websocket connection the relay channel relies on."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


Connector = Callable[[str], Awaitable[RelaySocket]]
Notify = Callable[[], None]


class RelayState(StrEnum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


async def websocket_connector(url: str) -> RelaySocket:
    # Keepalive is the channel's own ping frame, not protocol-level pings.
    return await connect(url, ping_interval=None, max_size=None)


class RelayChannel(BaseChannel):
    """Registers with the broker, heartbeats, reconnects and relays chat turns.

    Every response frame carries the `requestId` of the `chat` frame that started the
    turn. Reconnects use a fixed delay with no cap, and at most one reconnect is pending
    at any time.
    """

    name = "relay"

    def __init__(
        self,
        runtime: GatewayRuntime,
        *,
        url: str,
        device_id: str,
        heartbeat_interval: float = 30.0,
        reconnect_delay: float = 5.0,
        connector: Connector | None = None,
        on_connected: Notify | None = None,
        on_disconnected: Notify | None = None,
        on_paired: Notify | None = None,
    ) -> None:
        super().__init__(runtime)
        self.url = url
        self.device_id = device_id
        self.heartbeat_interval = heartbeat_interval
        self.reconnect_delay = reconnect_delay
        self._connector = connector or websocket_connector
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected
        self._on_paired = on_paired

        self.state = RelayState.CLOSED
        self.paired = False
        self._socket: RelaySocket | None = None
        self._closing = False
        self._stopped = asyncio.Event()
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._outstanding: set[str] = set()
        self._turns: dict[str, asyncio.Task[None]] = {}

    @property
    def connected(self) -> bool:
        return self.state == RelayState.OPEN

    @property
    def heartbeat_armed(self) -> bool:
        return self._heartbeat_task is not None and not self._heartbeat_task.done()

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    @property
    def outstanding_requests(self) -> frozenset[str]:
        return frozenset(self._outstanding)

    async def start(self) -> None:
        self._closing = False
        self._stopped.clear()
        await self.connect()
        await self._stopped.wait()

    async def stop(self) -> None:
        await self.close()

    async def connect(self) -> None:
        if self._closing:
            return
        self.state = RelayState.CONNECTING
        logger.info("relay.connect url={}", self.url)
        try:
            socket = await self._connector(self.url)
        except Exception as exc:
            logger.warning("relay.connect.failed url={} error={}", self.url, exc)
            self._handle_close()
            return
        if self._closing:
            with contextlib.suppress(Exception):
                await socket.close()
            return

        self._socket = socket
        self.state = RelayState.OPEN
        logger.info("relay.connected url={} device_id={}", self.url, self.device_id)
        await self._send({"type": "register", "deviceId": self.device_id, "pairCode": self.runtime.pairing.secret_code})
        self._arm_heartbeat()
        self._reader_task = asyncio.create_task(self._read_loop(socket))
        self._notify(self._on_connected, "connected")

    async def close(self) -> None:
        """Shut down for good: no reconnect, no heartbeat, socket closed."""

        self._closing = True
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        self._disarm_heartbeat()
        socket, self._socket = self._socket, None
        self.state = RelayState.CLOSED
        self.paired = False
        if socket is not None:
            with contextlib.suppress(Exception):
                await socket.close()
        current = asyncio.current_task()
        for task in (self._reader_task, self._connect_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._reader_task = None
        self._connect_task = None
        turns = [task for task in self._turns.values() if task is not current]
        for task in turns:
            task.cancel()
        if turns:
            await asyncio.gather(*turns, return_exceptions=True)
        self._turns.clear()
        self._outstanding.clear()
        self._stopped.set()
        logger.info("relay.closed url={}", self.url)

    async def _read_loop(self, socket: RelaySocket) -> None:
        try:
            async for raw in socket:
                await self._dispatch(raw)
        except ConnectionClosed as exc:
            logger.info("relay.connection.closed url={} reason={}", self.url, exc)
        except Exception:
            logger.exception("relay.read.error url={}", self.url)
        finally:
            if self._socket is socket:
                self._handle_close()

    def _handle_close(self) -> None:
        was_open = self.state == RelayState.OPEN
        self._disarm_heartbeat()
        self._socket = None
        self.state = RelayState.CLOSED
        self.paired = False
        if was_open:
            self._notify(self._on_disconnected, "disconnected")
        if not self._closing:
            self._schedule_reconnect()

    def _notify(self, callback: Notify | None, event: str) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("relay.callback.error event={}", event)

    def _schedule_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            logger.debug("relay.reconnect.already_pending")
            return
        logger.info("relay.reconnect.scheduled delay={}", self.reconnect_delay)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(self.reconnect_delay, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        if self._closing:
            return
        self._connect_task = asyncio.create_task(self.connect())

    def _arm_heartbeat(self) -> None:
        self._disarm_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    def _disarm_heartbeat(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self._send({"type": "ping"})

    async def _send(self, frame: dict[str, Any]) -> bool:
        socket = self._socket
        if socket is None or self.state != RelayState.OPEN:
            logger.debug("relay.send.dropped type={} reason=not_connected", frame.get("type"))
            return False
        try:
            await socket.send(json.dumps(frame, ensure_ascii=False))
        except Exception as exc:
            logger.warning("relay.send.failed type={} error={}", frame.get("type"), exc)
            return False
        return True

    async def _dispatch(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("relay.frame.malformed size={}", len(raw))
            return
        if not isinstance(data, dict):
            logger.warning("relay.frame.malformed reason=not_object")
            return

        frame_type = data.get("type")
        if frame_type == "pong":
            return
        if frame_type == "ping":
            await self._send({"type": "pong"})
        elif frame_type == "pair_success":
            self.paired = True
            logger.info("relay.paired device_id={}", self.device_id)
            self._notify(self._on_paired, "paired")
        elif frame_type == "chat":
            await self._start_chat(data)
        else:
            logger.debug("relay.frame.ignored type={}", frame_type)

    async def _start_chat(self, data: dict[str, Any]) -> None:
        request_id = data.get("requestId")
        if not isinstance(request_id, str) or not request_id:
            logger.warning("relay.chat.dropped reason=missing_request_id")
            return
        if request_id in self._outstanding:
            logger.warning("relay.chat.dropped reason=duplicate request_id={}", request_id)
            return

        self._outstanding.add(request_id)
        message = data.get("message")
        if not isinstance(message, str) or not message.strip():
            await self._respond(request_id, Envelope.error("message is required"))
            return
        session_id = data.get("sessionId")
        turn = self.runtime.build_request(message, session_id if isinstance(session_id, str) else None)
        logger.info("relay.chat.start request_id={} session_id={}", request_id, turn.prior_session_id or "")
        task = asyncio.create_task(self._run_chat(request_id, turn))
        self._turns[request_id] = task

    async def _run_chat(self, request_id: str, turn: ChatTurnRequest) -> None:
        async def _sink(envelope: Envelope) -> None:
            await self._respond(request_id, envelope)

        try:
            await self.runtime.run_turn(turn, _sink, request_id=request_id)
        finally:
            self._outstanding.discard(request_id)
            self._turns.pop(request_id, None)

    async def _respond(self, request_id: str, envelope: Envelope) -> None:
        if request_id not in self._outstanding:
            logger.warning("relay.response.dropped request_id={} kind={}", request_id, envelope.kind)
            return
        if envelope.kind == "progress":
            frame: dict[str, Any] = {"type": "chat_response", "requestId": request_id, "data": envelope.payload}
        elif envelope.kind == "done":
            frame = {"type": "chat_done", "requestId": request_id, "sessionId": envelope.session_id}
        else:
            frame = {"type": "chat_error", "requestId": request_id, "error": envelope.message}
        if envelope.is_terminal:
            self._outstanding.discard(request_id)
            logger.info("relay.chat.end request_id={} kind={}", request_id, envelope.kind)
        await self._send(frame)
