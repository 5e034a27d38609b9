"""Claude CLI engine adapter."""

from __future__ import annotations

import asyncio
import contextlib
import json
import re
import shutil
from collections.abc import Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

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

TRANSCRIPT_SUFFIX = ".jsonl"
TITLE_MAX_CHARS = 80
STDERR_TAIL_CHARS = 2000
STREAM_LIMIT = 16 * 1024 * 1024
_CHAT_ROLES = frozenset({"user", "assistant"})


def encode_project_dir(scope_dir: Path) -> str:
    """Directory name the CLI stores transcripts under for `scope_dir`."""
    return re.sub(r"[^A-Za-z0-9]", "-", str(scope_dir))


def _parse_timestamp(raw: object) -> float | None:
    if not isinstance(raw, str) or not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None


def _text_of(content: object) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    parts = [
        str(block.get("text", ""))
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "\n".join(part for part in parts if part)


def _read_records(path: Path) -> list[dict[str, Any]]:
    records: list[dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as handle:
        for raw_line in handle:
            line = raw_line.strip()
            if not line:
                continue
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                records.append(payload)
    return records


def transcript_messages(records: Sequence[dict[str, Any]]) -> list[ConversationMessage]:
    messages: list[ConversationMessage] = []
    for record in records:
        if record.get("type") not in _CHAT_ROLES or record.get("isMeta"):
            continue
        message = record.get("message")
        if not isinstance(message, dict):
            continue
        text = _text_of(message.get("content"))
        if not text:
            continue
        role = str(message.get("role") or record["type"])
        messages.append(ConversationMessage(role=role, content=text, timestamp=_parse_timestamp(record.get("timestamp"))))
    return messages


def summarize_transcript(session_id: str, records: Sequence[dict[str, Any]], updated_at: float) -> ConversationSummary:
    messages = transcript_messages(records)
    title = ""
    for record in records:
        if record.get("type") == "summary" and record.get("summary"):
            title = str(record["summary"])
            break
    if not title:
        first_user = next((message for message in messages if message.role == "user"), None)
        title = first_user.content if first_user else ""
    title = " ".join(title.split())[:TITLE_MAX_CHARS]
    return ConversationSummary(session_id=session_id, title=title, message_count=len(messages), updated_at=updated_at)


class ClaudeEngine(ChatEngine):
    """Runs the Claude CLI in print mode with newline-delimited JSON output."""

    name = "claude"

    def __init__(
        self,
        command: str = "claude",
        *,
        home: Path | None = None,
        extra_args: Sequence[str] = (),
        probe_timeout: float = 5.0,
    ) -> None:
        self.command = command
        self.home = home or Path.home() / ".claude"
        self.extra_args = list(extra_args)
        self.probe_timeout = probe_timeout

    async def is_available(self) -> bool:
        executable = shutil.which(self.command)
        if executable is None:
            return False
        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                "--version",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError:
            return False
        try:
            await asyncio.wait_for(process.communicate(), timeout=self.probe_timeout)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            return False
        return process.returncode == 0

    def build_argv(self, request: ChatTurnRequest) -> list[str]:
        argv = [self.command, "-p", "--output-format", "stream-json", "--verbose"]
        if request.prior_session_id:
            argv.extend(["--resume", request.prior_session_id])
        argv.extend(self.extra_args)
        # The prompt is untrusted text; after `--` it is never parsed as an option.
        argv.extend(["--", request.message])
        return argv

    async def execute_turn(self, request: ChatTurnRequest, on_envelope: EnvelopeSink) -> None:
        argv = self.build_argv(request)
        logger.info("claude.turn.start cwd={} resume={}", request.working_directory, request.prior_session_id or "")
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=request.working_directory,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as exc:
            await on_envelope(Envelope.error(f"Failed to start {self.command}: {exc}"))
            return

        if process.stdout is None or process.stderr is None:
            raise RuntimeError("Claude CLI started without output pipes")
        stderr_task = asyncio.create_task(process.stderr.read())
        session_id = request.prior_session_id or ""
        result_error: str | None = None

        try:
            async for raw_line in process.stdout:
                line = raw_line.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("claude.turn.non_json line={}", line[:200])
                    continue
                if isinstance(payload, dict):
                    session_id = str(payload.get("session_id") or session_id)
                    if payload.get("type") == "result" and payload.get("is_error"):
                        result_error = str(payload.get("result") or payload.get("subtype") or "Claude reported an error")
                await on_envelope(Envelope.progress(payload))
            returncode = await process.wait()
        finally:
            # Cancelled mid-turn: the CLI must not outlive the turn.
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                stderr_task.cancel()
        stderr = (await stderr_task).decode("utf-8", errors="replace").strip()
        logger.info("claude.turn.exit returncode={} session_id={}", returncode, session_id)

        if returncode != 0:
            detail = stderr[-STDERR_TAIL_CHARS:] or f"exit code {returncode}"
            await on_envelope(Envelope.error(f"Claude exited with an error: {detail}"))
        elif result_error is not None:
            await on_envelope(Envelope.error(result_error))
        else:
            await on_envelope(Envelope.done(session_id))

    def project_dir(self, scope_dir: Path) -> Path:
        return self.home / "projects" / encode_project_dir(scope_dir)

    def _list_sync(self, scope_dir: Path, limit: int) -> list[ConversationSummary]:
        directory = self.project_dir(scope_dir)
        if not directory.is_dir():
            return []
        files = sorted(
            directory.glob(f"*{TRANSCRIPT_SUFFIX}"),
            key=lambda path: path.stat().st_mtime,
            reverse=True,
        )
        summaries = [
            summarize_transcript(path.stem, _read_records(path), path.stat().st_mtime) for path in files
        ]
        return apply_limit([summary for summary in summaries if summary.message_count > 0], limit)

    def _get_sync(self, scope_dir: Path, session_id: str) -> ConversationHistory | None:
        if not session_id or "/" in session_id or "\\" in session_id or session_id.startswith("."):
            return None
        path = self.project_dir(scope_dir) / f"{session_id}{TRANSCRIPT_SUFFIX}"
        if not path.is_file():
            return None
        return ConversationHistory(session_id=session_id, messages=transcript_messages(_read_records(path)))

    async def list_conversations(self, scope_dir: Path, limit: int = 0) -> list[ConversationSummary]:
        return await asyncio.to_thread(self._list_sync, scope_dir, limit)

    async def get_conversation(self, scope_dir: Path, session_id: str) -> ConversationHistory | None:
        return await asyncio.to_thread(self._get_sync, scope_dir, session_id)
