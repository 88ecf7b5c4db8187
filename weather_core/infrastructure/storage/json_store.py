import asyncio
import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional
from uuid import uuid4

from weather_core.config.settings import settings
from weather_core.domain.exceptions import BusinessError
from weather_core.domain.models import ChatMessage
from weather_core.domain.session import ChatRecordSink, Session, SessionStore
from weather_core.tools.definitions import ToolCallRecord


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_ts(raw: str) -> datetime:
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


class JsonSessionStore(SessionStore):
    """基于文件的会话存储：每个会话一个目录，meta.json + messages.jsonl。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._sessions_root = self._root / "sessions"
        self._sessions_root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    async def load(self, session_id: str) -> List[ChatMessage]:
        return await asyncio.to_thread(self._read_messages, session_id)

    async def append(self, session_id: str, message: ChatMessage) -> None:
        await asyncio.to_thread(self._append_sync, session_id, message)

    async def get_session(self, session_id: str) -> Session:
        return await asyncio.to_thread(self._get_session_sync, session_id)

    def _session_dir(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id in {".", ".."}:
            raise BusinessError(code="INVALID_SESSION_ID", message=repr(session_id))
        return self._sessions_root / session_id

    def _append_sync(self, session_id: str, message: ChatMessage) -> None:
        sdir = self._session_dir(session_id)
        with self._lock:
            try:
                sdir.mkdir(parents=True, exist_ok=True)
                meta = self._read_meta(sdir) or {
                    "session_id": session_id,
                    "created_at": _iso(datetime.now(timezone.utc)),
                    "message_count": 0,
                    "last_model": None,
                }
                line = json.dumps(message.to_dict(), ensure_ascii=False)
                with (sdir / "messages.jsonl").open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
                meta["last_active"] = _iso(datetime.now(timezone.utc))
                meta["message_count"] = int(meta.get("message_count", 0)) + 1
                if message.role == "assistant" and message.attribution:
                    meta["last_model"] = message.attribution.model
                self._write_meta(sdir, meta)
            except BusinessError:
                raise
            except (OSError, TypeError, ValueError) as e:
                raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def _read_messages(self, session_id: str) -> List[ChatMessage]:
        msgs_path = self._session_dir(session_id) / "messages.jsonl"
        items: List[ChatMessage] = []
        if not msgs_path.exists():
            return items
        try:
            lines = msgs_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        for line in lines:
            if not line.strip():
                continue
            try:
                items.append(ChatMessage.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError):
                continue
        return items

    def _get_session_sync(self, session_id: str) -> Session:
        sdir = self._session_dir(session_id)
        meta = self._read_meta(sdir)
        if meta is None:
            return Session.new(session_id)
        return Session(
            session_id=session_id,
            created_at=_parse_ts(meta["created_at"]),
            last_active=_parse_ts(meta.get("last_active") or meta["created_at"]),
            messages=self._read_messages(session_id),
            last_model=meta.get("last_model"),
        )

    def _read_meta(self, sdir: Path) -> Optional[Dict[str, Any]]:
        meta_path = sdir / "meta.json"
        if not meta_path.exists():
            return None
        try:
            return json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))

    def _write_meta(self, sdir: Path, meta: Dict[str, Any]) -> None:
        meta_path = sdir / "meta.json"
        tmp_path = sdir / f"meta.{uuid4().hex}.json.tmp"
        try:
            tmp_path.write_text(json.dumps(meta, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))


class JsonChatRecordSink(ChatRecordSink):
    """分析记录：每次完成的对话追加一行到 records.jsonl。"""

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / "records.jsonl"
        self._lock = threading.Lock()

    async def record(
        self,
        session_id: str,
        model: str,
        messages: List[ChatMessage],
        tool_calls_made: List[ToolCallRecord],
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload = {
            "id": f"r-{uuid4().hex}",
            "session_id": session_id,
            "model": model,
            "messages": [m.to_dict() for m in messages],
            "tool_calls_made": [r.to_dict() for r in tool_calls_made],
            "meta": meta or {},
            "created_at": _iso(datetime.now(timezone.utc)),
        }
        await asyncio.to_thread(self._write_line, json.dumps(payload, ensure_ascii=False, default=str))

    def list_records(self) -> List[Dict[str, Any]]:
        if not self._path.exists():
            return []
        items: List[Dict[str, Any]] = []
        for line in self._path.read_text(encoding="utf-8").splitlines():
            try:
                items.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return items

    def _write_line(self, line: str) -> None:
        with self._lock:
            try:
                with self._path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
