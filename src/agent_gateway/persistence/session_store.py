"""File-backed storage for session metadata and artifacts.

Layout::

    <sessions_dir>/<session_id>/metadata.json
                                prompt.txt
                                response.txt
                                trace.html
                                trace.jsonl

Session ids are validated before any path is built from them; anything that
is not 32 lowercase hex characters raises :class:`InvalidSessionIdError`.
"""
from __future__ import annotations

import json
import logging
import re
import secrets
import time
from pathlib import Path
from typing import List, Optional

from agent_gateway.domain.sessions import SessionData, SessionMetadata
from agent_gateway.errors import InvalidSessionIdError

logger = logging.getLogger(__name__)

SESSION_ID_RE = re.compile(r"^[a-f0-9]{32}$")
METADATA_FILE = "metadata.json"
PROMPT_FILE = "prompt.txt"
RESPONSE_FILE = "response.txt"
TRACE_HTML_FILE = "trace.html"
TRACE_JSONL_FILE = "trace.jsonl"

_MS_PER_DAY = 24 * 60 * 60 * 1000


def is_valid_session_id(session_id: object) -> bool:
    return isinstance(session_id, str) and bool(SESSION_ID_RE.fullmatch(session_id))


def now_ms() -> int:
    return int(time.time() * 1000)


class SessionStore:
    def __init__(self, sessions_dir: Path, retention_days: int = 7, clock=now_ms) -> None:
        self._root = Path(sessions_dir).expanduser().resolve()
        self._retention_days = max(1, int(retention_days))
        self._clock = clock
        self.ensure_root()

    @property
    def root(self) -> Path:
        return self._root

    @property
    def retention_days(self) -> int:
        return self._retention_days

    def ensure_root(self) -> None:
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to create sessions directory %s: %s", self._root, exc)

    def generate_session_id(self) -> str:
        return secrets.token_hex(16)

    def session_path(self, session_id: str) -> Path:
        if not is_valid_session_id(session_id):
            raise InvalidSessionIdError(session_id)
        return self._root / session_id

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_session(self, metadata: SessionMetadata) -> Path:
        path = self.session_path(metadata.id)
        path.mkdir(parents=True, exist_ok=True)
        (path / METADATA_FILE).write_text(json.dumps(metadata.to_dict(), indent=2), encoding="utf-8")
        logger.info("Session created: %s", metadata.id)
        return path

    def save_prompt(self, session_id: str, prompt: str) -> bool:
        return self._write_artifact(session_id, PROMPT_FILE, prompt)

    def save_response(self, session_id: str, response: str) -> bool:
        return self._write_artifact(session_id, RESPONSE_FILE, response)

    def save_trace_html(self, session_id: str, html: str) -> bool:
        return self._write_artifact(session_id, TRACE_HTML_FILE, html)

    def save_trace_jsonl(self, session_id: str, jsonl: str) -> bool:
        return self._write_artifact(session_id, TRACE_JSONL_FILE, jsonl)

    def _write_artifact(self, session_id: str, filename: str, content: str) -> bool:
        """Write into an existing session directory only.

        A session removed by the retention sweep is not recreated; the write is
        skipped with a warning.
        """
        path = self.session_path(session_id)
        try:
            (path / filename).write_text(content or "", encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Session %s no longer exists, %s not saved", session_id, filename)
            return False
        logger.debug("Saved %s for session %s (%d chars)", filename, session_id, len(content or ""))
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[SessionData]:
        path = self.session_path(session_id)
        metadata = self._read_metadata(path)
        if metadata is None:
            return None
        trace_html = path / TRACE_HTML_FILE
        trace_jsonl = path / TRACE_JSONL_FILE
        return SessionData(
            metadata=metadata,
            prompt=self._read_text(path / PROMPT_FILE),
            response=self._read_text(path / RESPONSE_FILE),
            trace_html_path=str(trace_html) if trace_html.is_file() else None,
            trace_jsonl_path=str(trace_jsonl) if trace_jsonl.is_file() else None,
        )

    def get_prompt(self, session_id: str) -> Optional[str]:
        return self._read_text(self.session_path(session_id) / PROMPT_FILE)

    def get_response(self, session_id: str) -> Optional[str]:
        return self._read_text(self.session_path(session_id) / RESPONSE_FILE)

    def get_trace_html(self, session_id: str) -> Optional[str]:
        return self._read_text(self.session_path(session_id) / TRACE_HTML_FILE)

    def get_trace_jsonl(self, session_id: str) -> Optional[str]:
        return self._read_text(self.session_path(session_id) / TRACE_JSONL_FILE)

    def list_sessions(self) -> List[SessionMetadata]:
        sessions: List[SessionMetadata] = []
        for entry in self._iter_session_dirs():
            try:
                metadata = self._load_metadata(entry)
            except (OSError, ValueError, TypeError) as exc:
                logger.warning("Failed to read session metadata for %s: %s", entry.name, exc)
                continue
            if metadata is not None:
                sessions.append(metadata)
        sessions.sort(key=lambda m: m.timestamp, reverse=True)
        return sessions

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup(self) -> int:
        """Delete sessions older than the retention window. Returns the count removed."""
        now = self._clock()
        max_age_ms = self._retention_days * _MS_PER_DAY
        cleaned = 0
        for entry in self._iter_session_dirs():
            try:
                metadata = self._load_metadata(entry)
            except (OSError, ValueError, TypeError) as exc:
                logger.warning("Error checking session %s for cleanup: %s", entry.name, exc)
                continue
            if metadata is None or now - metadata.timestamp <= max_age_ms:
                continue
            if self.delete_session(entry.name):
                cleaned += 1
        if cleaned:
            logger.info("Cleaned up %d old sessions", cleaned)
        return cleaned

    def delete_session(self, session_id: str) -> bool:
        path = self.session_path(session_id)
        try:
            for child in path.iterdir():
                child.unlink()
            path.rmdir()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.error("Failed to delete session %s: %s", session_id, exc)
            return False
        logger.debug("Session deleted: %s", session_id)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _iter_session_dirs(self) -> List[Path]:
        try:
            entries = list(self._root.iterdir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            logger.error("Failed to list sessions directory %s: %s", self._root, exc)
            return []
        return [entry for entry in entries if is_valid_session_id(entry.name) and entry.is_dir()]

    def _read_metadata(self, path: Path) -> Optional[SessionMetadata]:
        try:
            return self._load_metadata(path)
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Failed to read session metadata for %s: %s", path.name, exc)
            return None

    @staticmethod
    def _load_metadata(path: Path) -> Optional[SessionMetadata]:
        try:
            raw = (path / METADATA_FILE).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return SessionMetadata.from_dict(json.loads(raw))

    @staticmethod
    def _read_text(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except (FileNotFoundError, NotADirectoryError):
            return None
        except OSError as exc:
            logger.error("Failed to read %s: %s", path, exc)
            return None
