from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from agent_gateway.config import DEFAULT_BASE_URL
from agent_gateway.persistence.session_store import (
    PROMPT_FILE,
    RESPONSE_FILE,
    TRACE_HTML_FILE,
    TRACE_JSONL_FILE,
)


@dataclass(frozen=True)
class SessionLinks:
    prompt: Optional[str] = None
    response: Optional[str] = None
    trace: Optional[str] = None
    trace_data: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        out: Dict[str, str] = {}
        if self.prompt:
            out["prompt"] = self.prompt
        if self.response:
            out["response"] = self.response
        if self.trace:
            out["trace"] = self.trace
        if self.trace_data:
            out["traceData"] = self.trace_data
        return out

    def is_empty(self) -> bool:
        return not self.as_dict()


def generate_session_links(
    session_id: str,
    base_url: str,
    session_path: Optional[Union[str, Path]] = None,
) -> SessionLinks:
    """Artifact URLs for a session.

    With ``session_path`` only artifacts that exist on disk get a link;
    without it every link is produced.
    """
    root = (base_url or DEFAULT_BASE_URL).rstrip("/")
    prefix = f"{root}/sessions/{session_id}"
    candidates = (
        ("prompt", PROMPT_FILE, f"{prefix}/prompt"),
        ("response", RESPONSE_FILE, f"{prefix}/response"),
        ("trace", TRACE_HTML_FILE, f"{prefix}/trace"),
        ("trace_data", TRACE_JSONL_FILE, f"{prefix}/trace.jsonl"),
    )
    values: Dict[str, str] = {}
    for attr, filename, url in candidates:
        if session_path is None or (Path(session_path) / filename).exists():
            values[attr] = url
    return SessionLinks(**values)


def format_session_links(links: SessionLinks, session_id: str) -> str:
    parts: List[str] = ["**Session Details:**", f"- Session ID: `{session_id}`"]
    if links.prompt:
        parts.append(f"- [View Prompt]({links.prompt})")
    if links.response:
        parts.append(f"- [View Response]({links.response})")
    if links.trace:
        parts.append(f"- [View Trace]({links.trace})")
    if links.trace_data:
        parts.append(f"- [Download Trace Data]({links.trace_data})")
    return "\n".join(parts)


def resolve_base_url(
    headers: Optional[Mapping[str, str]] = None,
    scheme: str = "",
    configured: str = "",
) -> str:
    """Base URL for links: forwarded headers first, then the configured URL."""
    if headers:
        host = headers.get("x-forwarded-host") or headers.get("host")
        if host:
            proto = headers.get("x-forwarded-proto") or scheme or "http"
            return f"{proto}://{host}"
    return (configured or DEFAULT_BASE_URL).rstrip("/")
