from dataclasses import dataclass
from typing import Any, Dict, Optional


# metadata.json keys, in the order they are written.
_FIELD_KEYS = (
    ("id", "id"),
    ("timestamp", "timestamp"),
    ("operation_id", "operationId"),
    ("repo_full_name", "repoFullName"),
    ("issue_number", "issueNumber"),
    ("is_pull_request", "isPullRequest"),
    ("branch_name", "branchName"),
    ("operation_type", "operationType"),
    ("channel_id", "channelId"),
    ("user_id", "userId"),
)


@dataclass(frozen=True)
class SessionMetadata:
    id: str
    timestamp: int
    operation_id: str
    repo_full_name: Optional[str] = None
    issue_number: Optional[int] = None
    is_pull_request: Optional[bool] = None
    branch_name: Optional[str] = None
    operation_type: Optional[str] = None
    channel_id: Optional[str] = None
    user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for attr, key in _FIELD_KEYS:
            value = getattr(self, attr)
            if value is None and attr not in {"id", "timestamp", "operation_id"}:
                continue
            out[key] = value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionMetadata":
        if not isinstance(data, dict):
            raise ValueError("Session metadata must be a JSON object.")
        session_id = data.get("id")
        timestamp = data.get("timestamp")
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("Session metadata is missing 'id'.")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError("Session metadata is missing a numeric 'timestamp'.")
        kwargs: Dict[str, Any] = {}
        for attr, key in _FIELD_KEYS:
            if key in data:
                kwargs[attr] = data[key]
        kwargs["timestamp"] = int(timestamp)
        kwargs.setdefault("operation_id", session_id)
        return cls(**kwargs)


@dataclass(frozen=True)
class SessionData:
    metadata: SessionMetadata
    prompt: Optional[str] = None
    response: Optional[str] = None
    trace_html_path: Optional[str] = None
    trace_jsonl_path: Optional[str] = None

    @property
    def id(self) -> str:
        return self.metadata.id

    def summary(self) -> Dict[str, Any]:
        data = self.metadata.to_dict()
        data.update(
            {
                "hasPrompt": self.prompt is not None,
                "hasResponse": self.response is not None,
                "hasTraceHtml": self.trace_html_path is not None,
                "hasTraceJsonl": self.trace_jsonl_path is not None,
            }
        )
        return data
