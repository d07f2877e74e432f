"""Secret lookup from mounted files or the environment.

A file always wins over an environment variable of the same name:

1. ``<NAME>_FILE`` points at an explicit file,
2. ``<secrets_dir>/<NAME>`` or ``<secrets_dir>/<name>`` (docker secrets),
3. the plain ``NAME`` environment variable.

A missing credential is not an error here; callers that need one use
:meth:`CredentialResolver.require`.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

from agent_gateway.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SECRETS_DIR = Path("/run/secrets")

# Credentials forwarded into the container and redacted from every log line.
SENSITIVE_CREDENTIALS = (
    "GITHUB_TOKEN",
    "ANTHROPIC_API_KEY",
    "VERCEL_TOKEN",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "DISCORD_BOT_TOKEN",
    "CLAUDE_API_SECRET",
)


class CredentialResolver:
    def __init__(
        self,
        secrets_dir: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._secrets_dir = Path(secrets_dir) if secrets_dir is not None else DEFAULT_SECRETS_DIR
        self._environ = environ if environ is not None else os.environ

    @property
    def secrets_dir(self) -> Path:
        return self._secrets_dir

    def resolve(self, name: str) -> Optional[str]:
        key = (name or "").strip()
        if not key:
            return None
        for candidate in self._file_candidates(key):
            value = self._read_secret_file(candidate)
            if value:
                return value
        value = (self._environ.get(key) or "").strip()
        return value or None

    def require(self, name: str) -> str:
        value = self.resolve(name)
        if not value:
            raise ConfigurationError(f"Missing required credential: {name}")
        return value

    def known_values(self, names: Iterable[str] = SENSITIVE_CREDENTIALS) -> List[str]:
        values: List[str] = []
        for name in names:
            value = self.resolve(name)
            if value:
                values.append(value)
        return values

    def _file_candidates(self, key: str) -> List[Path]:
        candidates: List[Path] = []
        explicit = (self._environ.get(f"{key}_FILE") or "").strip()
        if explicit:
            candidates.append(Path(explicit).expanduser())
        candidates.append(self._secrets_dir / key)
        if key.lower() != key:
            candidates.append(self._secrets_dir / key.lower())
        return candidates

    def _read_secret_file(self, path: Path) -> Optional[str]:
        try:
            if not path.is_file():
                return None
            return path.read_text(encoding="utf-8").strip() or None
        except OSError as exc:
            logger.warning("Unable to read secret file %s: %s", path, exc.strerror or type(exc).__name__)
            return None
