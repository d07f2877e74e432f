import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_REPLACEMENT = "[REDACTED]"
_DEFAULT_PATTERNS = (
    (r"sk-[A-Za-z0-9_-]{10,}", "sk-REDACTED"),
    (r"github_pat_[A-Za-z0-9_]{20,}", "github_pat_REDACTED"),
    (r"gh[pousr]_[A-Za-z0-9]{20,}", "gh-REDACTED"),
    (r"AKIA[0-9A-Z]{16}", "AKIA_REDACTED"),
    (r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*", "Bearer REDACTED"),
    (
        r"\b((?:AWS_ACCESS_KEY_ID|AWS_SECRET_ACCESS_KEY|AWS_SESSION_TOKEN|GITHUB_TOKEN|ANTHROPIC_API_KEY)=)\"[^\"]+\"",
        r'\1"REDACTED"',
    ),
    (
        r"(?i)\b([A-Z0-9_]*(?:api[_-]?key|token|secret|password))\b\s*[:=]\s*([^\s,;\"]+)",
        r"\1=REDACTED",
    ),
)
# Shape of an AWS secret access key. Also matches git SHAs and similar
# identifiers, so it is only applied on error paths.
_AWS_SECRET_RE = re.compile(r"(?<![A-Za-z0-9/+=])[A-Za-z0-9/+=]{40}(?![A-Za-z0-9/+=])")
_EXTRA_PATTERNS_ENV = "REDACTION_EXTRA_PATTERNS"
_MIN_SECRET_VALUE_LEN = 4


@dataclass(frozen=True)
class RedactionResult:
    text: str
    redacted: bool
    replacements: int


def redact(text: str, secrets: Iterable[str] = (), strict: bool = False) -> str:
    return redact_with_audit(text, secrets=secrets, strict=strict).text


def redact_with_audit(text: str, secrets: Iterable[str] = (), strict: bool = False) -> RedactionResult:
    """Remove credential material from ``text``.

    Known secret values are replaced first, then the pattern list runs.
    ``strict`` adds the broad AWS-secret shape used on error paths.
    """
    value, total = _redact_values(text or "", secrets)
    for regex, replacement in _compiled_patterns():
        value, count = regex.subn(replacement, value)
        total += count
    if strict:
        value, count = _AWS_SECRET_RE.subn(DEFAULT_REPLACEMENT, value)
        total += count
    return RedactionResult(text=value, redacted=total > 0, replacements=total)


def redact_values(text: str, secrets: Iterable[str]) -> str:
    return _redact_values(text or "", secrets)[0]


def _redact_values(text: str, secrets: Iterable[str]) -> tuple[str, int]:
    total = 0
    # Longest first so a secret containing another secret is fully removed.
    for secret in sorted({s for s in secrets if s and len(s) >= _MIN_SECRET_VALUE_LEN}, key=len, reverse=True):
        count = text.count(secret)
        if count:
            text = text.replace(secret, DEFAULT_REPLACEMENT)
            total += count
    return text, total


@lru_cache(maxsize=2)
def _compiled_patterns() -> List[tuple[re.Pattern[str], str]]:
    items: List[tuple[re.Pattern[str], str]] = [
        (re.compile(pattern), replacement) for pattern, replacement in _DEFAULT_PATTERNS
    ]
    extra_raw = (os.environ.get(_EXTRA_PATTERNS_ENV) or "").strip()
    if not extra_raw:
        return items
    for token in extra_raw.split(";;"):
        pattern = token.strip()
        if not pattern:
            continue
        try:
            items.append((re.compile(pattern), DEFAULT_REPLACEMENT))
        except re.error as exc:
            logger.warning("Ignoring invalid %s entry %r: %s", _EXTRA_PATTERNS_ENV, pattern, exc)
    return items


def sanitize_bot_mentions(text: str, bot_username: Optional[str]) -> str:
    """Strip the ``@`` from mentions of the bot so echoed text cannot re-trigger it."""
    if not text:
        return text or ""
    name = (bot_username or "").strip().lstrip("@")
    if not name:
        return text
    pattern = re.compile(r"@+(" + re.escape(name) + r")(?![A-Za-z0-9_-])", re.IGNORECASE)
    return pattern.sub(r"\1", text)

