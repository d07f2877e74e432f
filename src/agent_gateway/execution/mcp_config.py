"""Tool-integration (MCP) configuration handed to the container.

A template file wins over a static config file. Template placeholders of the
form ``${VAR}`` are filled from the process environment; unknown ones are
left untouched so the container can report them.
"""
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass(frozen=True)
class McpConfig:
    content: str
    source: Path
    server_names: Tuple[str, ...]


def render_template(template: str, environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    missing = []

    def _substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        value = env.get(key)
        if value is None:
            missing.append(key)
            return match.group(0)
        return value

    rendered = _PLACEHOLDER_RE.sub(_substitute, template)
    for key in sorted(set(missing)):
        logger.warning("MCP template variable %s is not set; placeholder kept", key)
    return rendered


def parse_server_names(content: str) -> Tuple[str, ...]:
    try:
        data = json.loads(content)
    except ValueError:
        logger.warning("MCP config is not valid JSON; no MCP servers advertised")
        return ()
    servers = data.get("mcpServers") if isinstance(data, dict) else None
    if not isinstance(servers, dict):
        return ()
    return tuple(sorted(str(name) for name in servers))


class McpConfigLoader:
    def __init__(
        self,
        template_path: Path,
        config_path: Path,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._template_path = Path(template_path)
        self._config_path = Path(config_path)
        self._environ = environ

    def load(self) -> Optional[McpConfig]:
        template = _read_optional(self._template_path)
        if template is not None:
            content = render_template(template, self._environ)
            logger.info("Loaded MCP config from template %s", self._template_path)
            return McpConfig(content=content, source=self._template_path, server_names=parse_server_names(content))
        static = _read_optional(self._config_path)
        if static is not None:
            logger.info("Loaded static MCP config %s", self._config_path)
            return McpConfig(content=static, source=self._config_path, server_names=parse_server_names(static))
        logger.debug("No MCP config found")
        return None


def _read_optional(path: Path) -> Optional[str]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("Failed to read MCP config %s: %s", path, exc)
        return None
    return text if text.strip() else None
