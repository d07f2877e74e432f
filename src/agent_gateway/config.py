import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, MutableMapping, Optional

from agent_gateway.errors import ConfigurationError

logger = logging.getLogger(__name__)

BOT_USERNAME_KEY = "BOT_USERNAME"

DEFAULT_IMAGE = "claudecode:latest"
DEFAULT_DOCKERFILE = "Dockerfile.claudecode"
DEFAULT_ENTRYPOINT = "/scripts/runtime/claudecode-entrypoint.sh"
DEFAULT_CONTAINER_LIFETIME_MS = 2 * 60 * 60 * 1000
DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
DEFAULT_RETENTION_DAYS = 7
DEFAULT_BASE_URL = "http://localhost:8082"

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ContainerLimits:
    memory: str = "2g"
    cpu_shares: str = "1024"
    pids_limit: str = "256"


@dataclass(frozen=True)
class GatewayConfig:
    bot_username: str
    bot_email: str = ""
    image: str = DEFAULT_IMAGE
    dockerfile: str = DEFAULT_DOCKERFILE
    build_context: Path = field(default_factory=Path.cwd)
    entrypoint: str = DEFAULT_ENTRYPOINT
    container_lifetime_ms: int = DEFAULT_CONTAINER_LIFETIME_MS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    privileged: bool = False
    optional_capabilities: Dict[str, bool] = field(default_factory=dict)
    limits: ContainerLimits = field(default_factory=ContainerLimits)
    auth_host_dir: str = ""
    sessions_dir: Path = field(default_factory=lambda: Path.cwd() / "sessions")
    retention_days: int = DEFAULT_RETENTION_DAYS
    mcp_template_path: Path = Path("/app/.mcp.json.template")
    mcp_config_path: Path = Path("/app/.mcp.json")
    workspace_template: str = ""
    secrets_dir: Path = Path("/run/secrets")
    base_url: str = DEFAULT_BASE_URL
    test_mode: bool = False
    max_concurrent_executions: int = 0


def load_env_file(path: Path) -> Dict[str, str]:
    data: Dict[str, str] = {}
    if not path.exists():
        return data
    try:
        for line in path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            k, v = line.split("=", 1)
            data[k.strip()] = v.strip().strip('"').strip("'")
    except OSError as exc:
        logger.warning("Failed to read env file %s: %s", path, exc)
    return data


def apply_env_defaults(env_file: Dict[str, str], target_env: Optional[MutableMapping[str, str]] = None) -> int:
    """Populate missing process env vars from .env-style mapping.

    Existing environment values are never overwritten.
    Returns the number of keys applied.
    """
    target = target_env if target_env is not None else os.environ
    applied = 0
    for raw_key, raw_value in (env_file or {}).items():
        key = str(raw_key or "").strip()
        if not key:
            continue
        if key in target and str(target.get(key) or "").strip():
            continue
        target[key] = str(raw_value or "")
        applied += 1
    return applied


def get_env_value(key: str, environ: Optional[Mapping[str, str]] = None, default: str = "") -> str:
    env = os.environ if environ is None else environ
    value = (env.get(key) or "").strip()
    return value or default


def env_int(key: str, default: int, environ: Optional[Mapping[str, str]] = None) -> int:
    raw = get_env_value(key, environ)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer value for %s", key)
        return default


def env_flag(key: str, environ: Optional[Mapping[str, str]] = None) -> bool:
    return get_env_value(key, environ).lower() in _TRUE_VALUES


def load_config(environ: Optional[Mapping[str, str]] = None) -> GatewayConfig:
    env = os.environ if environ is None else environ
    bot_username = get_env_value(BOT_USERNAME_KEY, env)
    if not bot_username:
        raise ConfigurationError(
            "BOT_USERNAME environment variable is required to prevent response loops."
        )

    sessions_dir = get_env_value("CLAUDE_SESSIONS_VOLUME_PATH", env) or str(Path.cwd() / "sessions")
    build_context = get_env_value("CLAUDE_BUILD_CONTEXT", env) or str(Path.cwd())
    return GatewayConfig(
        bot_username=bot_username,
        bot_email=get_env_value("BOT_EMAIL", env),
        image=get_env_value("CLAUDE_CONTAINER_IMAGE", env, DEFAULT_IMAGE),
        dockerfile=get_env_value("CLAUDE_DOCKERFILE", env, DEFAULT_DOCKERFILE),
        build_context=Path(build_context).expanduser().resolve(),
        entrypoint=get_env_value("CLAUDE_ENTRYPOINT", env, DEFAULT_ENTRYPOINT),
        container_lifetime_ms=max(1000, env_int("CONTAINER_LIFETIME_MS", DEFAULT_CONTAINER_LIFETIME_MS, env)),
        max_output_bytes=max(1024, env_int("CLAUDE_MAX_OUTPUT_BYTES", DEFAULT_MAX_OUTPUT_BYTES, env)),
        privileged=env_flag("CLAUDE_CONTAINER_PRIVILEGED", env),
        optional_capabilities={
            "NET_RAW": env_flag("CLAUDE_CONTAINER_CAP_NET_RAW", env),
            "SYS_TIME": env_flag("CLAUDE_CONTAINER_CAP_SYS_TIME", env),
            "DAC_OVERRIDE": env_flag("CLAUDE_CONTAINER_CAP_DAC_OVERRIDE", env),
            "AUDIT_WRITE": env_flag("CLAUDE_CONTAINER_CAP_AUDIT_WRITE", env),
        },
        limits=ContainerLimits(
            memory=get_env_value("CLAUDE_CONTAINER_MEMORY_LIMIT", env, "2g"),
            cpu_shares=get_env_value("CLAUDE_CONTAINER_CPU_SHARES", env, "1024"),
            pids_limit=get_env_value("CLAUDE_CONTAINER_PIDS_LIMIT", env, "256"),
        ),
        auth_host_dir=get_env_value("CLAUDE_AUTH_HOST_DIR", env),
        sessions_dir=Path(sessions_dir).expanduser().resolve(),
        retention_days=max(1, env_int("CLAUDE_SESSIONS_RETENTION_DAYS", DEFAULT_RETENTION_DAYS, env)),
        mcp_template_path=Path(get_env_value("MCP_TEMPLATE_PATH", env, "/app/.mcp.json.template")),
        mcp_config_path=Path(get_env_value("MCP_CONFIG_PATH", env, "/app/.mcp.json")),
        workspace_template=get_env_value("WORKSPACE_TEMPLATE", env),
        secrets_dir=Path(get_env_value("SECRETS_DIR", env, "/run/secrets")),
        base_url=(
            get_env_value("API_BASE_URL", env)
            or get_env_value("WEBHOOK_URL", env)
            or DEFAULT_BASE_URL
        ),
        test_mode=env_flag("GATEWAY_TEST_MODE", env),
        max_concurrent_executions=max(0, env_int("GATEWAY_MAX_CONCURRENT_EXECUTIONS", 0, env)),
    )
