"""Docker CLI access for assistant sessions.

Each session runs in a fresh container built from the configured image. The
container's entrypoint owns the bootstrap; this module only prepares the
argument vector, runs it under a wall-clock timeout and an output budget,
and offers the follow-up calls (logs, kill, remove) the orchestrator needs.
"""
import asyncio
import logging
import re
import shutil
import time
from pathlib import Path
from typing import List, Mapping, Optional, Sequence, Tuple

from agent_gateway.config import GatewayConfig
from agent_gateway.domain.contracts import CommandResult, CommandRunner
from agent_gateway.errors import (
    ContainerExecutionError,
    ExecutionTimeoutError,
    ImageBuildError,
    OutputLimitExceeded,
)
from agent_gateway.execution.policy import ContainerSecurityPolicy
from agent_gateway.util import redact

logger = logging.getLogger(__name__)

DOCKER = "docker"
CONTAINER_AUTH_DIR = "/home/node/.claude"
CONTAINER_SESSIONS_DIR = "/sessions"
IMAGE_INSPECT_TIMEOUT_SEC = 30
IMAGE_BUILD_TIMEOUT_SEC = 30 * 60
CONTROL_TIMEOUT_SEC = 30
LOG_TAIL_LINES = 500
LOG_MAX_BYTES = 1024 * 1024
_READ_CHUNK_BYTES = 65536

# Order the container entrypoint performs its work in. Kept here as the
# contract between the gateway and the image; the gateway never runs these.
BOOTSTRAP_STEPS = (
    "sync host authentication into the container user's home",
    "authenticate the GitHub CLI with GITHUB_TOKEN",
    "clone REPO_FULL_NAME into /workspace/repo",
    "configure git identity from BOT_USERNAME and BOT_EMAIL",
    "check out BRANCH_NAME (pull requests) or the default branch",
    "copy WORKSPACE_TEMPLATE into the workspace when set",
    "write MCP_CONFIG_CONTENT as the assistant's MCP configuration",
    "point trace output at TRACE_OUTPUT_DIR for SESSION_ID",
    "run the assistant with ALLOWED_TOOLS and the COMMAND prompt",
    "print the assistant response on stdout",
)

_SENSITIVE_ENV_KEYS = {
    "GITHUB_TOKEN",
    "ANTHROPIC_API_KEY",
    "VERCEL_TOKEN",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "DISCORD_BOT_TOKEN",
    "CLAUDE_API_SECRET",
}
_SENSITIVE_KEY_RE = re.compile(r"(?i)(token|secret|password|api_?key)")
_PLACEHOLDER_VALUES = {
    "COMMAND": "[COMMAND_CONTENT]",
    "MCP_CONFIG_CONTENT": "[MCP_CONFIG]",
}
_NAME_UNSAFE_RE = re.compile(r"[^a-zA-Z0-9_-]")
_ALREADY_STOPPED_MARKERS = ("is not running", "No such container")


class AsyncioCommandRunner(CommandRunner):
    """Runs a process with asyncio and enforces timeout and output budget.

    Both pipes are read incrementally; the process is killed as soon as
    either stream passes ``max_output_bytes``.
    """

    async def run(
        self,
        argv: Sequence[str],
        timeout_sec: float = 60,
        max_output_bytes: int = 0,
    ) -> CommandResult:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return CommandResult(returncode=127, stdout="", stderr=f"Executable not found: {argv[0]}")
        try:
            stdout, stderr = await asyncio.wait_for(_collect(proc, max_output_bytes), timeout=timeout_sec)
        except asyncio.TimeoutError:
            await _terminate(proc)
            raise ExecutionTimeoutError(int(timeout_sec * 1000)) from None
        except OutputLimitExceeded:
            await _terminate(proc)
            raise

        returncode = await proc.wait()
        return CommandResult(
            returncode=returncode or 0,
            stdout=stdout.decode(errors="replace") if stdout else "",
            stderr=stderr.decode(errors="replace") if stderr else "",
        )


async def _collect(proc: asyncio.subprocess.Process, max_output_bytes: int) -> Tuple[bytes, bytes]:
    readers = [
        asyncio.ensure_future(_read_limited(proc.stdout, max_output_bytes)),
        asyncio.ensure_future(_read_limited(proc.stderr, max_output_bytes)),
    ]
    try:
        stdout, stderr = await asyncio.gather(*readers)
    except BaseException:
        for reader in readers:
            reader.cancel()
        raise
    return stdout, stderr


async def _read_limited(stream: Optional[asyncio.StreamReader], limit: int) -> bytes:
    if stream is None:
        return b""
    chunks: List[bytes] = []
    total = 0
    while True:
        chunk = await stream.read(_READ_CHUNK_BYTES)
        if not chunk:
            return b"".join(chunks)
        total += len(chunk)
        if limit > 0 and total > limit:
            raise OutputLimitExceeded(limit, total)
        chunks.append(chunk)


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            logger.debug("Process %s already exited", proc.pid)
    await proc.wait()


def container_name(repo_full_name: Optional[str], now_ms: Optional[int] = None) -> str:
    stamp = int(time.time() * 1000) if now_ms is None else int(now_ms)
    if repo_full_name:
        return f"claude-{_NAME_UNSAFE_RE.sub('-', repo_full_name)}-{stamp}"
    return f"claude-general-{stamp}"


def sanitize_docker_args(args: Sequence[str]) -> List[str]:
    """Copy of a docker argv that is safe to log."""
    sanitized: List[str] = []
    previous = ""
    for arg in args:
        if previous == "-e" and "=" in arg:
            key, value = arg.split("=", 1)
            if key in _PLACEHOLDER_VALUES:
                sanitized.append(f"{key}={_PLACEHOLDER_VALUES[key]}")
            elif key in _SENSITIVE_ENV_KEYS or _SENSITIVE_KEY_RE.search(key):
                sanitized.append(f"{key}=[REDACTED]")
            else:
                sanitized.append(f"{key}={redact(value)}")
        else:
            sanitized.append(redact(arg))
        previous = arg
    return sanitized


class DockerContainerRunner:
    def __init__(
        self,
        config: GatewayConfig,
        runner: Optional[CommandRunner] = None,
        policy: Optional[ContainerSecurityPolicy] = None,
    ) -> None:
        self._config = config
        self._runner = runner or AsyncioCommandRunner()
        self._policy = policy or ContainerSecurityPolicy(config)

    @property
    def image(self) -> str:
        return self._config.image

    @staticmethod
    def docker_available() -> bool:
        return shutil.which(DOCKER) is not None

    async def image_exists(self) -> bool:
        result = await self._runner.run(
            [DOCKER, "image", "inspect", self._config.image],
            timeout_sec=IMAGE_INSPECT_TIMEOUT_SEC,
        )
        return result.returncode == 0

    async def build_image(self) -> None:
        argv = [
            DOCKER,
            "build",
            "-f",
            self._config.dockerfile,
            "-t",
            self._config.image,
            str(self._config.build_context),
        ]
        logger.info("Building container image %s", self._config.image)
        try:
            result = await self._runner.run(argv, timeout_sec=IMAGE_BUILD_TIMEOUT_SEC)
        except ExecutionTimeoutError as exc:
            raise ImageBuildError(f"Image build timed out: {exc}") from exc
        if result.returncode != 0:
            logger.error("Image build failed: %s", redact(result.stderr, strict=True)[-2000:])
            raise ImageBuildError(f"Failed to build image {self._config.image} (exit {result.returncode}).")
        logger.info("Built container image %s", self._config.image)

    async def ensure_image(self) -> None:
        if await self.image_exists():
            return
        logger.info("Container image %s not found", self._config.image)
        await self.build_image()

    def build_run_args(self, name: str, env: Mapping[str, str]) -> List[str]:
        args: List[str] = [DOCKER, "run", *self._policy.docker_flags(), "--name", name]
        if self._config.auth_host_dir:
            args.extend(["-v", f"{self._config.auth_host_dir}:{CONTAINER_AUTH_DIR}"])
        args.extend(["-v", f"{Path(self._config.sessions_dir)}:{CONTAINER_SESSIONS_DIR}"])
        for key, value in env.items():
            if value is None or str(value) == "":
                continue
            args.extend(["-e", f"{key}={value}"])
        args.extend(["--entrypoint", self._config.entrypoint, self._config.image])
        return args

    async def run_container(self, args: Sequence[str]) -> str:
        """Run the prepared argv and return stdout.

        Raises :class:`ContainerExecutionError` for non-zero exits,
        :class:`ExecutionTimeoutError` and :class:`OutputLimitExceeded`
        from the underlying runner.
        """
        result = await self._runner.run(
            list(args),
            timeout_sec=self._config.container_lifetime_ms / 1000,
            max_output_bytes=self._config.max_output_bytes,
        )
        if result.returncode != 0:
            raise ContainerExecutionError(result.returncode, stdout=result.stdout, stderr=result.stderr)
        return result.stdout

    async def logs(self, name: str) -> str:
        """Recent container output, or ``""`` when it cannot be read.

        Only the last ``LOG_TAIL_LINES`` lines are requested and the read is
        capped at ``LOG_MAX_BYTES``, so recovery never hits the run budget.
        """
        try:
            result = await self._runner.run(
                [DOCKER, "logs", "--tail", str(LOG_TAIL_LINES), name],
                timeout_sec=CONTROL_TIMEOUT_SEC,
                max_output_bytes=LOG_MAX_BYTES,
            )
        except (ExecutionTimeoutError, OutputLimitExceeded) as exc:
            logger.warning("docker logs %s unavailable: %s", name, exc)
            return ""
        if result.returncode != 0:
            logger.warning("docker logs %s failed: %s", name, redact(result.stderr, strict=True))
            return ""
        return result.stdout

    async def kill(self, name: str) -> bool:
        try:
            result = await self._runner.run([DOCKER, "kill", name], timeout_sec=CONTROL_TIMEOUT_SEC)
        except ExecutionTimeoutError:
            logger.warning("Timed out killing container %s", name)
            return False
        if result.returncode == 0:
            logger.info("Killed container %s", name)
            return True
        if any(marker in result.stderr for marker in _ALREADY_STOPPED_MARKERS):
            logger.debug("Container %s already stopped", name)
        else:
            logger.warning("docker kill %s failed: %s", name, redact(result.stderr, strict=True))
        return False

    async def remove(self, name: str) -> None:
        try:
            result = await self._runner.run([DOCKER, "rm", "-f", name], timeout_sec=CONTROL_TIMEOUT_SEC)
        except ExecutionTimeoutError:
            logger.warning("Timed out removing container %s", name)
            return
        if result.returncode != 0 and "No such container" not in result.stderr:
            logger.warning("docker rm %s failed: %s", name, redact(result.stderr, strict=True))
