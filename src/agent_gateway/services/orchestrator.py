"""Runs one assistant session end to end.

The orchestrator owns a session from id allocation to the final artifact:
it builds the prompt, records it, launches the container, recovers the
response and converts every failure into an :class:`ExecutionResult` that
carries an opaque reference instead of raw process output.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence

from agent_gateway.agent.prompt_builder import PromptBuilder
from agent_gateway.config import GatewayConfig
from agent_gateway.domain.contracts import ExecutionRequest, ExecutionResult
from agent_gateway.domain.operations import OperationType, PermissionSet, permission_for
from agent_gateway.domain.sessions import SessionMetadata
from agent_gateway.errors import (
    ConfigurationError,
    ContainerExecutionError,
    EmptyOutputError,
    ExecutionTimeoutError,
    GatewayError,
)
from agent_gateway.execution.docker_runner import (
    CONTAINER_SESSIONS_DIR,
    DockerContainerRunner,
    container_name,
    sanitize_docker_args,
)
from agent_gateway.execution.mcp_config import McpConfig, McpConfigLoader
from agent_gateway.observability.structured_log import log_json
from agent_gateway.persistence.session_store import SessionStore
from agent_gateway.services.credentials import CredentialResolver
from agent_gateway.services.error_codes import classify_error, get_catalog_entry, new_error_reference
from agent_gateway.util import redact, redact_values, sanitize_bot_mentions

logger = logging.getLogger(__name__)

_LOG_TAIL_CHARS = 4000
_MISSING_IMAGE_MARKER = "Unable to find image"


class ExecutionState(str, Enum):
    PENDING = "pending"
    IMAGE_READY = "image_ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CLEANUP = "cleanup"


@dataclass
class _Attempt:
    session_id: str
    operation_type: OperationType
    repo_full_name: Optional[str]
    state: ExecutionState = ExecutionState.PENDING
    container_name: str = ""
    docker_args: List[str] = field(default_factory=list)
    container_started: bool = False


class ExecutionOrchestrator:
    def __init__(
        self,
        config: GatewayConfig,
        store: SessionStore,
        credentials: CredentialResolver,
        docker: Optional[DockerContainerRunner] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        mcp_loader: Optional[McpConfigLoader] = None,
    ) -> None:
        self._config = config
        self._store = store
        self._credentials = credentials
        self._docker = docker or DockerContainerRunner(config)
        self._prompts = prompt_builder or PromptBuilder(config.bot_username)
        self._mcp_loader = mcp_loader or McpConfigLoader(config.mcp_template_path, config.mcp_config_path)
        self._semaphore: Optional[asyncio.Semaphore] = None
        if config.max_concurrent_executions > 0:
            self._semaphore = asyncio.Semaphore(config.max_concurrent_executions)

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def docker(self) -> DockerContainerRunner:
        return self._docker

    def generate_prompt(self, request: ExecutionRequest) -> str:
        """Prompt the container would receive for ``request``; nothing is executed."""
        op = OperationType.parse(request.operation_type)
        return self._build_prompt(request, op, self._mcp_for(permission_for(op)))

    async def execute(self, request: ExecutionRequest) -> ExecutionResult:
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        op = OperationType.parse(request.operation_type)
        session_id = request.session_id or self._store.generate_session_id()
        session_path = self._store.session_path(session_id)
        permissions = permission_for(op)
        mcp = self._mcp_for(permissions)
        prompt = self._build_prompt(request, op, mcp)

        self._store.create_session(
            SessionMetadata(
                id=session_id,
                timestamp=int(started_at.timestamp() * 1000),
                operation_id=session_id,
                repo_full_name=request.repo_full_name,
                issue_number=request.issue_number,
                is_pull_request=request.is_pull_request,
                branch_name=request.branch_name,
                operation_type=op.value,
                channel_id=request.channel_id,
                user_id=request.user_id,
            )
        )
        self._store.save_prompt(session_id, prompt)

        attempt = _Attempt(session_id=session_id, operation_type=op, repo_full_name=request.repo_full_name)
        secrets = self._credentials.known_values()

        def _result(**kwargs) -> ExecutionResult:
            return ExecutionResult(
                session_id=session_id,
                session_path=str(session_path),
                started_at=started_at.isoformat(),
                finished_at=datetime.now(timezone.utc).isoformat(),
                duration_ms=int((time.monotonic() - started) * 1000),
                **kwargs,
            )

        if self._config.test_mode:
            response = self._test_mode_response(request)
            self._store.save_response(session_id, response)
            log_json(logger, "execution.test_mode", session_id=session_id, operation_type=op.value)
            return _result(success=True, response=response)

        try:
            if self._semaphore is None:
                raw = await self._run(attempt, request, prompt, permissions, mcp)
            else:
                async with self._semaphore:
                    raw = await self._run(attempt, request, prompt, permissions, mcp)
        except ConfigurationError as exc:
            reference = new_error_reference()
            self._transition(attempt, ExecutionState.FAILED)
            logger.error("Execution blocked by configuration (%s): %s", reference.error_id, exc)
            return _result(
                success=False,
                error=self._sanitize(f"{exc} (Reference: {reference.error_id}, Time: {reference.timestamp})"),
                error_code=get_catalog_entry("ERR_CONFIG").code,
                error_reference=reference.error_id,
            )
        except Exception as exc:
            reference = await self._handle_failure(attempt, exc, secrets)
            return _result(
                success=False,
                error=self._sanitize(reference.message()),
                error_code=classify_error(exc).code,
                error_reference=reference.error_id,
            )

        response = self._sanitize(redact_values(raw.strip(), secrets))
        self._store.save_response(session_id, response)
        self._transition(attempt, ExecutionState.SUCCEEDED)
        return _result(success=True, response=response)

    # ------------------------------------------------------------------

    async def _run(
        self,
        attempt: _Attempt,
        request: ExecutionRequest,
        prompt: str,
        permissions: PermissionSet,
        mcp: Optional[McpConfig],
    ) -> str:
        github_token = self._credentials.require("GITHUB_TOKEN")
        await self._docker.ensure_image()
        self._transition(attempt, ExecutionState.IMAGE_READY)

        attempt.container_name = container_name(request.repo_full_name)
        env = self._container_env(attempt, request, prompt, permissions, mcp, github_token)
        attempt.docker_args = self._docker.build_run_args(attempt.container_name, env)
        log_json(
            logger,
            "container.start",
            session_id=attempt.session_id,
            container=attempt.container_name,
            docker_args=sanitize_docker_args(attempt.docker_args),
        )

        self._transition(attempt, ExecutionState.RUNNING)
        attempt.container_started = True
        output = await self._docker.run_container(attempt.docker_args)
        if not output.strip():
            logger.warning("Empty stdout from %s, reading container logs", attempt.container_name)
            output = await self._docker.logs(attempt.container_name)
        if not output.strip():
            raise EmptyOutputError("Container produced no output.")
        # Failed containers are removed by _handle_failure once logs are read.
        await self._docker.remove(attempt.container_name)
        return output

    def _container_env(
        self,
        attempt: _Attempt,
        request: ExecutionRequest,
        prompt: str,
        permissions: PermissionSet,
        mcp: Optional[McpConfig],
        github_token: str,
    ) -> Dict[str, str]:
        servers = mcp.server_names if mcp else ()
        env = {
            "REPO_FULL_NAME": request.repo_full_name or "",
            "ISSUE_NUMBER": "" if request.issue_number is None else str(request.issue_number),
            "IS_PULL_REQUEST": "true" if request.is_pull_request else "false",
            "BRANCH_NAME": request.branch_name or "",
            "OPERATION_TYPE": attempt.operation_type.value,
            "COMMAND": prompt,
            "ALLOWED_TOOLS": permissions.allowed_tools_value(servers),
            "SESSION_ID": attempt.session_id,
            "CLAUDE_TRACE_SESSION_ID": attempt.session_id,
            "TRACE_OUTPUT_DIR": f"{CONTAINER_SESSIONS_DIR}/{attempt.session_id}",
            "GITHUB_TOKEN": github_token,
            "ANTHROPIC_API_KEY": self._credentials.resolve("ANTHROPIC_API_KEY") or "",
            "VERCEL_TOKEN": self._credentials.resolve("VERCEL_TOKEN") or "",
            "BOT_USERNAME": self._config.bot_username,
            "BOT_EMAIL": self._config.bot_email,
            "MCP_CONFIG_CONTENT": mcp.content if mcp and permissions.allow_mcp_tools else "",
            "WORKSPACE_TEMPLATE": self._config.workspace_template,
        }
        return {key: value for key, value in env.items() if value}

    async def _handle_failure(self, attempt: _Attempt, exc: Exception, secrets: Sequence[str]):
        reference = new_error_reference()
        timed_out = isinstance(exc, ExecutionTimeoutError)
        self._transition(attempt, ExecutionState.TIMED_OUT if timed_out else ExecutionState.FAILED)

        stdout = getattr(exc, "stdout", "") or ""
        stderr = getattr(exc, "stderr", "") or ""
        if isinstance(exc, ContainerExecutionError) and _MISSING_IMAGE_MARKER in stderr:
            logger.error("Container image missing at run time, attempting rebuild")
            try:
                await self._docker.build_image()
            except GatewayError as rebuild_exc:
                logger.error("Rebuild failed: %s", rebuild_exc)

        container_logs = ""
        if attempt.container_started and attempt.container_name:
            try:
                container_logs = await self._docker.logs(attempt.container_name)
            except GatewayError as logs_exc:
                logger.warning("Could not read logs for %s: %s", attempt.container_name, logs_exc)

        log_json(
            logger,
            "execution.failed",
            level=logging.ERROR,
            error_id=reference.error_id,
            timestamp=reference.timestamp,
            error_code=classify_error(exc).code,
            error=redact(str(exc), secrets, strict=True),
            stderr=redact(stderr, secrets, strict=True)[-_LOG_TAIL_CHARS:],
            stdout=redact(stdout, secrets, strict=True)[-_LOG_TAIL_CHARS:],
            container_logs=redact(container_logs, secrets, strict=True)[-_LOG_TAIL_CHARS:],
            container=attempt.container_name,
            docker_args=sanitize_docker_args(attempt.docker_args),
            session_id=attempt.session_id,
            repo=attempt.repo_full_name,
        )

        if attempt.container_started and attempt.container_name:
            self._transition(attempt, ExecutionState.CLEANUP)
            await self._cleanup(attempt.container_name)
        return reference

    async def _cleanup(self, name: str) -> None:
        try:
            await self._docker.kill(name)
        except GatewayError as exc:
            logger.warning("Kill of %s failed: %s", name, exc)
        try:
            await self._docker.remove(name)
        except GatewayError as exc:
            logger.warning("Removal of %s failed: %s", name, exc)

    def _build_prompt(self, request: ExecutionRequest, op: OperationType, mcp: Optional[McpConfig]) -> str:
        return self._prompts.build(
            operation_type=op,
            command=request.command,
            repo_full_name=request.repo_full_name,
            issue_number=request.issue_number,
            is_pull_request=request.is_pull_request,
            branch_name=request.branch_name,
            mcp_servers=mcp.server_names if mcp else (),
        )

    def _mcp_for(self, permissions: PermissionSet) -> Optional[McpConfig]:
        if not permissions.allow_mcp_tools:
            return None
        return self._mcp_loader.load()

    def _test_mode_response(self, request: ExecutionRequest) -> str:
        branch_step = (
            f"Checkout PR branch: {request.branch_name}" if request.is_pull_request else "Use the main branch"
        )
        text = (
            "Hello! I'm Claude responding to your request.\n\n"
            "Since this is a test environment, I'm providing a simulated response. In production, I would:\n"
            f"1. Clone the repository {request.repo_full_name or '(none)'}\n"
            f"2. {branch_step}\n"
            f'3. Analyze the codebase and execute: "{request.command}"\n'
            "4. Use GitHub CLI to interact with issues, PRs, and comments\n\n"
            "For real functionality, disable GATEWAY_TEST_MODE and configure GitHub and Claude credentials."
        )
        return self._sanitize(text)

    def _sanitize(self, text: str) -> str:
        return sanitize_bot_mentions(text, self._config.bot_username)

    def _transition(self, attempt: _Attempt, state: ExecutionState) -> None:
        log_json(
            logger,
            "execution.state",
            session_id=attempt.session_id,
            previous=attempt.state.value,
            state=state.value,
        )
        attempt.state = state
