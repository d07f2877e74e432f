"""Bridge between chat commands and the execution orchestrator.

Chat interactions must be acknowledged within seconds, while a session can
run for hours. ``dispatch`` records the pending operation, schedules the
execution in the background and returns at once; the notifier delivers the
result when it is ready.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol, Set

from agent_gateway.agent.prompt_builder import CHAT_REPOSITORY_ISSUE_NUMBER
from agent_gateway.domain.contracts import ExecutionRequest, ExecutionResult
from agent_gateway.domain.operations import OperationType
from agent_gateway.observability.structured_log import log_json
from agent_gateway.presentation.session_links import SessionLinks, generate_session_links
from agent_gateway.services.artifact_cache import ArtifactCache
from agent_gateway.services.operation_tracker import OperationTracker, PendingOperation
from agent_gateway.services.orchestrator import ExecutionOrchestrator

logger = logging.getLogger(__name__)


class CompletionNotifier(Protocol):
    async def notify(self, operation: PendingOperation, result: ExecutionResult, links: SessionLinks) -> None:
        ...


class ChatDispatcher:
    def __init__(
        self,
        orchestrator: ExecutionOrchestrator,
        tracker: OperationTracker,
        notifier: CompletionNotifier,
        base_url: str,
        prompt_cache: Optional[ArtifactCache] = None,
        response_cache: Optional[ArtifactCache] = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._tracker = tracker
        self._notifier = notifier
        self._base_url = base_url
        self._prompt_cache = prompt_cache
        self._response_cache = response_cache
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def build_request(
        self,
        command: str,
        session_id: str,
        repository: Optional[str] = None,
        channel_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ExecutionRequest:
        if repository:
            return ExecutionRequest(
                command=command,
                operation_type=OperationType.DISCORD_REPOSITORY,
                repo_full_name=repository,
                issue_number=CHAT_REPOSITORY_ISSUE_NUMBER,
                session_id=session_id,
                channel_id=channel_id,
                user_id=user_id,
            )
        return ExecutionRequest(
            command=command,
            operation_type=OperationType.DEFAULT,
            session_id=session_id,
            channel_id=channel_id,
            user_id=user_id,
        )

    def dispatch(
        self,
        command: str,
        user_id: str,
        channel_id: str,
        interaction_id: str,
        username: str = "",
        guild_id: Optional[str] = None,
        repository: Optional[str] = None,
    ) -> PendingOperation:
        """Register and schedule a chat command; must be called inside the event loop."""
        session_id = self._orchestrator.store.generate_session_id()
        request = self.build_request(command, session_id, repository, channel_id, user_id)
        operation = PendingOperation(
            operation_id=session_id,
            user_id=user_id,
            channel_id=channel_id,
            command=command,
            interaction_id=interaction_id,
            start_time=datetime.now(timezone.utc),
            username=username,
            guild_id=guild_id,
            repository=repository,
            full_prompt=self._orchestrator.generate_prompt(request),
            session_id=session_id,
        )
        self._tracker.start(operation)
        if self._prompt_cache is not None and operation.full_prompt:
            self._prompt_cache.put(operation.operation_id, operation.full_prompt, operation.operation_id)

        task = asyncio.create_task(self._run(operation, request), name=f"chat-{operation.operation_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return operation

    async def wait_idle(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, operation: PendingOperation, request: ExecutionRequest) -> None:
        try:
            result = await self._orchestrator.execute(request)
        except Exception as exc:
            logger.exception("Chat operation %s crashed", operation.operation_id)
            result = ExecutionResult(
                success=False,
                session_id=operation.session_id or operation.operation_id,
                error=f"Execution failed: {type(exc).__name__}",
                error_code="ERR_UNKNOWN",
            )
        finally:
            self._tracker.complete(operation.operation_id)

        if self._response_cache is not None and result.response:
            self._response_cache.put(operation.operation_id, result.response, operation.operation_id)

        links = generate_session_links(result.session_id, self._base_url, result.session_path)
        log_json(
            logger,
            "chat.completed",
            operation_id=operation.operation_id,
            success=result.success,
            duration_ms=result.duration_ms,
            repository=operation.repository or "general",
        )
        try:
            await self._notifier.notify(operation, result, links)
        except Exception:
            logger.exception("Failed to deliver result for operation %s", operation.operation_id)
