from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from agent_gateway.domain.operations import OperationType


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


class CommandRunner(Protocol):
    async def run(
        self,
        argv: Sequence[str],
        timeout_sec: float = 60,
        max_output_bytes: int = 0,
    ) -> CommandResult:
        ...


@dataclass(frozen=True)
class ExecutionRequest:
    command: str
    operation_type: OperationType = OperationType.DEFAULT
    repo_full_name: Optional[str] = None
    issue_number: Optional[int] = None
    is_pull_request: bool = False
    branch_name: Optional[str] = None
    session_id: Optional[str] = None
    channel_id: Optional[str] = None
    user_id: Optional[str] = None


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    session_id: str
    response: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    error_reference: Optional[str] = None
    session_path: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    duration_ms: int = 0
