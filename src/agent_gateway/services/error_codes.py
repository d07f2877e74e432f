import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Type

from agent_gateway.errors import (
    ConfigurationError,
    ContainerExecutionError,
    EmptyOutputError,
    ExecutionTimeoutError,
    ImageBuildError,
    OutputLimitExceeded,
)


@dataclass(frozen=True)
class ErrorCatalogEntry:
    code: str
    title: str
    user_message: str
    exception_types: List[Type[BaseException]]


ERROR_CATALOG: List[ErrorCatalogEntry] = [
    ErrorCatalogEntry(
        code="ERR_CONFIG",
        title="Configuration error",
        user_message="The gateway is missing required configuration.",
        exception_types=[ConfigurationError],
    ),
    ErrorCatalogEntry(
        code="ERR_IMAGE_BUILD",
        title="Execution image unavailable",
        user_message="The execution image could not be built.",
        exception_types=[ImageBuildError],
    ),
    ErrorCatalogEntry(
        code="ERR_EXEC_TIMEOUT",
        title="Execution timeout",
        user_message="The session exceeded the allowed execution time.",
        exception_types=[ExecutionTimeoutError],
    ),
    ErrorCatalogEntry(
        code="ERR_OUTPUT_LIMIT",
        title="Output too large",
        user_message="The session produced more output than the buffer allows.",
        exception_types=[OutputLimitExceeded],
    ),
    ErrorCatalogEntry(
        code="ERR_CONTAINER_EXIT",
        title="Container exited with error",
        user_message="The execution container returned a non-zero exit code.",
        exception_types=[ContainerExecutionError],
    ),
    ErrorCatalogEntry(
        code="ERR_EMPTY_OUTPUT",
        title="Empty output",
        user_message="The session finished without producing a response.",
        exception_types=[EmptyOutputError],
    ),
    ErrorCatalogEntry(
        code="ERR_UNKNOWN",
        title="Unknown execution error",
        user_message="An unknown error occurred.",
        exception_types=[],
    ),
]


@dataclass(frozen=True)
class ErrorReference:
    error_id: str
    timestamp: str

    def message(self, prefix: str = "Error executing command") -> str:
        return f"{prefix} (Reference: {self.error_id}, Time: {self.timestamp})"


def classify_error(exc: BaseException) -> ErrorCatalogEntry:
    for entry in ERROR_CATALOG:
        if entry.exception_types and isinstance(exc, tuple(entry.exception_types)):
            return entry
    return get_catalog_entry("ERR_UNKNOWN")


def get_catalog_entry(code: str) -> ErrorCatalogEntry:
    for entry in ERROR_CATALOG:
        if entry.code == code:
            return entry
    return next(entry for entry in ERROR_CATALOG if entry.code == "ERR_UNKNOWN")


def new_error_reference() -> ErrorReference:
    return ErrorReference(
        error_id=f"err-{secrets.token_hex(4)}",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
