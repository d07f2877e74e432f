class GatewayError(Exception):
    """Base class for errors raised by the execution core."""


class ConfigurationError(GatewayError):
    """A required setting or credential is missing or invalid."""


class InvalidSessionIdError(GatewayError, ValueError):
    def __init__(self, session_id: object = ""):
        super().__init__("Invalid session ID format")
        self.session_id = session_id


class ImageBuildError(GatewayError):
    pass


class ExecutionTimeoutError(GatewayError):
    def __init__(self, timeout_ms: int):
        super().__init__(f"Execution timeout after {timeout_ms}ms.")
        self.timeout_ms = timeout_ms


class OutputLimitExceeded(GatewayError):
    def __init__(self, limit_bytes: int, actual_bytes: int):
        super().__init__(f"Output exceeded buffer limit ({actual_bytes} > {limit_bytes} bytes).")
        self.limit_bytes = limit_bytes
        self.actual_bytes = actual_bytes


class ContainerExecutionError(GatewayError):
    """The container exited non-zero or could not be started.

    ``stdout``/``stderr`` hold raw process output; they must be redacted
    before being logged.
    """

    def __init__(self, returncode: int, stdout: str = "", stderr: str = ""):
        super().__init__(f"Container exited with code {returncode}.")
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class EmptyOutputError(GatewayError):
    pass
