import asyncio
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, patch

from agent_gateway.config import load_config
from agent_gateway.domain.contracts import CommandResult
from agent_gateway.errors import (
    ContainerExecutionError,
    ExecutionTimeoutError,
    ImageBuildError,
    OutputLimitExceeded,
)
from agent_gateway.execution.docker_runner import (
    LOG_TAIL_LINES,
    AsyncioCommandRunner,
    DockerContainerRunner,
    container_name,
    sanitize_docker_args,
)


class _FakeStream:
    def __init__(self, proc, data=b"", endless=False):
        self._proc = proc
        self._data = data
        self._endless = endless
        self.bytes_read = 0

    async def read(self, n=-1):
        if self._proc.hang and not self._proc.killed:
            await asyncio.sleep(3600)
        if self._endless:
            if self._proc.killed:
                return b""
            chunk = b"y" * n
        else:
            chunk, self._data = self._data[:n], self._data[n:]
        self.bytes_read += len(chunk)
        await asyncio.sleep(0)
        return chunk


class _FakeProc:
    def __init__(self, returncode=0, stdout=b"", stderr=b"", hang=False, endless_stdout=False):
        self.pid = 4242
        self.returncode = None
        self._final_returncode = returncode
        self.hang = hang
        self.killed = False
        self.stdout = _FakeStream(self, stdout, endless=endless_stdout)
        self.stderr = _FakeStream(self, stderr)

    async def wait(self):
        if self.returncode is None:
            self.returncode = -9 if self.killed else self._final_returncode
        return self.returncode

    def kill(self):
        self.killed = True


class _ScriptedRunner:
    """Returns results keyed by docker subcommand and records every argv."""

    def __init__(self, results=None):
        self.calls = []
        self.results = dict(results or {})

    async def run(self, argv, timeout_sec=60, max_output_bytes=0):
        self.calls.append(list(argv))
        outcome = self.results.get(argv[1], CommandResult(0, "", ""))
        if isinstance(outcome, list):
            outcome = outcome.pop(0) if len(outcome) > 1 else outcome[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _config(**env):
    base = {"BOT_USERNAME": "helper", "CLAUDE_SESSIONS_VOLUME_PATH": "/tmp/agent-gateway-sessions"}
    base.update(env)
    return load_config(base)


class TestAsyncioCommandRunner(unittest.IsolatedAsyncioTestCase):
    async def test_returns_decoded_output(self):
        proc = _FakeProc(returncode=0, stdout=b"hello", stderr=b"")
        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=proc)):
            result = await AsyncioCommandRunner().run(["docker", "ps"])
        self.assertEqual(result, CommandResult(0, "hello", ""))

    async def test_timeout_kills_and_raises(self):
        proc = _FakeProc(hang=True)
        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=proc)):
            with self.assertRaises(ExecutionTimeoutError) as ctx:
                await AsyncioCommandRunner().run(["docker", "run"], timeout_sec=0.01)
        self.assertTrue(proc.killed)
        self.assertEqual(ctx.exception.timeout_ms, 10)

    async def test_output_over_budget_is_an_error(self):
        proc = _FakeProc(returncode=0, stdout=b"x" * 2048)
        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=proc)):
            with self.assertRaises(OutputLimitExceeded) as ctx:
                await AsyncioCommandRunner().run(["docker", "run"], max_output_bytes=1024)
        self.assertEqual(ctx.exception.actual_bytes, 2048)
        self.assertTrue(proc.killed)

    async def test_unbounded_stream_is_cut_off_at_the_budget(self):
        proc = _FakeProc(endless_stdout=True)
        limit = 200_000
        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=proc)):
            with self.assertRaises(OutputLimitExceeded):
                await AsyncioCommandRunner().run(["docker", "run"], timeout_sec=5, max_output_bytes=limit)
        self.assertTrue(proc.killed)
        self.assertLessEqual(proc.stdout.bytes_read, limit + 65536)

    async def test_non_zero_exit_is_returned(self):
        proc = _FakeProc(returncode=3, stderr=b"bad")
        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=proc)):
            result = await AsyncioCommandRunner().run(["docker", "ps"], max_output_bytes=1024)
        self.assertEqual(result, CommandResult(3, "", "bad"))
        self.assertFalse(proc.killed)

    async def test_missing_binary_is_reported_as_exit_127(self):
        with patch("asyncio.create_subprocess_exec", new=AsyncMock(side_effect=FileNotFoundError())):
            result = await AsyncioCommandRunner().run(["docker", "ps"])
        self.assertEqual(result.returncode, 127)


class TestDockerArgs(unittest.TestCase):
    def test_container_name_sanitizes_repo(self):
        self.assertEqual(container_name("octo/my.repo", now_ms=42), "claude-octo-my-repo-42")
        self.assertEqual(container_name(None, now_ms=42), "claude-general-42")

    def test_build_run_args_layout(self):
        runner = DockerContainerRunner(_config(CLAUDE_AUTH_HOST_DIR="/host/auth"))
        args = runner.build_run_args("claude-x-1", {"SESSION_ID": "abc", "EMPTY": "", "COMMAND": "hi"})
        self.assertEqual(args[:2], ["docker", "run"])
        self.assertEqual(args[2:4], ["--cap-drop", "ALL"])
        self.assertIn("--name", args)
        self.assertEqual(args[args.index("--name") + 1], "claude-x-1")
        self.assertIn("/host/auth:/home/node/.claude", args)
        self.assertIn(f"{Path('/tmp/agent-gateway-sessions').resolve()}:/sessions", args)
        self.assertIn("SESSION_ID=abc", args)
        self.assertNotIn("EMPTY=", args)
        self.assertEqual(args[-3:], ["--entrypoint", "/scripts/runtime/claudecode-entrypoint.sh", "claudecode:latest"])
        self.assertNotIn("--rm", args)

    def test_sanitize_docker_args(self):
        args = [
            "docker", "run",
            "-e", "GITHUB_TOKEN=ghp_abcdefghijklmnopqrstuvwxyz",
            "-e", "COMMAND=secret prompt",
            "-e", "MCP_CONFIG_CONTENT={\"mcpServers\": {}}",
            "-e", "CUSTOM_SECRET=value",
            "-e", "REPO_FULL_NAME=octo/repo",
        ]
        out = sanitize_docker_args(args)
        self.assertIn("GITHUB_TOKEN=[REDACTED]", out)
        self.assertIn("COMMAND=[COMMAND_CONTENT]", out)
        self.assertIn("MCP_CONFIG_CONTENT=[MCP_CONFIG]", out)
        self.assertIn("CUSTOM_SECRET=[REDACTED]", out)
        self.assertIn("REPO_FULL_NAME=octo/repo", out)
        self.assertNotIn("secret prompt", " ".join(out))


class TestDockerContainerRunner(unittest.IsolatedAsyncioTestCase):
    async def test_existing_image_is_not_rebuilt(self):
        fake = _ScriptedRunner({"image": CommandResult(0, "[]", "")})
        await DockerContainerRunner(_config(), runner=fake).ensure_image()
        self.assertEqual([c[1] for c in fake.calls], ["image"])

    async def test_missing_image_is_built(self):
        fake = _ScriptedRunner({"image": CommandResult(1, "", "No such image"), "build": CommandResult(0, "", "")})
        await DockerContainerRunner(_config(), runner=fake).ensure_image()
        build = fake.calls[1]
        self.assertEqual(build[:6], ["docker", "build", "-f", "Dockerfile.claudecode", "-t", "claudecode:latest"])

    async def test_build_failure_raises_and_is_not_cached(self):
        fake = _ScriptedRunner({"image": CommandResult(1, "", ""), "build": CommandResult(1, "", "boom")})
        runner = DockerContainerRunner(_config(), runner=fake)
        with self.assertRaises(ImageBuildError):
            await runner.ensure_image()
        with self.assertRaises(ImageBuildError):
            await runner.ensure_image()
        self.assertEqual([c[1] for c in fake.calls], ["image", "build", "image", "build"])

    async def test_run_container_non_zero_exit(self):
        fake = _ScriptedRunner({"run": CommandResult(2, "partial", "failure")})
        with self.assertRaises(ContainerExecutionError) as ctx:
            await DockerContainerRunner(_config(), runner=fake).run_container(["docker", "run"])
        self.assertEqual(ctx.exception.returncode, 2)
        self.assertEqual(ctx.exception.stderr, "failure")

    async def test_kill_tolerates_stopped_container(self):
        fake = _ScriptedRunner({"kill": CommandResult(1, "", "Error: container abc is not running")})
        self.assertFalse(await DockerContainerRunner(_config(), runner=fake).kill("abc"))

    async def test_logs_failure_returns_empty(self):
        fake = _ScriptedRunner({"logs": CommandResult(1, "", "No such container")})
        self.assertEqual(await DockerContainerRunner(_config(), runner=fake).logs("abc"), "")

    async def test_logs_reads_a_bounded_tail(self):
        fake = _ScriptedRunner({"logs": CommandResult(0, "last lines", "")})
        self.assertEqual(await DockerContainerRunner(_config(), runner=fake).logs("abc"), "last lines")
        self.assertEqual(fake.calls[0], ["docker", "logs", "--tail", str(LOG_TAIL_LINES), "abc"])

    async def test_logs_over_budget_or_slow_returns_empty(self):
        for error in (OutputLimitExceeded(1024, 4096), ExecutionTimeoutError(30000)):
            fake = _ScriptedRunner({"logs": error})
            with self.assertLogs("agent_gateway.execution.docker_runner", level="WARNING"):
                self.assertEqual(await DockerContainerRunner(_config(), runner=fake).logs("abc"), "")

    async def test_kill_and_remove_tolerate_timeouts(self):
        fake = _ScriptedRunner({"kill": ExecutionTimeoutError(30000), "rm": ExecutionTimeoutError(30000)})
        runner = DockerContainerRunner(_config(), runner=fake)
        self.assertFalse(await runner.kill("abc"))
        await runner.remove("abc")
        self.assertEqual([c[1] for c in fake.calls], ["kill", "rm"])


if __name__ == "__main__":
    unittest.main()
