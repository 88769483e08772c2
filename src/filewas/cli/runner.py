"""Async runner for the claude / glm agent CLIs."""

from __future__ import annotations

import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Sequence

from .utils import build_cli_args, sanitize_environment


class CliRunnerError(RuntimeError):
    """Base class for agent CLI runner errors."""


class CliNotFoundError(CliRunnerError):
    """Raised when an agent CLI executable cannot be located."""


class CliTimeoutError(CliRunnerError):
    """Raised when an agent CLI invocation exceeds its time budget."""


@dataclass(slots=True)
class CliExecutionResult:
    """Holds the outcome of an agent CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CliRunner:
    """Execute agent CLI commands asynchronously."""

    def __init__(self, executable: Path | None = None, *, name: str = "claude") -> None:
        self._name = name
        self._executable_path = self._resolve_executable(executable, name)

    @staticmethod
    def _resolve_executable(explicit: Path | None, name: str) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise CliNotFoundError(f"{name} executable not found at {candidate}")

        binary = shutil.which(name)
        if binary is None:
            raise CliNotFoundError(f"{name} CLI executable not found on PATH")
        return Path(binary)

    @property
    def name(self) -> str:
        return self._name

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> CliExecutionResult:
        return await self._invoke("--version")

    async def spawn(
        self,
        prompt: str,
        *,
        flags: Sequence[str] | None = None,
        cwd: Path | str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CliExecutionResult:
        """Run the CLI in print mode, feeding ``prompt`` on stdin."""

        return await self._invoke(
            *list(flags or []),
            input_text=prompt,
            cwd=cwd,
            timeout=timeout,
            env=env,
        )

    async def resume(
        self,
        session_id: str,
        prompt: str,
        *,
        flags: Sequence[str] | None = None,
        cwd: Path | str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CliExecutionResult:
        """Continue an earlier CLI conversation identified by ``session_id``."""

        args = list(flags or build_cli_args())
        if "-r" not in args:
            args.extend(["-r", session_id])
        return await self.spawn(prompt, flags=args, cwd=cwd, timeout=timeout, env=env)

    async def _invoke(
        self,
        *args: str,
        input_text: str | None = None,
        cwd: Path | str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CliExecutionResult:
        cmd = [str(self._executable_path), *args]
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=sanitize_environment(env),
        )
        payload = input_text.encode("utf-8") if input_text is not None else None
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                process.communicate(payload), timeout=timeout
            )
        except asyncio.TimeoutError as exc:
            await _terminate(process)
            raise CliTimeoutError(
                f"{self._name} CLI did not finish within {timeout:g}s"
            ) from exc
        except asyncio.CancelledError:
            await _terminate(process)
            raise
        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        return CliExecutionResult(args=tuple(cmd), returncode=process.returncode, stdout=stdout, stderr=stderr)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


class FakeCliRunner(CliRunner):
    """Test double that simulates agent CLI responses."""

    def __init__(  # type: ignore[override]
        self,
        responses: Iterable[CliExecutionResult] | None = None,
        *,
        name: str = "claude",
        delay: float = 0.0,
    ) -> None:
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._inputs: list[str | None] = []
        self._delay = delay
        self._name = name
        self._executable_path = Path(f"/tmp/fake-{name}")

    async def _invoke(  # type: ignore[override]
        self,
        *args: str,
        input_text: str | None = None,
        cwd: Path | str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CliExecutionResult:
        self._invocations.append(tuple(args))
        self._inputs.append(input_text)
        if self._delay:
            try:
                await asyncio.wait_for(asyncio.sleep(self._delay), timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise CliTimeoutError(f"{self._name} CLI did not finish within {timeout:g}s") from exc
        if self._responses:
            return self._responses.pop(0)
        return CliExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    @property
    def inputs(self) -> list[str | None]:
        return self._inputs


def serialize_result(result: CliExecutionResult) -> str:
    """Serialize a command result for diagnostics output."""

    return json.dumps(
        {
            "args": list(result.args),
            "returncode": result.returncode,
            "stdout": result.stdout,
            "stderr": result.stderr,
        }
    )
