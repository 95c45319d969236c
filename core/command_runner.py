"""Utilities for executing external commands with optional dry-run support."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence
import os
import shlex
import subprocess
import threading


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False
    terminated: bool = False


class CommandError(RuntimeError):
    """Raised when a command fails."""

    def __init__(self, result: CommandResult):
        message = f"Command failed with exit code {result.returncode}: {' '.join(map(shlex.quote, result.command))}"
        if result.terminated:
            message = f"{message}\nprocess was terminated."
        elif result.streamed:
            message = f"{message}\nstdout/stderr already streamed above."
        else:
            message = (
                f"{message}\n"
                f"stdout: {result.stdout}\n"
                f"stderr: {result.stderr}"
            )
        super().__init__(message)
        self.result = result


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
        stdin: str | None = None,
    ) -> CommandResult:
        raise NotImplementedError

    def terminate_running(self) -> int:
        """Terminate in-flight commands, returning how many were signalled."""
        return 0

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(part) for part in command)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`."""

    def __init__(self, *, terminate_timeout: float = 5.0) -> None:
        self._terminate_timeout = terminate_timeout
        self._lock = threading.Lock()
        self._running: List[subprocess.Popen[str]] = []
        self._terminated: set[int] = set()

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None) -> Dict[str, str] | None:
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    def _finalize(self, result: CommandResult, *, check: bool) -> CommandResult:
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
        stdin: str | None = None,
    ) -> CommandResult:
        merged_env = self._merge_environment(env)
        capture = None if stream else subprocess.PIPE
        process = subprocess.Popen(
            list(command),
            cwd=str(cwd) if cwd else None,
            env=merged_env,
            stdin=subprocess.PIPE if stdin is not None else None,
            stdout=capture,
            stderr=capture,
            text=True,
        )
        with self._lock:
            self._running.append(process)
        try:
            stdout, stderr = process.communicate(input=stdin)
        finally:
            with self._lock:
                self._running.remove(process)
                terminated = process.pid in self._terminated
                self._terminated.discard(process.pid)

        return self._finalize(
            CommandResult(
                command=command,
                returncode=process.returncode,
                stdout=stdout or "",
                stderr=stderr or "",
                streamed=stream,
                terminated=terminated,
            ),
            check=check,
        )

    def terminate_running(self) -> int:
        with self._lock:
            processes = list(self._running)
            for process in processes:
                self._terminated.add(process.pid)
        for process in processes:
            if process.poll() is not None:
                continue
            process.terminate()
            try:
                process.wait(timeout=self._terminate_timeout)
            except subprocess.TimeoutExpired:
                process.kill()
        return len(processes)


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]
    note: str | None
    stream: bool
    stdin: str | None = None


class RecordingCommandRunner(CommandRunner):
    """Command runner that records commands instead of executing them."""

    def __init__(self) -> None:
        self.commands: List[RecordedCommand] = []
        self._lock = threading.Lock()

    @staticmethod
    def _record_entry(
        *,
        command: Sequence[str],
        cwd: Path | None,
        env: Mapping[str, str] | None,
        note: str | None,
        stream: bool,
        stdin: str | None,
    ) -> RecordedCommand:
        return RecordedCommand(
            command=list(command),
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env else {},
            note=note,
            stream=stream,
            stdin=stdin,
        )

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
        stdin: str | None = None,
    ) -> CommandResult:
        entry = self._record_entry(command=command, cwd=cwd, env=env, note=note, stream=stream, stdin=stdin)
        with self._lock:
            self.commands.append(entry)
        return CommandResult(command=command, returncode=0, stdout="", stderr="")

    def iter_commands(self) -> Iterable[RecordedCommand]:
        return iter(self.commands)

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        default_cwd = str(workspace) if workspace else None
        for record in self.commands:
            cmd = self.format_command(record.command)
            cwd = record.cwd or default_cwd
            note = record.note
            parts: List[str] = ["[dry-run]"]
            if note:
                parts.append(note)
            if cwd:
                parts.append(f"(cwd={cwd})")
            parts.append(cmd)
            if record.stdin is not None:
                parts.append(f"<<< {record.stdin.strip()!r}")
            yield " ".join(parts)
