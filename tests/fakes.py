from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Sequence
import threading
import time

from core.command_runner import CommandError, CommandResult, CommandRunner


@dataclass(slots=True)
class Invocation:
    command: List[str]
    cwd: Path | None
    stdin: str | None
    note: str | None


class ScriptedCommandRunner(CommandRunner):
    """Records invocations and answers with scripted exit codes.

    ``exit_codes`` maps a command-word prefix (``("pub", "publish")``) to the
    exit code that command returns; everything else succeeds.
    """

    def __init__(
        self,
        exit_codes: Mapping[tuple[str, ...], int] | None = None,
        *,
        delay: float = 0.0,
        on_run: Callable[[List[str]], None] | None = None,
    ) -> None:
        self.exit_codes: Dict[tuple[str, ...], int] = dict(exit_codes or {})
        self.delay = delay
        self.on_run = on_run
        self.invocations: List[Invocation] = []
        self.terminate_calls = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        return len(self.invocations)

    @property
    def notes(self) -> List[str | None]:
        return [entry.note for entry in self.invocations]

    def _exit_code(self, command: Sequence[str]) -> int:
        for prefix, code in self.exit_codes.items():
            if tuple(command[: len(prefix)]) == prefix:
                return code
        return 0

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
        with self._lock:
            self.invocations.append(Invocation(list(command), cwd, stdin, note))
        if self.on_run is not None:
            self.on_run(list(command))
        if self.delay:
            time.sleep(self.delay)
        code = self._exit_code(command)
        result = CommandResult(command=command, returncode=code, stdout="out", stderr="err" if code else "")
        if check and code != 0:
            raise CommandError(result)
        return result

    def terminate_running(self) -> int:
        self.terminate_calls += 1
        return 0
