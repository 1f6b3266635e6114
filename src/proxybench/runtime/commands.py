from __future__ import annotations

import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from proxybench.errors import CommandError

log = logging.getLogger("proxybench.commands")


def netns_exec(ns: str, *argv: str) -> list[str]:
    return ["ip", "netns", "exec", ns, *argv]


def pretty(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(token)) for token in argv)


@dataclass(frozen=True)
class CommandResult:
    argv: Tuple[str, ...]
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class WorkerProcess:
    argv: Tuple[str, ...] = ()

    def wait(self, timeout_s: float | None = None) -> int:
        raise NotImplementedError

    def terminate(self) -> None:
        raise NotImplementedError


class CommandRunner:
    """Capability for every external command the harness issues."""

    def run(self, argv: Sequence[str], *, check: bool = True, timeout_s: float | None = None) -> CommandResult:
        raise NotImplementedError

    def spawn(self, argv: Sequence[str], *, output_path: Path) -> WorkerProcess:
        raise NotImplementedError

    def sleep(self, seconds: float) -> None:
        raise NotImplementedError


class _PopenWorker(WorkerProcess):
    def __init__(self, argv: Tuple[str, ...], proc: subprocess.Popen) -> None:
        self.argv = argv
        self._proc = proc

    def wait(self, timeout_s: float | None = None) -> int:
        return self._proc.wait(timeout=timeout_s)

    def terminate(self) -> None:
        if self._proc.poll() is not None:
            return
        self._proc.terminate()
        try:
            self._proc.wait(timeout=5)
        except subprocess.TimeoutExpired:
            self._proc.kill()
            self._proc.wait(timeout=5)


class SubprocessRunner(CommandRunner):
    def run(self, argv: Sequence[str], *, check: bool = True, timeout_s: float | None = None) -> CommandResult:
        if isinstance(argv, str):
            raise TypeError("run() expects argv list, not a string")
        cmd = tuple(str(token) for token in argv)
        log.debug("run: %s", pretty(cmd))
        try:
            proc = subprocess.run(
                cmd,
                check=False,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=timeout_s,
            )
        except FileNotFoundError as exc:
            if check:
                raise CommandError(list(cmd), 127, str(exc)) from exc
            return CommandResult(cmd, 127, str(exc))
        except subprocess.TimeoutExpired as exc:
            output = exc.output if isinstance(exc.output, str) else ""
            if check:
                raise CommandError(list(cmd), -1, f"timed out after {timeout_s}s\n{output}") from exc
            return CommandResult(cmd, -1, output)
        result = CommandResult(cmd, proc.returncode, proc.stdout or "")
        if check and not result.ok:
            raise CommandError(list(cmd), result.returncode, result.output)
        return result

    def spawn(self, argv: Sequence[str], *, output_path: Path) -> WorkerProcess:
        cmd = tuple(str(token) for token in argv)
        log.debug("spawn: %s > %s", pretty(cmd), output_path)
        with Path(output_path).open("w", encoding="utf-8") as out:
            proc = subprocess.Popen(cmd, stdout=out, stderr=subprocess.STDOUT, text=True)
        return _PopenWorker(cmd, proc)

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


@dataclass(frozen=True)
class RecordedCall:
    kind: str  # run|spawn|wait|sleep
    argv: Tuple[str, ...] = ()
    seconds: float = 0.0


Responder = Callable[[Tuple[str, ...]], Optional[Tuple[int, str]]]


class _RecordedWorker(WorkerProcess):
    def __init__(self, runner: "RecordingRunner", argv: Tuple[str, ...], returncode: int) -> None:
        self.argv = argv
        self._runner = runner
        self._returncode = returncode
        self.terminated = False

    def wait(self, timeout_s: float | None = None) -> int:
        self._runner.calls.append(RecordedCall("wait", self.argv))
        return self._returncode

    def terminate(self) -> None:
        self.terminated = True


class RecordingRunner(CommandRunner):
    """Runner that records calls instead of executing them.

    ``responder`` maps an argv to ``(returncode, output)`` for ``run``;
    ``spawn_responder`` does the same for spawned workers, whose output is
    written to the requested file so parsing behaves as with real processes.
    Returning ``None`` means success with empty output.
    """

    def __init__(self, responder: Responder | None = None, spawn_responder: Responder | None = None) -> None:
        self._responder = responder
        self._spawn_responder = spawn_responder
        self.calls: List[RecordedCall] = []

    def run(self, argv: Sequence[str], *, check: bool = True, timeout_s: float | None = None) -> CommandResult:
        cmd = tuple(str(token) for token in argv)
        self.calls.append(RecordedCall("run", cmd))
        rc, output = self._respond(self._responder, cmd)
        result = CommandResult(cmd, rc, output)
        if check and not result.ok:
            raise CommandError(list(cmd), rc, output)
        return result

    def spawn(self, argv: Sequence[str], *, output_path: Path) -> WorkerProcess:
        cmd = tuple(str(token) for token in argv)
        self.calls.append(RecordedCall("spawn", cmd))
        rc, output = self._respond(self._spawn_responder, cmd)
        Path(output_path).write_text(output, encoding="utf-8")
        return _RecordedWorker(self, cmd, rc)

    def sleep(self, seconds: float) -> None:
        self.calls.append(RecordedCall("sleep", seconds=float(seconds)))

    def commands(self, kind: str = "run") -> List[Tuple[str, ...]]:
        return [call.argv for call in self.calls if call.kind == kind]

    def render_plan(self) -> str:
        lines = []
        for call in self.calls:
            if call.kind == "sleep":
                lines.append(f"sleep {call.seconds:g}")
            elif call.kind in {"run", "spawn"}:
                suffix = " &" if call.kind == "spawn" else ""
                lines.append(pretty(call.argv) + suffix)
        return "\n".join(lines)

    @staticmethod
    def _respond(responder: Responder | None, cmd: Tuple[str, ...]) -> Tuple[int, str]:
        if responder is None:
            return 0, ""
        reply = responder(cmd)
        if reply is None:
            return 0, ""
        return int(reply[0]), str(reply[1])
