from __future__ import annotations

import asyncio
import codecs
import logging
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqa_scheduler.services.log_buffer import LogBuffer

LOGGER = logging.getLogger("sqa.supervisor")

READ_CHUNK_BYTES = 4096


@dataclass(frozen=True)
class RunnerCommand:
    """How to invoke the Playwright test runner."""

    program: str
    prefix: Tuple[str, ...] = ()
    use_shell: bool = False
    source: str = "local-bin"

    def argv(self, args: Sequence[str]) -> List[str]:
        return [self.program, *self.prefix, *args]


def quote_shell_arg(arg: str) -> str:
    if not arg:
        return '""'
    if any(ch.isspace() for ch in arg) or '"' in arg or "'" in arg:
        return '"' + arg.replace('"', '\\"') + '"'
    return arg


def build_command_line(argv: Sequence[str]) -> str:
    return " ".join(quote_shell_arg(part) for part in argv)


def resolve_binary(
    workdir: Path,
    *,
    platform: str = sys.platform,
    node: Optional[str] = None,
) -> Optional[RunnerCommand]:
    """Locate the runner: local bin shim, then ``@playwright/test`` CLI, then ``playwright`` CLI."""
    is_windows = platform.startswith("win")
    modules = workdir / "node_modules"

    local_bin = modules / ".bin" / ("playwright.cmd" if is_windows else "playwright")
    if local_bin.is_file():
        return RunnerCommand(program=str(local_bin), use_shell=is_windows, source="local-bin")

    node_exe = node or shutil.which("node")
    if not node_exe:
        return None
    for source, cli in (
        ("test-cli", modules / "@playwright" / "test" / "cli.js"),
        ("playwright-cli", modules / "playwright" / "cli.js"),
    ):
        if cli.is_file():
            return RunnerCommand(program=node_exe, prefix=(str(cli),), source=source)
    return None


class RunHandle:
    """A launched runner process; ``wait()`` resolves to its exit code once output is drained."""

    def __init__(self, process: asyncio.subprocess.Process, log: LogBuffer) -> None:
        self._process = process
        self._log = log
        self._completion: asyncio.Task[int] = asyncio.ensure_future(self._supervise())

    def done(self) -> bool:
        return self._completion.done()

    async def _pump(self) -> None:
        stream = self._process.stdout
        if stream is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            self._log.append(decoder.decode(chunk))
        self._log.append(decoder.decode(b"", final=True))

    async def _supervise(self) -> int:
        await self._pump()
        return await self._process.wait()

    async def wait(self) -> int:
        return await asyncio.shield(self._completion)

    def cancel(self) -> None:
        """Terminate the child; ``wait()`` still resolves with the resulting exit code."""
        if self._process.returncode is None:
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass


class RunnerNotFoundError(RuntimeError):
    pass


Resolver = Callable[[], Optional[RunnerCommand]]


class SubprocessSupervisor:
    """Launch the test runner non-interactively, streaming combined output into the log buffer."""

    def __init__(
        self,
        log: LogBuffer,
        workdir: Path,
        *,
        args: Sequence[str] = (),
        resolver: Optional[Resolver] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        self._log = log
        self._workdir = workdir
        self._args = tuple(args)
        self._resolver = resolver or (lambda: resolve_binary(workdir))
        self._env = env

    def _child_env(self) -> Dict[str, str]:
        env = dict(os.environ if self._env is None else self._env)
        env.setdefault("CI", "1")
        env.setdefault("FORCE_COLOR", "0")
        return env

    async def launch(self, args: Optional[Sequence[str]] = None) -> RunHandle:
        command = self._resolver()
        if command is None:
            message = (
                "Playwright runner not found: install @playwright/test in "
                f"{self._workdir} (npm i -D @playwright/test)"
            )
            self._log.append(f"[runner] {message}\n")
            LOGGER.error(message)
            raise RunnerNotFoundError(message)

        argv = command.argv(self._args if args is None else args)
        LOGGER.info("Launching %s runner: %s", command.source, " ".join(argv))
        common = dict(
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(self._workdir),
            env=self._child_env(),
        )
        try:
            if command.use_shell:
                process = await asyncio.create_subprocess_shell(build_command_line(argv), **common)
            else:
                process = await asyncio.create_subprocess_exec(*argv, **common)
        except OSError as exc:
            self._log.append(f"[runner] Failed to start {argv[0]}: {exc}\n")
            LOGGER.error("Failed to start runner %s: %s", argv[0], exc)
            raise RunnerNotFoundError(str(exc)) from exc
        return RunHandle(process, self._log)
