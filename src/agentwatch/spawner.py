from __future__ import annotations

import logging
import shlex
import subprocess
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from .app_logging import log_with_fields
from .config import DispatchConfig
from .models import SpawnRequest, SpawnResult

logger = logging.getLogger("agentwatch.spawner")


class SpawnError(RuntimeError):
    pass


def build_instruction(task_path: Path) -> str:
    absolute = task_path.resolve()
    return (
        f"A task has been assigned to you. Read the task file at {absolute} and carry out what it asks. "
        "When you are finished, edit that same file: change its `status:` line to `completed` "
        "or `failed`, and add a `result:` line with a one-sentence reason."
    )


class WorkerSpawner:
    """Launches worker sessions through the agent CLI without blocking the caller.

    Each `spawn` runs the configured command on a small thread pool and returns a
    `Future[SpawnResult]`; failures are reported through the result, never raised.
    """

    def __init__(self, dispatch_config: DispatchConfig) -> None:
        self.dispatch_config = dispatch_config
        self.template = shlex.split(dispatch_config.command_template)
        self.executor = ThreadPoolExecutor(
            max_workers=dispatch_config.max_workers,
            thread_name_prefix="agentwatch-spawn",
        )

    def build_command(self, request: SpawnRequest) -> list[str]:
        values = {
            "agent_pool": request.agent_pool,
            "label": request.label,
            "model": request.model,
            "instruction": request.instruction,
        }
        try:
            return [part.format(**values) for part in self.template]
        except (KeyError, IndexError, ValueError) as exc:
            raise SpawnError(f"bad command template placeholder: {exc}") from exc

    def _run(self, cmd: list[str]) -> subprocess.CompletedProcess[str]:
        return subprocess.run(cmd, capture_output=True, text=True, check=False)

    def _require_ok(self, process: subprocess.CompletedProcess[str], context: str) -> None:
        if process.returncode != 0:
            stderr = process.stderr.strip()
            stdout = process.stdout.strip()
            output = stderr if stderr else stdout
            raise SpawnError(f"{context} failed: {output or 'exit code ' + str(process.returncode)}")

    def _execute(self, request: SpawnRequest) -> SpawnResult:
        try:
            cmd = self.build_command(request)
            process = self._run(cmd)
            self._require_ok(process, f"spawn {request.label}")
        except (SpawnError, OSError) as exc:
            log_with_fields(
                logger,
                logging.ERROR,
                "spawn_failed",
                task_id=request.task_id,
                label=request.label,
                error=str(exc),
            )
            return SpawnResult(ok=False, error=str(exc))
        log_with_fields(logger, logging.INFO, "spawn_succeeded", task_id=request.task_id, label=request.label)
        return SpawnResult(ok=True, output=process.stdout)

    def spawn(self, request: SpawnRequest) -> Future[SpawnResult]:
        return self.executor.submit(self._execute, request)

    def close(self) -> None:
        self.executor.shutdown(wait=True)
