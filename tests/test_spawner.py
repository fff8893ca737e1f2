from pathlib import Path
import shlex
import sys
import unittest

from agentwatch.config import DispatchConfig
from agentwatch.models import SpawnRequest
from agentwatch.spawner import SpawnError, WorkerSpawner, build_instruction


def python_template(code: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)} {{label}} {{model}} {{instruction}}"


REQUEST = SpawnRequest(
    agent_pool="main",
    label="tech_team",
    model="claude-sonnet",
    instruction="read 'the file' now",
    task_id="inbox:a.md",
)


class WorkerSpawnerTest(unittest.TestCase):
    def test_build_command_keeps_arguments_intact(self) -> None:
        spawner = WorkerSpawner(DispatchConfig())
        try:
            command = spawner.build_command(REQUEST)
        finally:
            spawner.close()
        self.assertEqual(
            command,
            [
                "openclaw", "sessions", "spawn",
                "--agent", "main",
                "--label", "tech_team",
                "--model", "claude-sonnet",
                "--message", "read 'the file' now",
            ],
        )

    def test_unknown_placeholder_fails_the_spawn(self) -> None:
        spawner = WorkerSpawner(DispatchConfig(command_template="openclaw {nope} {instruction}"))
        try:
            with self.assertRaises(SpawnError):
                spawner.build_command(REQUEST)
            result = spawner.spawn(REQUEST).result(timeout=10)
        finally:
            spawner.close()
        self.assertFalse(result.ok)

    def test_successful_process(self) -> None:
        code = "import sys; print('spawned', sys.argv[1])"
        spawner = WorkerSpawner(DispatchConfig(command_template=python_template(code)))
        try:
            result = spawner.spawn(REQUEST).result(timeout=30)
        finally:
            spawner.close()
        self.assertTrue(result.ok)
        self.assertIn("spawned tech_team", result.output)

    def test_failing_process_reports_error(self) -> None:
        code = "import sys; sys.stderr.write('quota exhausted'); sys.exit(3)"
        spawner = WorkerSpawner(DispatchConfig(command_template=python_template(code)))
        try:
            result = spawner.spawn(REQUEST).result(timeout=30)
        finally:
            spawner.close()
        self.assertFalse(result.ok)
        self.assertIn("quota exhausted", result.error or "")

    def test_instruction_names_absolute_path(self) -> None:
        instruction = build_instruction(Path("inbox/a.md"))
        self.assertIn(str(Path("inbox/a.md").resolve()), instruction)
        self.assertIn("failed", instruction)


if __name__ == "__main__":
    unittest.main()
