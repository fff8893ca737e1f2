import json
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from agentwatch.config import PrimaryConfig, RegistryConfig
from agentwatch.models import WorkerStatus
from agentwatch.registry import build_worker_snapshots, load_session_records, read_workers

NOW = 1_700_000_000_000


def registry_config() -> RegistryConfig:
    return RegistryConfig(
        activity_window_seconds=300,
        label_map={"coding_team": "Coding Team"},
        primary=PrimaryConfig(session_id="primary-uuid", key="agent:main:main", label="Main"),
    )


class BuildWorkerSnapshotsTest(unittest.TestCase):
    def test_status_labels_and_order(self) -> None:
        records = [
            {"sessionId": "s1", "label": "coding_team", "updatedAt": NOW - 400_000, "totalTokens": 10},
            {"sessionId": "s2", "label": "coding_team", "updatedAt": NOW - 1_000, "model": "gpt-x"},
            {"sessionId": "primary-uuid", "label": "whatever", "updatedAt": NOW - 900_000},
            {"sessionId": "s3", "label": "handyman", "updatedAt": NOW - 299_999,
             "inputTokens": 3, "outputTokens": 4, "modelProvider": "google"},
        ]
        workers = build_worker_snapshots(records, registry_config(), NOW)

        self.assertEqual([worker.identity for worker in workers], ["primary-uuid", "s2", "s3", "s1"])
        primary = workers[0]
        self.assertTrue(primary.is_primary)
        self.assertEqual(primary.label, "Main")
        self.assertEqual(primary.status, WorkerStatus.IDLE)

        by_id = {worker.identity: worker for worker in workers}
        self.assertEqual(by_id["s1"].display_label, "Coding Team-1")
        self.assertEqual(by_id["s2"].display_label, "Coding Team-2")
        self.assertEqual(by_id["s2"].label, "Coding Team")
        self.assertEqual(by_id["s2"].raw_label, "coding_team")
        self.assertEqual(by_id["s1"].status, WorkerStatus.IDLE)
        self.assertEqual(by_id["s2"].status, WorkerStatus.ACTIVE)
        self.assertEqual(by_id["s3"].status, WorkerStatus.ACTIVE)
        self.assertEqual(by_id["s3"].display_label, "handyman")
        self.assertEqual(by_id["s3"].token_count, 7)
        self.assertEqual(by_id["s3"].model, "google")
        self.assertEqual(by_id["s2"].model, "gpt-x")
        self.assertEqual(by_id["s1"].model, "unknown")

    def test_label_map_takes_precedence_over_primary(self) -> None:
        records = [{"sessionId": "primary-uuid", "label": "coding_team", "updatedAt": NOW}]
        workers = build_worker_snapshots(records, registry_config(), NOW)
        self.assertEqual(workers[0].label, "Coding Team")
        self.assertFalse(workers[0].is_primary)

    def test_primary_matched_by_key_and_only_once(self) -> None:
        records = [
            {"sessionId": "a", "key": "agent:main:main", "updatedAt": NOW - 5_000},
            {"sessionId": "primary-uuid", "updatedAt": NOW - 1_000},
        ]
        workers = build_worker_snapshots(records, registry_config(), NOW)
        self.assertEqual(sum(1 for worker in workers if worker.is_primary), 1)
        self.assertEqual(workers[0].identity, "a")

    def test_missing_updated_at_is_idle(self) -> None:
        workers = build_worker_snapshots([{"sessionId": "x", "label": "ops"}], registry_config(), NOW)
        self.assertEqual(workers[0].status, WorkerStatus.IDLE)
        self.assertEqual(workers[0].age_ms, NOW)
        self.assertEqual(workers[0].token_count, 0)


class LoadSessionRecordsTest(unittest.TestCase):
    def test_missing_and_corrupt_registry_yield_no_workers(self) -> None:
        with TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "sessions.json"
            self.assertEqual(read_workers(path, registry_config(), NOW), [])
            path.write_text("{not json", encoding="utf-8")
            self.assertEqual(read_workers(path, registry_config(), NOW), [])

    def test_non_finite_numbers_are_treated_as_corrupt(self) -> None:
        with TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "sessions.json"
            for literal in ("NaN", "Infinity", "-Infinity"):
                path.write_text('{"a": {"sessionId": "a", "updatedAt": %s}}' % literal, encoding="utf-8")
                self.assertEqual(load_session_records(path), [])
                self.assertEqual(read_workers(path, registry_config(), NOW), [])

    def test_keyed_collection(self) -> None:
        with TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "sessions.json"
            payload = {
                "agent:main:subagent:1": {"sessionId": "s1", "label": "ops", "updatedAt": NOW},
                "junk": "not a record",
            }
            path.write_text(json.dumps(payload), encoding="utf-8")
            records = load_session_records(path)
            self.assertEqual(len(records), 1)
            workers = read_workers(path, registry_config(), NOW)
            self.assertEqual(workers[0].identity, "s1")
            self.assertEqual(workers[0].status, WorkerStatus.ACTIVE)


if __name__ == "__main__":
    unittest.main()
