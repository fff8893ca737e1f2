import json
import unittest

import httpx

from agentwatch.config import PublishConfig
from agentwatch.models import StatusSnapshot, TaskView, WorkerSnapshot, WorkerStatus
from agentwatch.publisher import FirestorePublisher, PublishError, encode_snapshot

NOW = 1_700_000_000_000


def make_snapshot() -> StatusSnapshot:
    worker = WorkerSnapshot(
        identity="s1",
        raw_label="coding_team",
        label="Coding Team",
        display_label="Coding Team-1",
        status=WorkerStatus.ACTIVE,
        model="claude",
        token_count=1234,
        age_ms=500,
        updated_at=NOW - 500,
    )
    task = TaskView(task_id="inbox:a.md", title="Fix login", status="dispatched", updated_at=NOW)
    return StatusSnapshot(
        agents=[worker],
        tasks=[task],
        models={"gemini-3-pro-low": 80, "gemini-flash": -1},
        taken_at=NOW,
        version="3.8",
        message="Dashboard 3.8 Active",
    )


class EncodeSnapshotTest(unittest.TestCase):
    def test_firestore_typed_fields(self) -> None:
        fields = encode_snapshot(make_snapshot())["fields"]
        self.assertEqual(fields["last_seen"], {"timestampValue": "2023-11-14T22:13:20Z"})
        self.assertEqual(fields["updated_at"], {"integerValue": str(NOW)})
        self.assertEqual(fields["version"], {"stringValue": "3.8"})
        self.assertEqual(fields["status"], {"stringValue": "online"})
        self.assertEqual(
            fields["models"]["mapValue"]["fields"],
            {"gemini-3-pro-low": {"integerValue": "80"}, "gemini-flash": {"integerValue": "-1"}},
        )
        agent = fields["agents"]["arrayValue"]["values"][0]["mapValue"]["fields"]
        self.assertEqual(agent["label"], {"stringValue": "Coding Team-1"})
        self.assertEqual(agent["status"], {"stringValue": "active"})
        self.assertEqual(agent["tokens"], {"integerValue": "1234"})
        task = fields["tasks"]["arrayValue"]["values"][0]["mapValue"]["fields"]
        self.assertEqual(
            task,
            {
                "id": {"stringValue": "inbox:a.md"},
                "title": {"stringValue": "Fix login"},
                "status": {"stringValue": "dispatched"},
                "updatedAt": {"integerValue": str(NOW)},
            },
        )


class FirestorePublisherTest(unittest.TestCase):
    def setUp(self) -> None:
        self.config = PublishConfig(project_id="demo-project", api_key="secret-key")

    def test_patches_status_document(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"name": "ok"})

        publisher = FirestorePublisher(self.config, client=httpx.Client(transport=httpx.MockTransport(handler)))
        publisher.publish(make_snapshot())
        publisher.close()

        self.assertEqual(len(seen), 1)
        request = seen[0]
        self.assertEqual(request.method, "PATCH")
        self.assertEqual(
            request.url.path,
            "/v1/projects/demo-project/databases/(default)/documents/status/main",
        )
        self.assertEqual(request.url.params["key"], "secret-key")
        body = json.loads(request.content)
        self.assertIn("agents", body["fields"])

    def test_error_status_raises(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(403, text="denied"))
        publisher = FirestorePublisher(self.config, client=httpx.Client(transport=transport))
        with self.assertRaisesRegex(PublishError, "HTTP 403"):
            publisher.publish(make_snapshot())

    def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        publisher = FirestorePublisher(self.config, client=httpx.Client(transport=httpx.MockTransport(handler)))
        with self.assertRaises(PublishError):
            publisher.publish(make_snapshot())


if __name__ == "__main__":
    unittest.main()
