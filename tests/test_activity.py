import json
import unittest

from botocore.exceptions import ClientError

from fake_s3 import FakeS3Client, client_error

from s3_manager.activity import ACTION_DOWNLOAD, ACTION_UPLOAD, AI_HISTORY_LIMIT, ActivityLog, AIHistoryStore
from s3_manager.folders import AI_HISTORY_KEY, HISTORY_LOG_KEY
from s3_manager.services import ObjectStoreService


class FakeClock:
    def __init__(self):
        self.ticks = 0

    def __call__(self):
        self.ticks += 1
        return f"2024-01-01T00:00:{self.ticks:02d}Z"


def make_store(objects=None):
    fake_client = FakeS3Client(objects)
    service = ObjectStoreService(bucket_name="bucket", client_factory=lambda *_, **__: fake_client)
    return fake_client, service


def stored_json(fake_client, key):
    return json.loads(fake_client.objects[key]["Body"].decode("utf-8"))


class ActivityLogTests(unittest.TestCase):
    def test_read_initializes_missing_log(self):
        fake_client, service = make_store()

        self.assertEqual([], ActivityLog(service).read())
        self.assertEqual([], stored_json(fake_client, HISTORY_LOG_KEY))
        self.assertEqual("application/json", fake_client.objects[HISTORY_LOG_KEY]["ContentType"])

    def test_append_prepends_newest_entry(self):
        fake_client, service = make_store()
        log = ActivityLog(service, clock=FakeClock())

        log.append(action=ACTION_UPLOAD, item_name="docs/a.txt", size=10)
        log.append(action=ACTION_DOWNLOAD, item_name="reports/", size=30, file_count=3)

        entries = log.read()
        self.assertEqual(["reports/", "docs/a.txt"], [entry.item_name for entry in entries])
        self.assertEqual(3, entries[0].file_count)
        self.assertEqual("2024-01-01T00:00:02Z", entries[0].date)
        self.assertEqual(
            {
                "date": "2024-01-01T00:00:01Z",
                "action": "Upload",
                "itemName": "docs/a.txt",
                "size": 10,
                "fileCount": 1,
            },
            stored_json(fake_client, HISTORY_LOG_KEY)[1],
        )

    def test_unreadable_log_degrades_to_empty(self):
        fake_client, service = make_store({HISTORY_LOG_KEY: b"not json"})

        with self.assertLogs("s3_manager.activity", level="ERROR"):
            self.assertEqual([], ActivityLog(service).read())

    def test_non_array_document_is_ignored(self):
        _, service = make_store({HISTORY_LOG_KEY: b'{"date": "x"}'})

        self.assertEqual([], ActivityLog(service).read())

    def test_read_errors_degrade_to_empty(self):
        fake_client, service = make_store({HISTORY_LOG_KEY: b"[]"})
        fake_client.fail_get[HISTORY_LOG_KEY] = client_error("AccessDenied")

        with self.assertLogs("s3_manager.activity", level="ERROR"):
            self.assertEqual([], ActivityLog(service).read())

    def test_append_write_failure_propagates(self):
        fake_client, service = make_store({HISTORY_LOG_KEY: b"[]"})
        fake_client.fail_put[HISTORY_LOG_KEY] = client_error("AccessDenied")

        with self.assertRaises(ClientError) as ctx:
            ActivityLog(service).append(action=ACTION_UPLOAD, item_name="a.txt")

        self.assertEqual("AccessDenied", ctx.exception.response["Error"]["Code"])

    def test_clear_empties_the_log(self):
        fake_client, service = make_store()
        log = ActivityLog(service)
        log.append(action=ACTION_UPLOAD, item_name="a.txt")

        log.clear()

        self.assertEqual([], stored_json(fake_client, HISTORY_LOG_KEY))


class AIHistoryStoreTests(unittest.TestCase):
    def test_read_initializes_missing_document(self):
        fake_client, service = make_store()

        history = AIHistoryStore(service).read()

        self.assertIsNone(history.last_analysis)
        self.assertEqual([], history.history)
        self.assertEqual({"lastAnalysis": None, "history": []}, stored_json(fake_client, AI_HISTORY_KEY))

    def test_record_keeps_only_newest_entries(self):
        fake_client, service = make_store()
        store = AIHistoryStore(service, clock=FakeClock())

        for index in range(AI_HISTORY_LIMIT + 2):
            store.record({"run": index})

        history = store.read()
        self.assertEqual(AI_HISTORY_LIMIT, len(history.history))
        self.assertEqual({"run": AI_HISTORY_LIMIT + 1}, history.last_analysis.report)
        self.assertEqual({"run": AI_HISTORY_LIMIT + 1}, history.history[0].report)
        self.assertEqual({"run": 2}, history.history[-1].report)
        self.assertEqual(AI_HISTORY_LIMIT, len(stored_json(fake_client, AI_HISTORY_KEY)["history"]))


if __name__ == "__main__":
    unittest.main()
