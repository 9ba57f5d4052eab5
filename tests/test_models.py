import unittest

from s3_manager.models import (
    ActivityEntry,
    AIAnalysis,
    AIHistory,
    BucketMetrics,
    ObjectKey,
    TransferStatus,
)


class ObjectKeyTests(unittest.TestCase):
    def test_parse_drops_leading_slash_and_empty_segments(self):
        key = ObjectKey.parse("/reports//2024/q1.csv")

        self.assertEqual(("reports", "2024", "q1.csv"), key.segments)
        self.assertFalse(key.is_folder)
        self.assertEqual("reports/2024/q1.csv", str(key))

    def test_folder_keys_keep_trailing_delimiter(self):
        self.assertEqual("reports/2024/", str(ObjectKey.folder("reports/2024")))
        self.assertEqual("reports/", str(ObjectKey.parse("reports/")))

    def test_root_is_empty(self):
        root = ObjectKey.parse("/")

        self.assertTrue(root.is_root)
        self.assertEqual("", str(root))
        self.assertEqual("", str(ObjectKey.folder("")))
        self.assertIs(root, root.parent)

    def test_parent_and_child(self):
        key = ObjectKey.parse("a/b/c.txt")

        self.assertEqual("a/b/", str(key.parent))
        self.assertEqual("", str(ObjectKey.parse("c.txt").parent))
        self.assertEqual("a/b/d/", str(key.parent.child("d", is_folder=True)))

    def test_with_name_replaces_last_segment(self):
        self.assertEqual("reports/2025/", str(ObjectKey.parse("reports/2024/").with_name("2025")))
        self.assertEqual("a/new.txt", str(ObjectKey.parse("a/old.txt").with_name("new.txt")))
        with self.assertRaises(ValueError):
            ObjectKey().with_name("x")


class ActivityEntryTests(unittest.TestCase):
    def test_serializes_with_camel_case_keys(self):
        entry = ActivityEntry(
            date="2024-01-01T00:00:00Z",
            action="Upload",
            item_name="docs/a.txt",
            size=12,
            file_count=1,
        )

        self.assertEqual(
            {
                "date": "2024-01-01T00:00:00Z",
                "action": "Upload",
                "itemName": "docs/a.txt",
                "size": 12,
                "fileCount": 1,
            },
            entry.to_dict(),
        )
        self.assertEqual(entry, ActivityEntry.from_dict(entry.to_dict()))

    def test_from_dict_fills_defaults(self):
        entry = ActivityEntry.from_dict({"action": "Download"})

        self.assertEqual("", entry.item_name)
        self.assertEqual(0, entry.size)
        self.assertEqual(1, entry.file_count)


class MiscModelTests(unittest.TestCase):
    def test_terminal_statuses(self):
        self.assertFalse(TransferStatus.IN_PROGRESS.is_terminal)
        self.assertTrue(TransferStatus.COMPLETED.is_terminal)
        self.assertTrue(TransferStatus.ERROR.is_terminal)
        self.assertTrue(TransferStatus.CANCELLED.is_terminal)

    def test_bucket_metrics_storage_in_gigabytes(self):
        self.assertEqual(1.5, BucketMetrics(total_size=3 * 512 * 1024 * 1024, total_objects=2).storage_gb)

    def test_ai_history_document_shape(self):
        analysis = AIAnalysis(timestamp="t1", report={"summary": "ok"})

        self.assertEqual(
            {"lastAnalysis": {"timestamp": "t1", "report": {"summary": "ok"}}, "history": [analysis.to_dict()]},
            AIHistory(last_analysis=analysis, history=[analysis]).to_dict(),
        )
        self.assertEqual({"lastAnalysis": None, "history": []}, AIHistory().to_dict())


if __name__ == "__main__":
    unittest.main()
