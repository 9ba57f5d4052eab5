import unittest

from s3_manager.models import TransferStatus, TransferType
from s3_manager.services import TransferCancelledError
from s3_manager.transfers import CancellationToken, TransferRegistry


class RecordingScheduler:
    def __init__(self):
        self.scheduled = []

    def __call__(self, delay, func):
        self.scheduled.append((delay, func))

    def run_all(self):
        pending, self.scheduled = self.scheduled, []
        for _, func in pending:
            func()


class CancellationTokenTests(unittest.TestCase):
    def test_cancel_runs_callbacks_once(self):
        token = CancellationToken()
        calls = []
        token.add_callback(lambda: calls.append("closed"))

        token.cancel()
        token.cancel()

        self.assertTrue(token.is_cancelled)
        self.assertTrue(token())
        self.assertEqual(["closed"], calls)

    def test_callback_added_after_cancel_runs_immediately(self):
        token = CancellationToken()
        token.cancel()
        calls = []

        token.add_callback(lambda: calls.append("late"))

        self.assertEqual(["late"], calls)

    def test_removed_callback_is_not_run(self):
        token = CancellationToken()
        calls = []

        def callback():
            calls.append("x")

        token.add_callback(callback)
        token.remove_callback(callback)
        token.cancel()

        self.assertEqual([], calls)

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()

        token.cancel()

        with self.assertRaises(TransferCancelledError):
            token.raise_if_cancelled()


class TransferRegistryTests(unittest.TestCase):
    def setUp(self):
        self.scheduler = RecordingScheduler()
        self.registry = TransferRegistry(auto_remove_delay=3.0, scheduler=self.scheduler)

    def test_add_assigns_unique_ids_and_notifies(self):
        snapshots = []
        self.registry.subscribe(snapshots.append)

        first = self.registry.add(name="a.txt", type=TransferType.UPLOAD, total=10)
        second = self.registry.add(name="b.zip", type="download", total=0, file_count=3)

        self.assertNotEqual(first, second)
        self.assertEqual(2, len(snapshots))
        self.assertEqual(["a.txt", "b.zip"], [t.name for t in snapshots[-1]])
        transfer = self.registry.get(second)
        self.assertIs(TransferType.DOWNLOAD, transfer.type)
        self.assertIs(TransferStatus.IN_PROGRESS, transfer.status)
        self.assertEqual(3, transfer.file_count)

    def test_get_returns_a_copy(self):
        transfer_id = self.registry.add(name="a", type=TransferType.UPLOAD)

        self.registry.get(transfer_id).progress = 99

        self.assertEqual(0, self.registry.get(transfer_id).progress)

    def test_get_unknown_raises(self):
        with self.assertRaises(KeyError):
            self.registry.get("missing")

    def test_update_progress_computes_percent(self):
        transfer_id = self.registry.add(name="a", type=TransferType.UPLOAD, total=200)

        self.registry.update_progress(transfer_id, 50, 200)
        self.assertEqual(25, self.registry.get(transfer_id).progress)

        self.registry.update_progress(transfer_id, 100, 200, ceiling=90)
        transfer = self.registry.get(transfer_id)
        self.assertEqual(45, transfer.progress)
        self.assertEqual(100, transfer.loaded)

    def test_update_progress_with_zero_total(self):
        transfer_id = self.registry.add(name="a", type=TransferType.UPLOAD)

        self.registry.update_progress(transfer_id, 10, 0)

        self.assertEqual(0, self.registry.get(transfer_id).progress)

    def test_progress_never_decreases_and_is_clamped(self):
        transfer_id = self.registry.add(name="a", type=TransferType.UPLOAD, total=100)

        self.registry.update_progress(transfer_id, 60, 100)
        self.registry.update_progress(transfer_id, 40, 100)
        self.assertEqual(60, self.registry.get(transfer_id).progress)

        self.registry.set_meta(transfer_id, progress=250)
        self.assertEqual(100, self.registry.get(transfer_id).progress)

    def test_set_meta_rejects_unknown_fields(self):
        transfer_id = self.registry.add(name="a", type=TransferType.UPLOAD)

        self.registry.set_meta(transfer_id, name="renamed.txt", file_count=2)
        self.assertEqual("renamed.txt", self.registry.get(transfer_id).name)

        with self.assertRaises(AttributeError):
            self.registry.set_meta(transfer_id, colour="red")
        with self.assertRaises(AttributeError):
            self.registry.set_meta(transfer_id, id="other")

    def test_complete_sets_full_progress_and_schedules_removal(self):
        transfer_id = self.registry.add(name="a", type=TransferType.UPLOAD, total=10)

        self.registry.complete(transfer_id)

        transfer = self.registry.get(transfer_id)
        self.assertIs(TransferStatus.COMPLETED, transfer.status)
        self.assertEqual(100, transfer.progress)
        self.assertEqual(3.0, self.scheduler.scheduled[0][0])

        self.scheduler.run_all()
        self.assertEqual([], self.registry.list())

    def test_error_records_message(self):
        transfer_id = self.registry.add(name="a", type=TransferType.DOWNLOAD)

        self.registry.error(transfer_id, RuntimeError("network down"))

        transfer = self.registry.get(transfer_id)
        self.assertIs(TransferStatus.ERROR, transfer.status)
        self.assertEqual("network down", transfer.error)

    def test_cancel_triggers_token_and_resets_progress(self):
        token = CancellationToken()
        transfer_id = self.registry.add(name="a", type=TransferType.DOWNLOAD, total=10, cancel_token=token)
        self.registry.update_progress(transfer_id, 5, 10)

        self.assertTrue(self.registry.cancel(transfer_id))

        transfer = self.registry.get(transfer_id)
        self.assertTrue(token.is_cancelled)
        self.assertIs(TransferStatus.CANCELLED, transfer.status)
        self.assertEqual(0, transfer.progress)
        self.assertEqual(1, len(self.scheduler.scheduled))

    def test_cancel_of_unknown_or_finished_transfer_is_refused(self):
        transfer_id = self.registry.add(name="a", type=TransferType.UPLOAD)
        self.registry.complete(transfer_id)

        self.assertFalse(self.registry.cancel(transfer_id))
        self.assertFalse(self.registry.cancel("missing"))
        self.assertIs(TransferStatus.COMPLETED, self.registry.get(transfer_id).status)

    def test_updates_after_terminal_state_are_ignored(self):
        transfer_id = self.registry.add(name="a", type=TransferType.UPLOAD, total=10)
        self.registry.error(transfer_id, "boom")

        self.registry.update_progress(transfer_id, 10, 10)
        self.registry.complete(transfer_id)

        transfer = self.registry.get(transfer_id)
        self.assertIs(TransferStatus.ERROR, transfer.status)
        self.assertEqual(0, transfer.progress)

    def test_updates_for_unknown_ids_are_ignored(self):
        self.registry.update_progress("missing", 1, 2)
        self.registry.set_meta("missing", progress=10)
        self.registry.complete("missing")

        self.assertEqual([], self.registry.list())

    def test_unsubscribe_stops_notifications(self):
        snapshots = []
        unsubscribe = self.registry.subscribe(snapshots.append)
        self.registry.add(name="a", type=TransferType.UPLOAD)

        unsubscribe()
        self.registry.add(name="b", type=TransferType.UPLOAD)

        self.assertEqual(1, len(snapshots))

    def test_remove_and_disabled_auto_removal(self):
        registry = TransferRegistry(auto_remove_delay=None, scheduler=self.scheduler)
        transfer_id = registry.add(name="a", type=TransferType.UPLOAD)

        registry.complete(transfer_id)
        self.assertEqual([], self.scheduler.scheduled)
        self.assertEqual(1, len(registry.list()))

        registry.remove(transfer_id)
        registry.remove(transfer_id)
        self.assertEqual([], registry.list())


if __name__ == "__main__":
    unittest.main()
