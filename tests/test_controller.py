import tempfile
import unittest
from pathlib import Path

from fake_s3 import FakeResponse, FakeS3Client, FakeSession

from s3_manager.controller import FileManagerController, NotConnectedError
from s3_manager.profiles import ConnectionProfile
from s3_manager.services import InvalidInputError, ObjectStoreService
from s3_manager.settings import AppSettings
from s3_manager.transfers import TransferRegistry


class FakeProfileStorage:
    def __init__(self, profiles=None):
        self._profiles = list(profiles or [])
        self.saved_snapshots: list[list[ConnectionProfile]] = []

    def load(self):
        return list(self._profiles)

    def save(self, profiles):
        snapshot = [ConnectionProfile(**profile.__dict__) for profile in profiles]
        self.saved_snapshots.append(snapshot)
        self._profiles = snapshot


class RecordingFactory:
    def __init__(self, fake_client):
        self.fake_client = fake_client
        self.calls = []

    def __call__(self, **kwargs):
        self.calls.append(kwargs)
        return ObjectStoreService(client_factory=lambda *_, **__: self.fake_client, **kwargs)


class FileManagerControllerTests(unittest.TestCase):
    def setUp(self):
        self.fake_client = FakeS3Client({"docs/a.txt": b"hello", "root.txt": b"r"})
        self.factory = RecordingFactory(self.fake_client)
        self.storage = FakeProfileStorage()
        self.session = FakeSession(FakeResponse([b"hello"]))
        self.controller = FileManagerController(
            self.storage,
            settings=AppSettings(upload_part_size=4, max_attempts=5),
            service_factory=self.factory,
            registry=TransferRegistry(auto_remove_delay=None),
            session=self.session,
        )
        self.params = {
            "endpoint_url": "https://example.com",
            "access_key": "access",
            "secret_key": "secret",
            "bucket_name": "bucket-one",
        }

    def test_connect_returns_root_listing(self):
        entries = self.controller.connect(**self.params)

        self.assertEqual(["docs", "root.txt"], [entry.name for entry in entries])
        self.assertTrue(self.controller.is_connected)
        self.assertEqual("bucket-one", self.controller.bucket_name)
        self.assertEqual(5, self.factory.calls[0]["max_attempts"])
        self.assertEqual("https://example.com", self.factory.calls[0]["endpoint_url"])

    def test_connect_requires_bucket(self):
        with self.assertRaises(InvalidInputError):
            self.controller.connect(**{**self.params, "bucket_name": ""})
        self.assertFalse(self.controller.is_connected)

    def test_operations_require_connection(self):
        operations = [
            lambda: self.controller.list_folder(""),
            lambda: self.controller.build_tree(),
            lambda: self.controller.create_folder("", "x"),
            lambda: self.controller.delete_item("a.txt"),
            lambda: self.controller.rename_item("a.txt", "b.txt"),
            lambda: self.controller.download_file("a.txt"),
            lambda: self.controller.activity_history(),
            lambda: self.controller.signed_url("a.txt"),
        ]
        for operation in operations:
            with self.assertRaises(NotConnectedError):
                operation()

    def test_folder_operations(self):
        self.controller.connect(**self.params)

        self.assertEqual("docs/new/", self.controller.create_folder("docs/", "new"))
        self.assertEqual(["new", "a.txt"], [entry.name for entry in self.controller.list_folder("docs")])
        self.assertEqual(5, self.controller.folder_size("docs/"))
        self.assertEqual("papers/", self.controller.rename_item("docs/", "papers"))
        self.assertIn("papers/a.txt", self.fake_client.objects)
        self.assertEqual(2, self.controller.delete_item("papers/"))
        self.assertEqual(1, self.controller.bucket_metrics().total_objects)

    def test_upload_file_uses_settings_part_size(self):
        self.controller.connect(**self.params)

        with tempfile.TemporaryDirectory() as tmp:
            source = Path(tmp) / "data.bin"
            source.write_bytes(b"0123456789")

            key = self.controller.upload_file(source, "uploads/")

        self.assertEqual("uploads/data.bin", key)
        self.assertEqual([[4, 4, 2]], self.fake_client.upload_parts)
        history = self.controller.activity_history()
        self.assertEqual("uploads/data.bin", history[0].item_name)

    def test_upload_file_rejects_missing_path(self):
        self.controller.connect(**self.params)

        with self.assertRaises(InvalidInputError):
            self.controller.upload_file("/does/not/exist.bin")

    def test_download_file_streams_through_session(self):
        self.controller.connect(**self.params)

        result = self.controller.download_file("docs/a.txt", track=True)

        self.assertEqual(b"hello", result.data)
        self.assertEqual("https://signed.example/docs/a.txt?expires=3600", self.session.calls[0]["url"])

    def test_transfers_are_tracked_and_dismissable(self):
        self.controller.connect(**self.params)

        archive = self.controller.download_folder("docs/")

        self.assertEqual(1, archive.file_count)
        transfers = self.controller.transfers()
        self.assertEqual(1, len(transfers))
        self.assertEqual("docs.zip", transfers[0].name)
        self.assertFalse(self.controller.cancel_transfer(transfers[0].id))
        self.controller.dismiss_transfer(transfers[0].id)
        self.assertEqual([], self.controller.transfers())

    def test_clear_activity_history(self):
        self.controller.connect(**self.params)
        self.controller.download_file("root.txt")

        self.controller.clear_activity_history()

        self.assertEqual([], self.controller.activity_history())

    def test_signed_url_defaults_to_settings_expiry(self):
        self.controller.connect(**self.params)

        self.assertEqual("https://signed.example/a.txt?expires=3600", self.controller.signed_url("a.txt"))
        self.assertEqual("https://signed.example/a.txt?expires=60", self.controller.signed_url("a.txt", 60))

    def test_loads_profiles_from_storage_on_init(self):
        profiles = [
            ConnectionProfile(
                name="alpha",
                endpoint_url="https://one",
                access_key="a",
                secret_key="b",
            )
        ]
        controller = FileManagerController(FakeProfileStorage(profiles), service_factory=self.factory)

        self.assertEqual(profiles, controller.list_profiles())

    def test_save_profile_creates_and_updates_profiles(self):
        profile = ConnectionProfile(name="alpha", endpoint_url="https://one", access_key="a", secret_key="b")
        self.controller.save_profile(profile)
        self.assertEqual([profile], self.controller.list_profiles())

        updated = ConnectionProfile(name="alpha", endpoint_url="https://two", access_key="c", secret_key="d")
        self.controller.save_profile(updated)
        self.assertEqual([updated], self.controller.list_profiles())
        self.assertEqual(updated.endpoint_url, self.storage._profiles[0].endpoint_url)

    def test_save_profile_supports_renaming(self):
        existing = ConnectionProfile(name="alpha", endpoint_url="https://one", access_key="a", secret_key="b")
        self.controller.save_profile(existing)
        renamed = ConnectionProfile(name="beta", endpoint_url="https://one", access_key="a", secret_key="b")

        self.controller.save_profile(renamed, original_name="alpha")

        self.assertEqual([renamed], self.controller.list_profiles())

    def test_delete_profile_removes_and_persists(self):
        profile = ConnectionProfile(name="alpha", endpoint_url="https://one", access_key="a", secret_key="b")
        self.controller.save_profile(profile)

        self.controller.delete_profile("alpha")

        self.assertEqual([], self.controller.list_profiles())
        self.assertEqual([], self.storage._profiles)
        with self.assertRaises(ValueError):
            self.controller.delete_profile("missing")

    def test_connect_with_profile_uses_saved_credentials(self):
        profile = ConnectionProfile(
            name="alpha",
            endpoint_url="https://example",
            access_key="ak",
            secret_key="sk",
            bucket_name="bucket-one",
            region_name="eu-west-1",
        )
        self.controller.save_profile(profile)

        entries = self.controller.connect_with_profile("alpha")

        self.assertEqual(2, len(entries))
        self.assertEqual("alpha", self.controller.selected_profile)
        call = self.factory.calls[0]
        self.assertEqual(("ak", "sk", "eu-west-1"), (call["access_key"], call["secret_key"], call["region_name"]))


if __name__ == "__main__":
    unittest.main()
