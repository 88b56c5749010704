import re
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from cloudinary.exceptions import Error as CloudinaryError
from storage3.utils import StorageException

from config import Settings
from services.errors import DocumentTooLarge, StorageError, UnsupportedDocumentType
from services.storage import (
    CloudinaryStorage,
    LocalStorage,
    S3Storage,
    SupabaseStorage,
    build_storage,
    generate_object_name,
    validate_document,
)

MB = 1024 * 1024


class ValidationTests(unittest.TestCase):
    def test_allowed_types(self):
        self.assertEqual(validate_document("a.pdf", "application/pdf", 10, MB), "application/pdf")
        self.assertEqual(validate_document("A.DOC", "application/msword", 10, MB), "application/msword")
        self.assertEqual(
            validate_document("a.docx", None, 10, MB),
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        )
        self.assertEqual(validate_document("a.pdf", "application/octet-stream", 10, MB), "application/pdf")

    def test_rejected_types(self):
        for filename, ctype in (("a.png", "image/png"), ("a.pdf", "image/png"), ("noext", "application/pdf"),
                                ("a.exe", "application/pdf")):
            with self.subTest(filename=filename, ctype=ctype):
                with self.assertRaises(UnsupportedDocumentType):
                    validate_document(filename, ctype, 10, MB)

    def test_size_limit(self):
        validate_document("a.pdf", "application/pdf", MB, MB)
        with self.assertRaises(DocumentTooLarge) as ctx:
            validate_document("a.pdf", "application/pdf", MB + 1, MB)
        self.assertEqual(ctx.exception.message, "File size too large")

    def test_object_names_keep_extension_and_do_not_collide(self):
        names = {generate_object_name("My Passport.PDF") for _ in range(50)}
        self.assertGreater(len(names), 1)
        for name in names:
            self.assertRegex(name, r"^\d+-\d+\.pdf$")


class LocalStorageTests(unittest.TestCase):
    def test_store_and_idempotent_remove(self):
        with tempfile.TemporaryDirectory() as tmp:
            storage = LocalStorage(upload_dir=str(Path(tmp) / "nested"))
            ref = storage.store(b"%PDF data", "a.pdf", "application/pdf")
            self.assertEqual(Path(ref).read_bytes(), b"%PDF data")
            self.assertEqual(Path(ref).parent, Path(tmp) / "nested")
            storage.remove(ref)
            self.assertFalse(Path(ref).exists())
            storage.remove(ref)


class S3StorageTests(unittest.TestCase):
    @patch("services.storage.boto3.client")
    def test_store_and_remove(self, mock_client_factory):
        client = MagicMock()
        mock_client_factory.return_value = client
        storage = S3Storage(bucket="docs", region="eu-west-1", access_key_id="k", secret_access_key="s")

        ref = storage.store(b"%PDF", "a.pdf", "application/pdf")
        self.assertTrue(re.match(r"^https://docs\.s3\.eu-west-1\.amazonaws\.com/applications/\d+-\d+\.pdf$", ref))
        kwargs = client.put_object.call_args.kwargs
        self.assertEqual(kwargs["Bucket"], "docs")
        self.assertEqual(kwargs["ContentType"], "application/pdf")
        key = kwargs["Key"]

        storage.remove(ref)
        client.delete_object.assert_called_once_with(Bucket="docs", Key=key)


class CloudinaryStorageTests(unittest.TestCase):
    def setUp(self):
        self.storage = CloudinaryStorage(cloud_name="demo", api_key="key", api_secret="secret")

    def test_public_id_from_reference(self):
        url = "https://res.cloudinary.com/demo/raw/upload/v1700/visa-applications/1700-42.pdf"
        self.assertEqual(self.storage.public_id_from_reference(url), "visa-applications/1700-42.pdf")
        self.assertIsNone(self.storage.public_id_from_reference("https://example.com/other/file.pdf"))

    @patch("cloudinary.uploader.upload")
    def test_store_uploads_raw_asset(self, upload):
        upload.return_value = {"secure_url": "https://res.cloudinary.com/demo/raw/upload/v1/x.pdf"}
        ref = self.storage.store(b"%PDF", "a.pdf", "application/pdf")
        self.assertEqual(ref, "https://res.cloudinary.com/demo/raw/upload/v1/x.pdf")

        args, kwargs = upload.call_args
        self.assertEqual(args[0].read(), b"%PDF")
        self.assertEqual(kwargs["resource_type"], "raw")
        self.assertEqual(kwargs["cloud_name"], "demo")
        self.assertEqual(kwargs["api_key"], "key")
        self.assertRegex(kwargs["public_id"], r"^visa-applications/\d+-\d+\.pdf$")

    @patch("cloudinary.uploader.upload", side_effect=CloudinaryError("bad key"))
    def test_store_failure_raises_storage_error(self, _upload):
        with self.assertRaises(StorageError):
            self.storage.store(b"%PDF", "a.pdf", "application/pdf")

    @patch("cloudinary.uploader.destroy")
    def test_remove_destroys_public_id(self, destroy):
        destroy.return_value = {"result": "not found"}
        self.storage.remove("https://res.cloudinary.com/demo/raw/upload/v1/visa-applications/1-2.pdf")
        args, kwargs = destroy.call_args
        self.assertEqual(args[0], "visa-applications/1-2.pdf")
        self.assertEqual(kwargs["resource_type"], "raw")

    @patch("cloudinary.uploader.destroy")
    def test_remove_reports_unexpected_result(self, destroy):
        destroy.return_value = {"result": "error"}
        with self.assertRaises(StorageError):
            self.storage.remove("https://res.cloudinary.com/demo/raw/upload/v1/visa-applications/1-2.pdf")

    @patch("cloudinary.uploader.destroy")
    def test_remove_skips_foreign_urls(self, destroy):
        self.storage.remove("https://example.com/other/file.pdf")
        destroy.assert_not_called()


class SupabaseStorageTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("services.storage.create_client")
        self.create_client = patcher.start()
        self.addCleanup(patcher.stop)
        self.bucket = self.create_client.return_value.storage.from_.return_value
        self.storage = SupabaseStorage(url="https://proj.supabase.co", service_role_key="service")

    def test_client_uses_service_role_key(self):
        self.create_client.assert_called_once_with("https://proj.supabase.co", "service")

    def test_store_returns_public_url(self):
        self.bucket.get_public_url.side_effect = (
            lambda path: f"https://proj.supabase.co/storage/v1/object/public/visa-documents/{path}?"
        )
        ref = self.storage.store(b"%PDF", "a.pdf", "application/pdf")
        self.assertRegex(
            ref, r"^https://proj\.supabase\.co/storage/v1/object/public/visa-documents/applications/\d+-\d+\.pdf$"
        )
        path, data, options = self.bucket.upload.call_args.args
        self.assertRegex(path, r"^applications/\d+-\d+\.pdf$")
        self.assertEqual(data, b"%PDF")
        self.assertEqual(options["content-type"], "application/pdf")
        self.assertEqual(options["upsert"], "false")
        self.create_client.return_value.storage.from_.assert_called_with("visa-documents")

    def test_store_failure_raises_storage_error(self):
        self.bucket.upload.side_effect = StorageException({"message": "Duplicate"})
        with self.assertRaises(StorageError):
            self.storage.store(b"%PDF", "a.pdf", "application/pdf")

    def test_remove_deletes_object_path(self):
        ref = "https://proj.supabase.co/storage/v1/object/public/visa-documents/applications/1-2.pdf"
        self.storage.remove(ref)
        self.bucket.remove.assert_called_once_with(["applications/1-2.pdf"])

    def test_remove_skips_foreign_urls(self):
        self.storage.remove("https://example.com/other/file.pdf")
        self.bucket.remove.assert_not_called()


class BuildStorageTests(unittest.TestCase):
    def _settings(self, **overrides) -> Settings:
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        return Settings(_env_file=None, upload_dir=self._tmp.name, **overrides)

    def test_local_is_the_fallback(self):
        self.assertIsInstance(build_storage(self._settings()), LocalStorage)

    @patch("services.storage.create_client")
    def test_selected_by_credentials(self, _create_client):
        storage = build_storage(
            self._settings(cloudinary_cloud_name="demo", cloudinary_api_key="k", cloudinary_api_secret="s")
        )
        self.assertIsInstance(storage, CloudinaryStorage)
        supabase = build_storage(self._settings(supabase_url="https://p.supabase.co", supabase_service_role_key="k"))
        self.assertIsInstance(supabase, SupabaseStorage)

    @patch("services.storage.boto3.client")
    def test_s3_selected_by_credentials(self, _client):
        storage = build_storage(
            self._settings(aws_bucket_name="b", aws_access_key_id="k", aws_secret_access_key="s", aws_region="us-east-1")
        )
        self.assertIsInstance(storage, S3Storage)

    def test_explicit_provider_wins_and_needs_credentials(self):
        settings = self._settings(storage_provider="local", cloudinary_cloud_name="demo",
                                  cloudinary_api_key="k", cloudinary_api_secret="s")
        self.assertIsInstance(build_storage(settings), LocalStorage)
        with self.assertRaises(RuntimeError):
            build_storage(self._settings(storage_provider="s3"))
        with self.assertRaises(RuntimeError):
            build_storage(self._settings(storage_provider="ftp"))


if __name__ == "__main__":
    unittest.main()
