"""Shared fixtures: an app on an in-memory database with local storage in a temp dir."""
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import httpx
from fastapi.testclient import TestClient

from config import Settings
from main import create_app

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "s3cret-pass"
PDF_BYTES = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer\n%%EOF\n"


def make_settings(upload_dir: str, **overrides) -> Settings:
    values = {
        "database_url": "sqlite+aiosqlite://",
        "jwt_secret": "test-secret",
        "upload_dir": upload_dir,
        "storage_provider": "local",
        "admin_email": ADMIN_EMAIL,
        "admin_password": ADMIN_PASSWORD,
        "admin_name": "Test Admin",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def mock_async_client(handler):
    """Route every httpx.AsyncClient the download code opens through `handler`."""
    real = httpx.AsyncClient

    def factory(**kwargs):
        return real(transport=httpx.MockTransport(handler), **kwargs)

    return patch("services.applications.httpx.AsyncClient", side_effect=factory)


def application_payload(**overrides) -> dict:
    body = {
        "name": "Jane Doe",
        "applicationId": "V100",
        "passportNumber": "P1",
        "nationality": "FR",
        "dob": "2000-01-01",
        "address": "1 Rue de Rivoli, Paris",
    }
    body.update(overrides)
    return body


class ApiTestCase(unittest.TestCase):
    settings_overrides: dict = {}

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.upload_dir = Path(tmp.name)
        self.settings = make_settings(str(self.upload_dir), **self.settings_overrides)
        self.client = TestClient(create_app(self.settings))
        self.client.__enter__()
        self.addCleanup(self.client.__exit__, None, None, None)
        self.auth = self.login()

    def login(self, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD) -> dict:
        response = self.client.post("/api/admin/login", json={"email": email, "password": password})
        self.assertEqual(response.status_code, 200, response.text)
        return {"Authorization": f"Bearer {response.json()['token']}"}

    def create_application(self, **overrides) -> dict:
        response = self.client.post("/api/applications", json=application_payload(**overrides), headers=self.auth)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def upload(self, record_id: str, content: bytes = PDF_BYTES, filename: str = "passport.pdf",
               content_type: str = "application/pdf"):
        return self.client.post(
            f"/api/applications/{record_id}/document",
            files={"document": (filename, content, content_type)},
            headers=self.auth,
        )

    def stored_files(self) -> list[Path]:
        return sorted(p for p in self.upload_dir.iterdir() if p.is_file())
