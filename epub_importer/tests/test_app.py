import io
import json
import os
import unittest
import zipfile
from importlib import reload

from fastapi.testclient import TestClient

import epub_importer.app as app_module

CONTAINER_XML = (
    '<container><rootfiles><rootfile full-path="content.opf" media-type="application/oebps-package+xml"/>'
    "</rootfiles></container>"
)


def _epub(words: int = 30) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("META-INF/container.xml", CONTAINER_XML)
        archive.writestr(
            "content.opf",
            '<package><manifest><item id="c1" href="ch1.xhtml"/></manifest>'
            '<spine><itemref idref="c1"/></spine></package>',
        )
        archive.writestr("ch1.xhtml", "<p>" + " ".join(f"w{index}" for index in range(words)) + "</p>")
    return buffer.getvalue()


def test_index_reports_running():
    client = TestClient(app_module.app)

    response = client.get("/")

    assert response.status_code == 200
    assert response.text == "EPUB Importer running"


def test_health_endpoint_ok():
    client = TestClient(app_module.app)
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_api_prefixed_health_route_supported():
    client = TestClient(app_module.app)

    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_unknown_route_is_not_found():
    client = TestClient(app_module.app)

    assert client.get("/nope").status_code == 404


def test_import_returns_zip_with_lessons(monkeypatch):
    calls = []

    def _fake_generator(_config):
        def _generate(fragment_text, lesson_title):
            calls.append(lesson_title)
            return {"title": lesson_title, "words": len(fragment_text.split())}

        return _generate

    monkeypatch.setattr("epub_importer.app._lesson_generator", _fake_generator)
    client = TestClient(app_module.app)

    response = client.post(
        "/import",
        files={"file": ("Short Story.epub", _epub(30), "application/epub+zip")},
        data={"seriesTitle": "Tales", "targetWords": "10", "maxFragments": "5"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert response.headers["content-disposition"] == 'attachment; filename="tales_short_story.zip"'
    assert response.headers["x-import-status"] == "success"
    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        assert sorted(archive.namelist()) == ["lesson_1.json", "lesson_2.json", "lesson_3.json"]
        assert json.loads(archive.read("lesson_2.json"))["words"] == 10
    assert calls == [
        "Short Story — Fragment 1",
        "Short Story — Fragment 2",
        "Short Story — Fragment 3",
    ]


def test_import_partial_failure_returns_206(monkeypatch):
    def _fake_generator(_config):
        def _generate(_fragment_text, lesson_title):
            if lesson_title.endswith("2"):
                raise RuntimeError("boom")
            return {"ok": True}

        return _generate

    monkeypatch.setattr("epub_importer.app._lesson_generator", _fake_generator)
    client = TestClient(app_module.app)

    response = client.post(
        "/import",
        files={"file": ("book.epub", _epub(30), "application/epub+zip")},
        data={"targetWords": "10"},
    )

    assert response.status_code == 206
    assert response.headers["x-import-status"] == "partial"
    with zipfile.ZipFile(io.BytesIO(response.content)) as archive:
        assert sorted(archive.namelist()) == ["import_error.json", "lesson_1.json"]
        assert json.loads(archive.read("import_error.json")) == {"fragment": 2, "error": "boom"}


def test_import_without_file_is_rejected():
    client = TestClient(app_module.app)

    response = client.post("/import", data={"bookTitle": "Nothing"})

    assert response.status_code == 400
    assert response.json()["message"] == "Missing file."


def test_import_structural_error_returns_json_without_archive():
    client = TestClient(app_module.app)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("ch1.xhtml", "<p>text</p>")

    response = client.post("/import", files={"file": ("book.epub", buffer.getvalue(), "application/epub+zip")})

    assert response.status_code == 400
    assert response.headers["content-type"].startswith("application/json")
    assert response.json()["status"] == "error"


def test_import_rejects_unknown_provider():
    client = TestClient(app_module.app)

    response = client.post(
        "/import",
        files={"file": ("book.epub", _epub(), "application/epub+zip")},
        data={"provider": "llama"},
    )

    assert response.status_code == 400
    assert "Unknown provider" in response.json()["message"]


def test_unexpected_error_is_reported_as_importer_error(monkeypatch):
    def _explode(*_args, **_kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr("epub_importer.app.run_import", _explode)
    client = TestClient(app_module.app)

    response = client.post("/import", files={"file": ("book.epub", _epub(), "application/epub+zip")})

    assert response.status_code == 500
    assert response.json()["message"] == "Importer error: disk on fire"


class TestAppConfig(unittest.TestCase):
    def setUp(self):
        self.original_env = {
            name: os.environ.get(name)
            for name in ("IMPORTER_CORS_ALLOWED_ORIGINS", "OPENAI_MODEL", "IMPORTER_TARGET_WORDS")
        }

    def tearDown(self):
        for name, value in self.original_env.items():
            if value is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = value
        reload(app_module)

    def test_default_cors_allows_local_frontend_origin(self):
        os.environ.pop("IMPORTER_CORS_ALLOWED_ORIGINS", None)
        module = reload(app_module)

        self.assertIn("http://localhost:3000", module.CORS_ALLOWED_ORIGINS)
        self.assertIn("http://127.0.0.1:3000", module.CORS_ALLOWED_ORIGINS)

        cors_middleware_entries = [
            entry
            for entry in module.app.user_middleware
            if entry.cls.__name__ == "CORSMiddleware"
        ]
        self.assertTrue(cors_middleware_entries)

    def test_environment_configures_importer(self):
        os.environ["OPENAI_MODEL"] = "gpt-4o-mini"
        os.environ["IMPORTER_TARGET_WORDS"] = "800"
        module = reload(app_module)

        self.assertEqual(module.IMPORTER_CONFIG.openai_model, "gpt-4o-mini")
        self.assertEqual(module.IMPORTER_CONFIG.target_words, 800)


if __name__ == "__main__":
    unittest.main()
