"""End-to-end tests of the HTTP surface with in-memory backends."""

import asyncio
import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from bundle_pipeline.api import create_app
from bundle_pipeline.core.archive import validate_archive
from bundle_pipeline.core.models import PipelineSettings, ProductRecord
from bundle_pipeline.core.sse import SSEDecoder
from bundle_pipeline.testing import FakeStorage, InMemoryStore, build_test_bundle, numbered_images

TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest.fixture
def backends():
    storage = FakeStorage()
    store = InMemoryStore()
    asyncio.run(store.create_product(ProductRecord(product_id="prod-1", owner_id="admin-1")))
    return storage, store


@pytest.fixture
def client(backends):
    storage, store = backends
    settings = PipelineSettings(api_tokens=[TOKEN], batch_delay_seconds=0)
    with TestClient(create_app(settings, storage=storage, store=store)) as test_client:
        yield test_client


def _upload(client, path, data=None, filename="bundle.zip", fields=None, headers=AUTH):
    if data is None:
        data = build_test_bundle(numbered_images(3))
    form = {"targetResourceId": "prod-1", "ownerId": "admin-1"} if fields is None else fields
    return client.post(
        path,
        data=form,
        files={"file": (filename, data, "application/zip")},
        headers=headers,
    )


def _events(response):
    decoder = SSEDecoder()
    return decoder.feed(response.content) + decoder.flush()


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestUploadBundle:
    def test_success(self, client, backends):
        storage, store = backends
        response = _upload(client, "/api/upload-bundle")

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["assetCount"] == 3
        assert body["constants"]["uCount"] == 10
        assert body["coverAssetUrl"].endswith("admin-1/prod-1/frame1.png")
        assert len(body["uploadedAssetPaths"]) == 3
        assert store.products["prod-1"].cover_asset_url == body["coverAssetUrl"]

    def test_legacy_field_names(self, client):
        response = _upload(
            client, "/api/upload-bundle", fields={"product_id": "prod-1", "admin_id": "admin-1"}
        )
        assert response.status_code == 200

    @pytest.mark.parametrize(
        "headers",
        [{}, {"Authorization": "Bearer wrong"}, {"Authorization": f"Basic {TOKEN}"}],
    )
    def test_unauthorized(self, client, backends, headers):
        response = _upload(client, "/api/upload-bundle", headers=headers)
        assert response.status_code == 401
        assert response.json() == {"ok": False, "error": "Unauthorized"}
        assert backends[0].upload_calls == []

    def test_missing_fields(self, client):
        response = _upload(client, "/api/upload-bundle", fields={"ownerId": "admin-1"})
        assert response.status_code == 400
        assert response.json()["ok"] is False

    def test_non_zip_rejected(self, client):
        response = _upload(client, "/api/upload-bundle", filename="bundle.rar")
        assert response.status_code == 400
        assert response.json()["error"] == "Only ZIP files are allowed"

    def test_corrupt_archive(self, client):
        response = _upload(client, "/api/upload-bundle", data=b"garbage")
        assert response.status_code == 400
        assert "Corrupt or invalid ZIP archive" in response.json()["error"]

    def test_missing_configuration(self, client):
        response = _upload(
            client, "/api/upload-bundle", data=build_test_bundle(numbered_images(1), configuration=None)
        )
        assert response.status_code == 400

    def test_unknown_product_is_server_error(self, client):
        response = _upload(
            client, "/api/upload-bundle", fields={"targetResourceId": "ghost", "ownerId": "admin-1"}
        )
        assert response.status_code == 500
        assert response.json()["ok"] is False


class TestUploadBundleStream:
    def test_streams_progress_until_complete(self, client):
        response = _upload(client, "/api/upload-bundle-stream")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"
        events = _events(response)
        assert events[0].phase == "extracting"
        assert events[-1].type == "complete"
        assert events[-1].image_count == 3
        percentages = [e.percentage for e in events]
        assert percentages == sorted(percentages)

    def test_corrupt_archive_rejected_before_stream(self, client):
        response = _upload(client, "/api/upload-bundle-stream", data=b"garbage")
        assert response.status_code == 400
        assert response.json()["ok"] is False

    def test_failure_after_open_is_error_event(self, client):
        response = _upload(
            client,
            "/api/upload-bundle-stream",
            data=build_test_bundle(numbered_images(2), configuration=None),
        )
        assert response.status_code == 200
        events = _events(response)
        assert events[-1].type == "error"
        assert sum(1 for e in events if e.type in ("complete", "error")) == 1

    def test_per_item_failure_keeps_streaming(self, client, backends):
        backends[0].fail_uploads_for("frame2.png")
        events = _events(_upload(client, "/api/upload-bundle-stream"))
        assert any(getattr(e, "file_name", None) == "frame2.png" for e in events)
        assert events[-1].type == "complete"
        assert len(events[-1].uploaded_images) == 2


class TestDeleteProduct:
    def test_delete_removes_assets_and_row(self, client, backends):
        storage, store = backends
        _upload(client, "/api/upload-bundle")

        response = client.delete("/api/products/prod-1", headers=AUTH)

        assert response.json() == {"ok": True, "deleted": True}
        assert storage.keys() == []
        assert "prod-1" not in store.products

    def test_delete_is_idempotent(self, client):
        client.delete("/api/products/prod-1", headers=AUTH)
        response = client.delete("/api/products/prod-1", headers=AUTH)
        assert response.json() == {"ok": True, "deleted": False}

    def test_requires_auth(self, client):
        assert client.delete("/api/products/prod-1").status_code == 401


def _create_project(client, views="[[true, false], [false, true]]", files=2):
    return client.post(
        "/api/projects",
        data={"name": "Chairs", "ownerId": "admin-1", "finalMessage": "Thanks", "views": views},
        files=[
            ("files", (f"chair{i}.zip", build_test_bundle(numbered_images(2)), "application/zip"))
            for i in range(files)
        ],
        headers=AUTH,
    )


class TestCreateProject:

    def test_creates_project_products_and_views(self, client, backends):
        storage, store = backends
        response = _create_project(client)

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["project"]["name"] == "Chairs"
        assert [p["name"] for p in body["products"]] == ["Product 1", "Product 2"]
        product_ids = [p["product_id"] for p in body["products"]]
        assert [v["product_ids"] for v in body["views"]] == [[product_ids[0]], [product_ids[1]]]
        assert len(storage.keys()) == 4

    def test_invalid_views(self, client):
        response = _create_project(client, views="not json")
        assert response.status_code == 400

    def test_failure_is_rolled_back(self, client, backends):
        storage, store = backends
        store.fail_operation("create_view")

        response = _create_project(client)

        assert response.status_code == 500
        body = response.json()
        assert body["ok"] is False
        assert body["error"].startswith("Error creating project")
        assert store.projects == {}
        assert set(store.products) == {"prod-1"}
        assert storage.keys() == []

    def test_missing_name(self, client):
        response = client.post("/api/projects", data={"ownerId": "admin-1"}, headers=AUTH)
        assert response.status_code == 400


class TestDeleteProject:
    def test_delete_removes_products_assets_and_views(self, client, backends):
        storage, store = backends
        created = _create_project(client).json()
        project_id = created["project"]["project_id"]
        assert len(storage.keys()) == 4

        response = client.delete(f"/api/projects/{project_id}", headers=AUTH)

        assert response.json() == {"ok": True, "deleted": True}
        assert storage.keys() == []
        assert store.projects == {}
        assert store.views == {}
        assert set(store.products) == {"prod-1"}

    def test_unknown_project(self, client):
        response = client.delete("/api/projects/ghost", headers=AUTH)
        assert response.json() == {"ok": True, "deleted": False}

    def test_requires_auth(self, client):
        assert client.delete("/api/projects/ghost").status_code == 401


class TestStreamValidationThread:
    def test_stream_route_validates_outside_event_loop(self, client):
        seen = []

        def recording_validate(data):
            try:
                asyncio.get_running_loop()
                seen.append("event loop")
            except RuntimeError:
                seen.append("worker thread")
            validate_archive(data)

        with patch("bundle_pipeline.api.routes.validate_archive", recording_validate):
            response = _upload(client, "/api/upload-bundle-stream")

        assert response.status_code == 200
        assert seen == ["worker thread"]
