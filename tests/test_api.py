"""
HTTP tests for the analysis API
Providers are mocked; the app lifespan is not started so no keys are needed.
"""
import asyncio
import io
import sys
import os
import time
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from leafscan import config, dependencies
from leafscan.errors import ConfigurationError, UpstreamUnavailableError
from leafscan.main import app
from leafscan.services import analysis, disease_analysis, rate_limit
from leafscan.services.storage import BlobStorage


def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), (30, 120, 40)).save(buffer, format="PNG")
    return buffer.getvalue()


PLANT_ID_DISEASED = {
    "suggestions": [{
        "plant_name": "Cucurbita pepo",
        "probability": 0.8,
        "plant_details": {"common_names": ["Zucchini"]},
        "diseases": [{"name": "Powdery mildew", "severity": "high"}],
    }]
}


@pytest.fixture(autouse=True)
def isolated_services(monkeypatch):
    monkeypatch.setattr(rate_limit, "redis_client", None)
    monkeypatch.setattr(dependencies, "text_client", None)
    monkeypatch.setattr(dependencies, "supabase_client", None)
    disease_analysis.configure(None)
    yield


@pytest.fixture
def client():
    return TestClient(app)


def post_image(client, data=None, content_type="image/png", filename="leaf.png"):
    return client.post(
        "/api/analyze",
        files={"image": (filename, data if data is not None else png_bytes(), content_type)},
    )


# =============================================================================
# POST /api/analyze
# =============================================================================
class TestAnalyzeEndpoint:
    def test_success(self, client):
        with patch("leafscan.services.analysis.identify_plant", new=AsyncMock(return_value=PLANT_ID_DISEASED)):
            response = post_image(client)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        analysis = body["analysis"]
        assert analysis["health"] == 60
        assert analysis["confidence"] == 80
        assert analysis["diseases"] == ["Powdery mildew"]
        assert analysis["predictions"][0]["severity"] == "high"
        assert analysis["predictions"][0]["confidence"] == 0.8
        assert analysis["metadata"]["model"] == "plant.id"
        assert body["plantInfo"]["bestMatch"]["commonNames"] == ["Zucchini"]
        assert body["timestamp"] == analysis["timestamp"]
        assert response.headers["X-RateLimit-Limit"] == str(config.RATE_LIMIT_MAX_REQUESTS)

    def test_no_suggestions_is_400(self, client):
        with patch("leafscan.services.analysis.identify_plant", new=AsyncMock(return_value={"suggestions": []})):
            response = post_image(client)

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == "NO_SUGGESTIONS"
        assert body["error"]["message"] == "Could not identify plant from the image"

    def test_upstream_failure_is_502(self, client):
        error = UpstreamUnavailableError("Plant identification failed", provider="plant.id", upstream_status=503)
        with patch("leafscan.services.analysis.identify_plant", new=AsyncMock(side_effect=error)):
            response = post_image(client)

        assert response.status_code == 502
        error_body = response.json()["error"]
        assert error_body["code"] == "UPSTREAM_UNAVAILABLE"
        assert error_body["details"] == {"provider": "plant.id", "status": 503}

    def test_invalid_file_type(self, client):
        identify = AsyncMock()
        with patch("leafscan.services.analysis.identify_plant", new=identify):
            response = post_image(client, data=b"%PDF-1.4", content_type="application/pdf", filename="doc.pdf")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_FILE_TYPE"
        identify.assert_not_awaited()

    def test_too_large(self, client, monkeypatch):
        monkeypatch.setattr("leafscan.services.analysis.MAX_UPLOAD_SIZE", 10)
        response = post_image(client, data=b"\x00" * 11)
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "FILE_TOO_LARGE"

    def test_oversized_upload_is_rejected_before_reading(self, client, monkeypatch):
        monkeypatch.setattr("leafscan.services.analysis.MAX_UPLOAD_SIZE", 10)
        spy = MagicMock(wraps=analysis.validate_image_upload)
        monkeypatch.setattr(analysis, "validate_image_upload", spy)

        response = post_image(client, data=b"\x00" * 1000)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "FILE_TOO_LARGE"
        # The parser-reported size is used, so the body was never read into memory
        assert error["details"]["receivedSize"] == 1000
        spy.assert_not_called()

    def test_missing_image_field(self, client):
        response = client.post("/api/analyze", files={"photo": ("leaf.png", png_bytes(), "image/png")})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "NO_IMAGE"
        assert error["details"]["formKeys"] == ["photo"]

    def test_not_multipart(self, client):
        response = client.post("/api/analyze", json={"image": "base64..."})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_CONTENT_TYPE"

    def test_unexpected_error_is_500_without_internals(self):
        client = TestClient(app, raise_server_exceptions=False)
        with patch("leafscan.services.analysis.identify_plant", new=AsyncMock(side_effect=KeyError("secret"))):
            response = post_image(client)

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["details"] == "Internal server error"
        assert "secret" not in response.text

    def test_enrichment_keeps_provider_details_on_fallback(self, client, monkeypatch):
        monkeypatch.setattr(dependencies, "enrichment_enabled", lambda: True)
        with patch("leafscan.services.analysis.identify_plant", new=AsyncMock(return_value=PLANT_ID_DISEASED)):
            response = post_image(client)

        details = response.json()["analysis"]["predictions"][0]["details"]
        assert details["disease_name"] == "Powdery mildew"
        assert details["affected_plants"] == ["Zucchini"]


# =============================================================================
# Request gate
# =============================================================================
class TestRateLimitGate:
    def test_exhausted_client_gets_429(self, client, monkeypatch):
        store = MagicMock()
        store.get.return_value = str(config.RATE_LIMIT_MAX_REQUESTS)
        monkeypatch.setattr(rate_limit, "redis_client", store)

        response = post_image(client)

        assert response.status_code == 429
        assert response.json()["error"] == "Too many requests"
        assert response.headers["Retry-After"] == str(config.RATE_LIMIT_WINDOW)
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_429_carries_cors_headers(self, client, monkeypatch):
        store = MagicMock()
        store.get.return_value = str(config.RATE_LIMIT_MAX_REQUESTS)
        monkeypatch.setattr(rate_limit, "redis_client", store)

        response = client.get("/api/diseases/Rust/analysis", headers={"Origin": "https://dashboard.example.com"})

        assert response.status_code == 429
        assert "access-control-allow-origin" in response.headers

    def test_slow_store_does_not_serialize_requests(self, monkeypatch):
        class SlowStore:
            def get(self, key):
                time.sleep(0.3)
                return None

            def set(self, key, value, ex=None):
                pass

        monkeypatch.setattr(rate_limit, "redis_client", SlowStore())

        async def run():
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
                started = time.perf_counter()
                responses = await asyncio.gather(*[
                    http.get("/api/diseases/Rust/analysis", headers={"X-Forwarded-For": f"10.0.0.{i}"})
                    for i in range(4)
                ])
                return time.perf_counter() - started, responses

        elapsed, responses = asyncio.run(run())

        assert all(r.status_code == 200 for r in responses)
        # One after another would take at least 1.2s
        assert elapsed < 1.0, f"4 gated requests took {elapsed:.2f}s"

    def test_forwarded_for_first_hop_is_the_key(self, client, monkeypatch):
        store = MagicMock()
        store.get.return_value = None
        monkeypatch.setattr(rate_limit, "redis_client", store)

        client.get("/api/diseases/Rust/analysis", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

        store.get.assert_called_with("rate-limit:203.0.113.7")

    def test_non_api_paths_are_not_gated(self, client, monkeypatch):
        store = MagicMock()
        store.get.return_value = "9999"
        monkeypatch.setattr(rate_limit, "redis_client", store)

        response = client.get("/health")

        assert response.status_code == 200
        store.get.assert_not_called()


# =============================================================================
# GET /api/diseases/{name}/analysis
# =============================================================================
class TestDiseaseAnalysisEndpoint:
    def test_unconfigured_model_returns_fallback(self, client):
        response = client.get("/api/diseases/Black Rot/analysis", params={"confidence": 0.9})

        assert response.status_code == 200
        body = response.json()
        assert body["disease_name"] == "Black Rot"
        assert body["severity"] == "high"
        assert body["description"] == disease_analysis.FALLBACK_DESCRIPTION
        assert body["_cached"] is False

    def test_confidence_out_of_range(self, client):
        response = client.get("/api/diseases/Rust/analysis", params={"confidence": 2})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "BAD_REQUEST"


# =============================================================================
# POST /api/upload
# =============================================================================
class TestUploadEndpoint:
    def test_upload(self, client, monkeypatch):
        bucket = MagicMock()
        bucket.get_public_url.return_value = "https://cdn.example.com/uploads/1-leaf.png"
        supabase = MagicMock()
        supabase.storage.from_.return_value = bucket
        monkeypatch.setattr(dependencies, "blob_storage", BlobStorage(supabase))

        response = client.post("/api/upload", files={"file": ("my leaf.png", png_bytes(), "image/png")})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["fileKey"].endswith("-my-leaf.png")
        assert body["fileUrl"] == "https://cdn.example.com/uploads/1-leaf.png"
        assert body["fileType"] == "image/png"

    def test_upload_without_storage_is_502(self, client, monkeypatch):
        monkeypatch.setattr(dependencies, "blob_storage", BlobStorage(None))
        response = client.post("/api/upload", files={"file": ("leaf.png", png_bytes(), "image/png")})
        assert response.status_code == 502
        assert response.json()["error"]["code"] == "STORAGE_ERROR"

    def test_oversized_upload_is_not_stored(self, client, monkeypatch):
        monkeypatch.setattr("leafscan.services.analysis.MAX_UPLOAD_SIZE", 10)
        storage = MagicMock()
        monkeypatch.setattr(dependencies, "blob_storage", storage)

        response = client.post("/api/upload", files={"file": ("leaf.png", b"\x00" * 1000, "image/png")})

        assert response.status_code == 400
        assert response.json()["error"]["details"]["receivedSize"] == 1000
        storage.upload_image.assert_not_called()


# =============================================================================
# Operational endpoints / startup
# =============================================================================
class TestOperational:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["cache_stats"]["storage"] == "in-memory"
        assert body["services"]["enrichment"] is False

    def test_cache_clear(self, client):
        response = client.post("/cache/clear")
        assert response.status_code == 200
        assert client.get("/cache/stats").json()["entries"] == 0

    def test_missing_plant_id_key_aborts_startup(self, monkeypatch):
        monkeypatch.setattr(config, "PLANT_ID_API_KEY", None)
        with pytest.raises(ConfigurationError) as exc_info:
            config.validate_config()
        assert exc_info.value.missing == ["PLANT_ID_API_KEY"]
