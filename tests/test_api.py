"""
Tests for API endpoints.
"""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from bgremoval_service import api
from bgremoval_service.errors import AssetResolutionError, DecodeError, ModelLoadError


@pytest.fixture
def api_client():
    return TestClient(api.app)


@pytest.fixture
def s3_client(monkeypatch):
    monkeypatch.setattr(api.settings, "r2_bucket_name", "cutouts-bucket")
    monkeypatch.setattr(api.settings, "r2_public_base_url", "https://cdn.example.com/")
    client = MagicMock()
    with patch("bgremoval_service.api._get_s3_client", return_value=client):
        yield client


class TestHealthEndpoint:
    def test_health_endpoint(self, api_client):
        response = api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestRemoveEndpoint:
    def test_success_uploads_png(self, api_client, s3_client, sample_image_bytes):
        with patch("bgremoval_service.api._download_image", return_value=sample_image_bytes), patch(
            "bgremoval_service.api.remove_background", return_value=b"png-bytes"
        ) as mock_remove:
            response = api_client.post(
                "/remove-bg",
                json={"imageUrl": "https://example.com/cat.jpg", "resolution": 320, "output": "background"},
            )

        assert response.status_code == 200
        body = response.json()
        assert body["output"] == "background"
        assert body["outputUrl"].startswith("https://cdn.example.com/cutouts/")
        assert body["outputUrl"].endswith(".png")

        image_bytes, options = mock_remove.call_args[0]
        assert image_bytes == sample_image_bytes
        assert options.resolution == 320
        assert options.output == "background"
        assert options.model is None

        put_kwargs = s3_client.put_object.call_args.kwargs
        assert put_kwargs["Bucket"] == "cutouts-bucket"
        assert put_kwargs["Body"] == b"png-bytes"
        assert put_kwargs["ContentType"] == "image/png"

    def test_model_url_forwarded(self, api_client, s3_client):
        with patch("bgremoval_service.api._download_image", return_value=b"img"), patch(
            "bgremoval_service.api.remove_background", return_value=b"png"
        ) as mock_remove:
            response = api_client.post(
                "/remove-bg",
                json={"imageUrl": "https://example.com/cat.jpg", "model": "https://models.example.com/isnet.onnx"},
            )
        assert response.status_code == 200
        assert mock_remove.call_args[0][1].model == "https://models.example.com/isnet.onnx"

    def test_missing_image_url(self, api_client):
        response = api_client.post("/remove-bg", json={})
        assert response.status_code == 422

    def test_download_failure(self, api_client):
        with patch("bgremoval_service.api._download_image", side_effect=RuntimeError("404")):
            response = api_client.post("/remove-bg", json={"imageUrl": "https://example.com/cat.jpg"})
        assert response.status_code == 400

    def test_unknown_output_mode(self, api_client):
        with patch("bgremoval_service.api._download_image", return_value=b"img"):
            response = api_client.post(
                "/remove-bg", json={"imageUrl": "https://example.com/cat.jpg", "output": "sepia"}
            )
        assert response.status_code == 400

    @pytest.mark.parametrize(
        "error,status",
        [
            (DecodeError("Invalid image data"), 400),
            (AssetResolutionError("offline"), 503),
            (ModelLoadError("bad model"), 500),
        ],
    )
    def test_pipeline_errors(self, api_client, error, status):
        with patch("bgremoval_service.api._download_image", return_value=b"img"), patch(
            "bgremoval_service.api.remove_background", side_effect=error
        ):
            response = api_client.post("/remove-bg", json={"imageUrl": "https://example.com/cat.jpg"})
        assert response.status_code == status

    def test_upload_failure(self, api_client, s3_client):
        s3_client.put_object.side_effect = RuntimeError("denied")
        with patch("bgremoval_service.api._download_image", return_value=b"img"), patch(
            "bgremoval_service.api.remove_background", return_value=b"png"
        ):
            response = api_client.post("/remove-bg", json={"imageUrl": "https://example.com/cat.jpg"})
        assert response.status_code == 500
        assert response.json()["detail"] == "Upload to storage failed"
