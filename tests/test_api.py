"""Tests for the HTTP API."""

import time
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from tests.helpers import b64, make_png
from visreg.api.app import create_app
from visreg.capture.screenshot import CaptureResult
from visreg.errors import CaptureError
from visreg.models.config import ViewportConfig
from visreg.models.test_run import CaptureMetadata
from visreg.orchestrator import Platform

PREFIX = "/api/v1"
WHITE = b64(make_png(color=(255, 255, 255)))
BLACK = b64(make_png(color=(0, 0, 0)))


@pytest.fixture
def capturer():
    capturer = Mock()
    capturer.capture = AsyncMock(return_value=CaptureResult(
        screenshot=make_png(color=(0, 0, 0)),
        metadata=CaptureMetadata(url="https://example.com/", viewport=ViewportConfig()),
    ))
    return capturer


@pytest.fixture
def platform(settings, capturer):
    chain = Mock()
    chain.compare = AsyncMock(return_value=None)
    return Platform(settings, persist=False, capturer=capturer, chain_builder=lambda name: chain)


@pytest.fixture
def client(platform):
    with TestClient(create_app(platform)) as client:
        yield client


@pytest.fixture
def project_id(client):
    response = client.post(f"{PREFIX}/projects", json={"name": "Shop", "baseUrl": "https://example.com"})
    return response.json()["id"]


def _create_baseline(client, project_id, image=WHITE, name="home", **extra):
    body = {"projectId": project_id, "name": name, "image": image, "url": "https://example.com/", **extra}
    return client.post(f"{PREFIX}/baselines", json=body)


class TestHealth:
    """Tests for GET /health."""

    def test_health(self, client):
        response = client.get(f"{PREFIX}/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["aiProvider"] == "openai"
        assert data["providers"] == {
            "openai": False, "groq": False, "openai_router": False, "anthropic": False,
        }
        assert data["browserRunning"] is False

    def test_unknown_route(self, client):
        assert client.get(f"{PREFIX}/nope").status_code == 404


class TestProjects:
    """Tests for the project endpoints."""

    def test_create_project(self, client):
        response = client.post(f"{PREFIX}/projects", json={
            "name": "Shop",
            "baseUrl": "https://example.com",
            "config": {"diffThreshold": 90, "aiEnabled": False},
        })
        assert response.status_code == 201
        data = response.json()
        assert data["baseUrl"] == "https://example.com"
        assert data["config"] == {"diffThreshold": 90, "aiEnabled": False}
        assert data["isActive"] is True

    def test_create_requires_name(self, client):
        response = client.post(f"{PREFIX}/projects", json={"name": "", "baseUrl": "https://x"})
        assert response.status_code == 422

    def test_get_missing_project(self, client):
        response = client.get(f"{PREFIX}/projects/missing")
        assert response.status_code == 404
        assert response.json() == {"status": "error", "message": "project missing not found"}

    def test_soft_delete(self, client, project_id):
        response = client.delete(f"{PREFIX}/projects/{project_id}")
        assert response.status_code == 200
        assert response.json()["isActive"] is False

        active = client.get(f"{PREFIX}/projects").json()
        everything = client.get(f"{PREFIX}/projects", params={"include_inactive": True}).json()
        assert active == []
        assert [p["id"] for p in everything] == [project_id]
        assert client.get(f"{PREFIX}/projects/{project_id}").status_code == 200


class TestBaselines:
    """Tests for the baseline endpoints."""

    def test_create_versions(self, client, project_id):
        first = _create_baseline(client, project_id)
        second = _create_baseline(client, project_id, mask_config={"ignoreRegions": []})
        assert first.status_code == 201
        assert first.json()["version"] == 1
        assert second.json()["version"] == 2

        listed = client.get(f"{PREFIX}/projects/{project_id}/baselines").json()
        active = client.get(f"{PREFIX}/projects/{project_id}/baselines", params={"active_only": True}).json()
        assert [b["version"] for b in listed] == [1, 2]
        assert [b["id"] for b in active] == [second.json()["id"]]
        assert listed[0]["isActive"] is False

    def test_data_url_prefix_is_stripped(self, client, project_id):
        response = _create_baseline(client, project_id, image="data:image/png;base64," + WHITE)
        assert response.json()["image"] == WHITE

    def test_get_baseline(self, client, project_id):
        created = _create_baseline(client, project_id).json()
        response = client.get(f"{PREFIX}/baselines/{created['id']}")
        assert response.status_code == 200
        assert response.json()["metadata"]["url"] == "https://example.com/"

    def test_invalid_image(self, client, project_id):
        response = _create_baseline(client, project_id, image=b64(b"not an image"))
        assert response.status_code == 400
        assert response.json()["status"] == "error"

    def test_unknown_project(self, client):
        assert _create_baseline(client, "missing").status_code == 404


class TestRunTests:
    """Tests for queued test runs."""

    def _wait_for(self, client, test_id, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            data = client.get(f"{PREFIX}/tests/{test_id}").json()
            if data["status"] in ("COMPLETED", "FAILED"):
                return data
            time.sleep(0.02)
        raise AssertionError(f"test {test_id} did not finish")

    def test_run_without_baseline(self, client, project_id):
        response = client.post(f"{PREFIX}/tests/run", json={
            "projectId": project_id, "url": "https://example.com/", "priority": "HIGH",
        })
        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "QUEUED"
        assert body["priority"] == "HIGH"

        data = self._wait_for(client, body["testId"])
        assert data["status"] == "COMPLETED"
        assert data["result"]["metadata"]["url"] == "https://example.com/"
        assert data["result"]["testResultId"] is None

    def test_run_against_baseline(self, client, project_id):
        _create_baseline(client, project_id)
        response = client.post(f"{PREFIX}/tests/run", json={"projectId": project_id, "url": "https://example.com/"})

        data = self._wait_for(client, response.json()["testId"])

        assert data["status"] == "COMPLETED"
        assert data["result"]["status"] == "FAILED"
        assert data["result"]["isDifferent"] is True
        assert data["result"]["diffResult"]["method"] == "pixel"

    def test_result_lookup_and_unresolve(self, client, project_id):
        _create_baseline(client, project_id)
        response = client.post(f"{PREFIX}/tests/run", json={"projectId": project_id, "url": "https://example.com/"})
        run = self._wait_for(client, response.json()["testId"])

        result = client.get(f"{PREFIX}/tests/{run['id']}/result")
        assert result.status_code == 200
        assert result.json()["id"] == run["result"]["testResultId"]
        assert result.json()["status"] == "FAILED"

        flagged = client.post(f"{PREFIX}/results/{result.json()['id']}/unresolve")
        assert flagged.status_code == 200
        assert flagged.json()["status"] == "UNRESOLVED"
        assert client.get(f"{PREFIX}/tests/{run['id']}/result").json()["status"] == "UNRESOLVED"

    def test_result_missing(self, client, project_id):
        response = client.post(f"{PREFIX}/tests/run", json={"projectId": project_id, "url": "https://example.com/"})
        run = self._wait_for(client, response.json()["testId"])
        assert client.get(f"{PREFIX}/tests/{run['id']}/result").status_code == 404
        assert client.get(f"{PREFIX}/tests/missing/result").status_code == 404
        assert client.post(f"{PREFIX}/results/missing/unresolve").status_code == 404

    def test_capture_failure_marks_run_failed(self, client, project_id, capturer, platform):
        platform.settings.max_retries = 0
        capturer.capture.side_effect = CaptureError("Navigation to https://example.com/ failed")
        response = client.post(f"{PREFIX}/tests/run", json={"projectId": project_id, "url": "https://example.com/"})

        data = self._wait_for(client, response.json()["testId"])

        assert data["status"] == "FAILED"
        assert "Navigation" in data["result"]["error"]

    def test_unknown_project(self, client):
        response = client.post(f"{PREFIX}/tests/run", json={"projectId": "missing", "url": "https://x"})
        assert response.status_code == 404

    def test_unknown_test(self, client):
        assert client.get(f"{PREFIX}/tests/missing").status_code == 404

    def test_queue_status(self, client):
        response = client.get(f"{PREFIX}/queue/status")
        assert response.status_code == 200
        assert response.json() == {
            "queued": {"HIGH": 0, "NORMAL": 0, "LOW": 0},
            "running": 0,
            "maxConcurrency": 5,
        }


class TestPixelEndpoints:
    """Tests for the synchronous pixel comparison endpoints."""

    def test_quick_compare_different(self, client):
        response = client.post(f"{PREFIX}/pixel/quick-compare", json={
            "baselineImage": WHITE, "currentImage": BLACK, "threshold": 5,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["isDifferent"] is True
        assert data["confidence"] == 95
        assert data["mismatchPercentage"] == 100
        assert data["diffPixels"] == 10000
        assert data["method"] == "pixel"
        assert data["metadata"]["method"] == "pixel-only"
        assert data["diffImage"].startswith("data:image/png;base64,")

    def test_quick_compare_identical(self, client):
        response = client.post(f"{PREFIX}/pixel/quick-compare", json={
            "baselineImage": WHITE, "currentImage": WHITE,
        })
        data = response.json()
        assert data["isDifferent"] is False
        assert data["confidence"] == 98
        assert data["similarityScore"] == 100
        assert data["metadata"]["threshold"] == 0.1

    def test_quick_compare_bad_payload(self, client):
        response = client.post(f"{PREFIX}/pixel/quick-compare", json={
            "baselineImage": b64(b"garbage"), "currentImage": WHITE,
        })
        assert response.status_code == 400

    def test_quick_compare_too_large(self, settings, capturer):
        settings.max_image_bytes = 64
        platform = Platform(settings, persist=False, capturer=capturer)
        with TestClient(create_app(platform)) as client:
            response = client.post(f"{PREFIX}/pixel/quick-compare", json={
                "baselineImage": WHITE, "currentImage": WHITE,
            })
        assert response.status_code == 413

    def test_compare_against_baseline(self, client, project_id):
        baseline = _create_baseline(client, project_id).json()
        response = client.post(f"{PREFIX}/pixel/compare", json={
            "projectId": project_id, "baselineId": baseline["id"], "currentImage": BLACK,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["isDifferent"] is True
        assert data["baseline"] == {"id": baseline["id"], "name": "home", "version": 1}

    def test_compare_applies_baseline_mask(self, client, project_id):
        baseline = _create_baseline(client, project_id, maskConfig={
            "ignoreRegions": [{"x": 0, "y": 0, "width": 100, "height": 100}],
        }).json()
        response = client.post(f"{PREFIX}/pixel/compare", json={
            "projectId": project_id, "baselineId": baseline["id"], "currentImage": BLACK,
        })
        assert response.json()["isDifferent"] is False

    def test_compare_captures_url(self, client, project_id, capturer):
        baseline = _create_baseline(client, project_id).json()
        response = client.post(f"{PREFIX}/pixel/compare", json={
            "projectId": project_id, "baselineId": baseline["id"], "url": "https://example.com/",
            "waitTime": 500,
        })
        assert response.status_code == 200
        assert response.json()["isDifferent"] is True
        url, _, options = capturer.capture.call_args.args
        assert url == "https://example.com/"
        assert options.wait_time_ms == 500

    def test_compare_requires_image_or_url(self, client, project_id):
        baseline = _create_baseline(client, project_id).json()
        response = client.post(f"{PREFIX}/pixel/compare", json={
            "projectId": project_id, "baselineId": baseline["id"],
        })
        assert response.status_code == 400

    def test_compare_unknown_baseline(self, client, project_id):
        response = client.post(f"{PREFIX}/pixel/compare", json={
            "projectId": project_id, "baselineId": "missing", "currentImage": BLACK,
        })
        assert response.status_code == 404
