"""
Integration Tests for ServeSense API
Tests the flow from upload to analysis to saved sessions.
"""

import numpy as np
import pytest
from unittest.mock import patch

from fastapi.testclient import TestClient

import main
from main import app


@pytest.fixture
def client():
    """Create test client"""
    return TestClient(app)


@pytest.fixture
def store(tmp_path):
    """Isolated session store for each test"""
    from core.session_recorder import JSONSessionStore

    session_store = JSONSessionStore(str(tmp_path / "sessions"))
    with patch.object(main, "session_store", session_store):
        yield session_store


@pytest.fixture
def mock_video_file():
    """Upload payload; decoding is patched, so the bytes are arbitrary"""
    content = b"mock video content " * 100
    return {"file": ("serve.mp4", content, "video/mp4")}


@pytest.fixture
def replay_pipeline(store):
    """
    Analysis pipeline fed with target-geometry poses and blank frames instead
    of a decoded video and a pose model.
    """
    from core.pipeline import ServeAnalysisPipeline
    from core.pose_source import ReplayPoseSource
    from core.video_source import ArrayFrameSource
    from conftest import build_target_pose

    def build():
        poses = [build_target_pose(i / 10) for i in range(20)]
        return ServeAnalysisPipeline(pose_source=ReplayPoseSource(poses), store=main.session_store)

    def frames(path):
        return ArrayFrameSource([np.zeros((48, 64, 3), dtype=np.uint8)] * 20, fps=10)

    with patch.object(main, "build_pipeline", side_effect=build), \
            patch("core.pipeline.VideoFileSource", side_effect=frames):
        yield


class TestHealthEndpoints:
    """Test health check endpoints"""

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "ServeSense" in data["service"]

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_live_endpoint(self, client):
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_health_ready_endpoint(self, client, store):
        response = client.get("/health/ready")
        # May be 200 or 503 depending on free disk space
        assert response.status_code in [200, 503]


class TestTargetsEndpoint:

    def test_targets(self, client):
        response = client.get("/api/targets")
        assert response.status_code == 200
        data = response.json()
        assert data["target"] == {
            "elbow": 150.0, "knee": 140.0, "x_factor": 45.0,
            "contact_height": 220.0, "follow_through": 15.0
        }
        assert data["good_bands"]["elbow"] == {"low": 140, "high": 160}


class TestAnalyzeEndpoint:

    def test_invalid_type(self, client):
        files = {"file": ("notes.txt", b"not a video", "text/plain")}
        response = client.post("/api/analyze", files=files)
        assert response.status_code == 415
        assert response.json()["error"] == "INVALID_VIDEO_FORMAT"

    def test_no_file(self, client):
        response = client.post("/api/analyze")
        assert response.status_code == 422
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_analyze(self, client, mock_video_file, replay_pipeline, store):
        response = client.post("/api/analyze", files=mock_video_file)

        assert response.status_code == 200
        data = response.json()
        assert data["similarity"] == 100
        assert data["vectors_extracted"] == 20
        assert data["phase"] == "contact"
        assert data["drills"][0]["title"] == "Serve Consistency"
        assert "session_key" not in data
        assert store.list_index() == []

    def test_analyze_and_save(self, client, mock_video_file, replay_pipeline, store):
        response = client.post("/api/analyze", files=mock_video_file, data={"save": "true"})

        assert response.status_code == 200
        key = response.json()["session_key"]
        assert [entry["key"] for entry in store.list_index()] == [key]

    def test_upload_is_removed_after_analysis(self, client, mock_video_file, replay_pipeline, store):
        before = set(main.UPLOAD_DIR.iterdir())
        client.post("/api/analyze", files=mock_video_file)
        assert set(main.UPLOAD_DIR.iterdir()) == before

    def test_no_pose_detected(self, client, mock_video_file, store):
        from core.pipeline import ServeAnalysisPipeline
        from core.pose_source import ReplayPoseSource
        from core.video_source import ArrayFrameSource

        def build():
            return ServeAnalysisPipeline(pose_source=ReplayPoseSource([None] * 5))

        def frames(path):
            return ArrayFrameSource([np.zeros((48, 64, 3), dtype=np.uint8)] * 5)

        with patch.object(main, "build_pipeline", side_effect=build), \
                patch("core.pipeline.VideoFileSource", side_effect=frames):
            response = client.post("/api/analyze", files=mock_video_file)

        assert response.status_code == 422
        assert response.json()["error"] == "INSUFFICIENT_POSE_DATA"

    @pytest.mark.parametrize("poses,status", [(5, 200), (0, 422)])
    def test_pose_source_released_after_request(self, client, mock_video_file, store, poses, status):
        from unittest.mock import MagicMock
        from core.pipeline import ServeAnalysisPipeline
        from core.pose_source import ReplayPoseSource
        from core.video_source import ArrayFrameSource
        from conftest import build_target_pose

        source = ReplayPoseSource([build_target_pose()] * poses + [None] * (5 - poses))
        source.close = MagicMock()

        def frames(path):
            return ArrayFrameSource([np.zeros((48, 64, 3), dtype=np.uint8)] * 5)

        with patch.object(main, "build_pipeline", return_value=ServeAnalysisPipeline(pose_source=source)), \
                patch("core.pipeline.VideoFileSource", side_effect=frames):
            response = client.post("/api/analyze", files=mock_video_file)

        assert response.status_code == status
        source.close.assert_called_once()

    def test_backend_resolved_at_startup(self):
        with patch.object(main, "POSE_BACKEND", "simulated"):
            with main.build_pipeline() as pipeline:
                assert pipeline.pose_source.name == "simulated"


class TestSessionManagement:

    def _save(self, client, mock_video_file):
        response = client.post("/api/analyze", files=mock_video_file, data={"save": "true"})
        return response.json()["session_key"]

    def test_list_empty(self, client, store):
        response = client.get("/api/sessions")
        assert response.status_code == 200
        assert response.json() == {"sessions": []}

    def test_get_session(self, client, mock_video_file, replay_pipeline, store):
        key = self._save(client, mock_video_file)

        response = client.get(f"/api/sessions/{key}")
        assert response.status_code == 200
        data = response.json()
        assert data["final_similarity"] == 100
        assert len(data["history_snapshot"]) == 20
        assert data["analysis_type"] == "tennis_serve"

    def test_delete_session(self, client, mock_video_file, replay_pipeline, store):
        key = self._save(client, mock_video_file)

        response = client.delete(f"/api/sessions/{key}")
        assert response.status_code == 200
        assert response.json()["deleted"] == key
        assert client.get("/api/sessions").json() == {"sessions": []}

    def test_missing_session(self, client, store):
        response = client.get("/api/sessions/serve-session-1")
        assert response.status_code == 404
        data = response.json()
        assert data["error"] == "SESSION_NOT_FOUND"
        assert data["path"] == "/api/sessions/serve-session-1"

    def test_delete_missing_session(self, client, store):
        response = client.delete("/api/sessions/serve-session-1")
        assert response.status_code == 404


class TestMiddleware:

    def test_correlation_id_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "abc123"})
        assert response.headers["X-Correlation-ID"] == "abc123"
        assert "X-Process-Time-Ms" in response.headers

    def test_unknown_route(self, client):
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert response.json()["error"] == "HTTP_ERROR"

    def test_cors_preflight(self, client):
        response = client.options(
            "/api/analyze",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST"
            }
        )
        assert response.status_code in [200, 204, 400, 405]
