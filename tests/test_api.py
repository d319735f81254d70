"""HTTP layer tests using FastAPI's TestClient."""
import time

import pytest
from fastapi.testclient import TestClient

from bgremover.api import create_app
from bgremover.catalog import ACCELERATED_MODEL_ID, DEFAULT_MODEL_ID
from bgremover.session import BackgroundRemovalSession


@pytest.fixture
def make_client(engine, settings, profile_factory):
    def factory(**profile_kwargs):
        profile = profile_factory(**profile_kwargs)
        app = create_app(
            lambda: BackgroundRemovalSession(engine, settings=settings, detector=lambda: profile)
        )
        return TestClient(app)

    return factory


def wait_for_status(client: TestClient, job_id: int, status: str, timeout: float = 2.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        jobs = {job["id"]: job for job in client.get("/images").json()}
        if jobs.get(job_id, {}).get("status") == status:
            return jobs[job_id]
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} never reached {status}")


class TestSessionEndpoints:
    def test_health(self, make_client):
        with make_client() as client:
            assert client.get("/health").json() == {"status": "ok"}

    def test_index_returns_state(self, make_client):
        with make_client(webgpu=True) as client:
            body = client.get("/").json()
        assert body["status"] == "ready"
        assert body["activeModelId"] == DEFAULT_MODEL_ID
        assert [m["id"] for m in body["selectableModels"]] == [DEFAULT_MODEL_ID, ACCELERATED_MODEL_ID]

    def test_mobile_safari_request_is_redirected(self, make_client, user_agents, settings):
        with make_client() as client:
            resp = client.get(
                "/",
                headers={"user-agent": user_agents["safari_iphone"]},
                follow_redirects=False,
            )
        assert resp.status_code == 307
        assert resp.headers["location"] == settings.redirect_url

    def test_redirected_session(self, make_client, settings, engine):
        with make_client(redirect=True) as client:
            resp = client.get("/", follow_redirects=False)
            assert resp.status_code == 307
            assert client.post("/images", files=[("files", ("a.png", b"x"))]).status_code == 503
        assert engine.calls == []


class TestModelEndpoints:
    def test_switch_model(self, make_client):
        with make_client(webgpu=True) as client:
            resp = client.post("/model", json={"modelId": ACCELERATED_MODEL_ID})
        assert resp.status_code == 200
        assert resp.json()["switched"] is True
        assert resp.json()["activeModelId"] == ACCELERATED_MODEL_ID

    def test_soft_fallback(self, make_client):
        with make_client(webgpu=False) as client:
            resp = client.post("/model", json={"modelId": ACCELERATED_MODEL_ID})
        assert resp.status_code == 200
        assert resp.json()["switched"] is False
        assert resp.json()["activeModelId"] == DEFAULT_MODEL_ID

    def test_unknown_model(self, make_client):
        with make_client() as client:
            assert client.post("/model", json={"modelId": "acme/none"}).status_code == 400

    def test_hard_failure_then_recover(self, make_client, engine):
        with make_client(webgpu=True) as client:
            assert client.post("/model", json={"modelId": ACCELERATED_MODEL_ID}).status_code == 200
            engine.init_results[DEFAULT_MODEL_ID] = RuntimeError("context lost")

            resp = client.post("/model", json={"modelId": DEFAULT_MODEL_ID})
            assert resp.status_code == 503
            assert resp.json()["detail"]["recovery"] == "revert"
            assert resp.json()["detail"]["outcome"] == "hard"

            blocked = client.post("/images", files=[("files", ("a.png", b"x"))])
            assert blocked.status_code == 503

            engine.init_results[DEFAULT_MODEL_ID] = True
            recovered = client.post("/recover")
            assert recovered.status_code == 200
            assert recovered.json()["error"] is None
            assert recovered.json()["activeModelId"] == DEFAULT_MODEL_ID

    def test_rejected_switch_keeps_startup_error(self, make_client, engine):
        engine.init_results[DEFAULT_MODEL_ID] = False
        with make_client(webgpu=True) as client:
            resp = client.post("/model", json={"modelId": ACCELERATED_MODEL_ID})
            assert resp.status_code == 409

            state = client.get("/session").json()
            assert state["error"]["kind"] == "initialization"
            assert state["error"]["outcome"] == "fatal"
            blocked = client.post("/images", files=[("files", ("a.png", b"x"))])
            assert blocked.status_code == 503


class TestImageEndpoints:
    def test_upload_process_download_delete(self, make_client):
        with make_client() as client:
            resp = client.post(
                "/images",
                files=[("files", ("a.png", b"aaa")), ("files", ("b.png", b"bbb"))],
            )
            assert resp.status_code == 200
            created = resp.json()
            assert [job["status"] for job in created] == ["queued", "queued"]

            for job in created:
                wait_for_status(client, job["id"], "done")

            first_id = created[0]["id"]
            png = client.get(f"/images/{first_id}/processed")
            assert png.status_code == 200
            assert png.headers["content-type"] == "image/png"
            assert png.content == b"cutout:aaa@" + DEFAULT_MODEL_ID.encode()

            assert client.delete(f"/images/{first_id}").status_code == 204
            assert client.delete(f"/images/{first_id}").status_code == 204
            assert [job["id"] for job in client.get("/images").json()] == [created[1]["id"]]
            assert client.get(f"/images/{first_id}/processed").status_code == 404

    def test_failed_job_has_no_output(self, make_client, engine):
        engine.fail_payloads.add(b"bad")
        with make_client() as client:
            job = client.post("/images", files=[("files", ("bad.png", b"bad"))]).json()[0]
            body = wait_for_status(client, job["id"], "failed")
            assert body["hasProcessedFile"] is False
            assert client.get(f"/images/{job['id']}/processed").status_code == 404
            assert client.get("/session").json()["error"] is None

    def test_empty_upload_rejected(self, make_client):
        with make_client() as client:
            resp = client.post("/images", files=[("files", ("empty.png", b""))])
        assert resp.status_code == 400

    def test_unknown_sample(self, make_client):
        with make_client() as client:
            assert client.post("/samples/42").status_code == 404
