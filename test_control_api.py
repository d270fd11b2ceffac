"""
Control panel API tests.
The agent runs on its runner thread exactly as in production, but attached to
a scripted page instead of a launched browser.
"""
import pytest
from fastapi.testclient import TestClient

from agent import PollAgent
from conftest import POLL_URL, FakeHttp, FakePage, option_elements
from main import AgentRunner, app, get_runner
from observer import DISCONNECT_JS, OBSERVE_JS, ROOT_REPLACED_JS
from settings import AgentSettings


class OfflineAgent(PollAgent):
    async def launch(self):
        _, elements = option_elements(4)
        page = FakePage(
            url=POLL_URL,
            elements=elements,
            evaluate_results={OBSERVE_JS: True, ROOT_REPLACED_JS: False, DISCONNECT_JS: None},
        )
        await self.attach(page)


@pytest.fixture
def runner(tmp_path):
    settings = AgentSettings(config_store_path=str(tmp_path / "agent_config.json"))
    runner = AgentRunner(lambda: OfflineAgent(settings=settings, http=FakeHttp()))
    assert runner.start(timeout=10)
    yield runner
    runner.stop()


@pytest.fixture
def client(runner):
    app.dependency_overrides[get_runner] = lambda: runner
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_status(client):
    response = client.get("/status")
    assert response.status_code == 200
    body = response.json()
    assert body["url"] == POLL_URL
    assert body["observing"] is False
    assert body["config"]["selected_model"] == "chatgpt"


def test_start_then_stop(client):
    started = client.post("/control/start")
    assert started.status_code == 200
    assert started.json()["observing"] is True
    assert started.json()["config"]["running"] is True

    stopped = client.post("/control/stop")
    assert stopped.status_code == 200
    assert stopped.json()["observing"] is False
    assert stopped.json()["config"]["running"] is False


def test_toggle_flag(client):
    response = client.post("/control/toggle/random")
    assert response.status_code == 200
    assert response.json()["config"]["random"] is True
    assert client.post("/control/toggle/random").json()["config"]["random"] is False


def test_toggle_notify_with_email(client):
    response = client.post("/control/toggle/notify", json={"email": "student@example.com"})
    assert response.status_code == 200
    assert response.json()["config"]["notify"] is True
    assert response.json()["config"]["email"] == "student@example.com"


def test_invalid_email_is_rejected(client):
    assert client.post("/control/toggle/notify", json={"email": "not-an-email"}).status_code == 422


def test_unknown_toggle_is_rejected(client):
    response = client.post("/control/toggle/turbo")
    assert response.status_code == 422
    assert "turbo" in response.json()["detail"]


def test_model_selection(client):
    response = client.post("/control/model", json={"model": "gemini-api"})
    assert response.status_code == 200
    assert response.json()["config"]["selected_model"] == "gemini-api"
    assert client.post("/control/model", json={"model": "bard"}).status_code == 422


def test_killed_agent_reports_unavailable(client, runner):
    runner.agent.killed = True
    assert client.get("/status").status_code == 503


def test_no_agent_running():
    app.dependency_overrides.clear()
    if hasattr(app.state, "runner"):
        del app.state.runner
    assert TestClient(app).get("/status").status_code == 503
