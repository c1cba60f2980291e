"""API tests for /v1/sessions."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

from deskgate.drivers import ContainerStatus
from tests.harness import ApiHarness


def parse_sse(body: str) -> list[tuple[str, dict]]:
    frames = []
    for block in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines())
        frames.append((lines["event"], json.loads(lines["data"])))
    return frames


class TestAuth:
    def test_missing_cookie_is_401(self, api: ApiHarness):
        response = api.client.post("/v1/sessions")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_tampered_cookie_is_401(self, api: ApiHarness):
        headers = api.login("alice")
        headers["Cookie"] = headers["Cookie"][:-2] + "xx"

        assert api.client.get("/v1/sessions", headers=headers).status_code == 401


class TestLifecycle:
    def test_create_list_get_delete(self, api: ApiHarness):
        alice = api.login("alice", "Alice")

        created = api.create_session(alice)
        session_id = created["session_id"]

        assert created["host_port"] == 6080
        assert created["aux_port"] == 6001
        assert created["state"] == "running"
        assert created["url"].startswith(f"http://desk.test/proxy/{session_id}/vnc.html")

        listed = api.client.get("/v1/sessions", headers=alice).json()
        assert [s["session_id"] for s in listed["items"]] == [session_id]

        assert api.client.get(f"/v1/sessions/{session_id}", headers=alice).status_code == 200

        assert api.client.delete(f"/v1/sessions/{session_id}", headers=alice).status_code == 204
        assert api.client.delete(f"/v1/sessions/{session_id}", headers=alice).status_code == 404
        assert api.client.get("/v1/sessions", headers=alice).json()["items"] == []

    def test_other_users_session_is_invisible(self, api: ApiHarness):
        alice = api.login("alice")
        bob = api.login("bob")
        session_id = api.create_session(alice)["session_id"]

        assert api.client.get(f"/v1/sessions/{session_id}", headers=bob).status_code == 404
        assert api.client.delete(f"/v1/sessions/{session_id}", headers=bob).status_code == 404
        assert api.client.get(f"/v1/sessions/{session_id}", headers=alice).status_code == 200

    def test_get_purges_session_whose_container_died(self, api: ApiHarness):
        alice = api.login("alice")
        created = api.create_session(alice)
        api.driver.set_inspect_override(created["container_id"], ContainerStatus.EXITED)

        assert api.client.get(f"/v1/sessions/{created['session_id']}", headers=alice).status_code == 404
        assert api.client.get("/v1/sessions", headers=alice).json()["items"] == []

    def test_delete_all(self, api: ApiHarness):
        alice = api.login("alice")
        api.create_session(alice)
        api.create_session(alice)

        response = api.client.delete("/v1/sessions", headers=alice)

        assert response.json() == {"destroyed": 2}

    def test_provisioning_failure_is_500(self, api: ApiHarness):
        api.driver.start = AsyncMock(side_effect=RuntimeError("boom"))

        response = api.client.post("/v1/sessions", headers=api.login("alice"))

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "provisioning_failed"
        assert error["message"] == "Failed to create session: boom"
        assert api.driver.container_ids() == []


class TestStream:
    def test_progress_events_end_with_session(self, api: ApiHarness):
        response = api.client.post("/v1/sessions/stream", headers=api.login("alice"))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")

        frames = parse_sse(response.text)
        assert [event for event, _ in frames] == [
            "init",
            "container",
            "starting",
            "vnc-wait",
            "xterm",
            "complete",
        ]
        assert frames[-1][1]["host_port"] == 6080

    def test_failure_ends_with_error_event(self, api: ApiHarness):
        api.driver.start = AsyncMock(side_effect=RuntimeError("boom"))

        response = api.client.post("/v1/sessions/stream", headers=api.login("alice"))
        frames = parse_sse(response.text)

        assert frames[-1] == ("error", {"error": "Failed to create session: boom"})

    def test_requires_login(self, api: ApiHarness):
        assert api.client.post("/v1/sessions/stream").status_code == 401


def test_health(api: ApiHarness):
    assert api.client.get("/health").json() == {"status": "healthy"}
