"""HTTP and WebSocket tests against the full aiohttp application."""

import pytest
from aiohttp.test_utils import TestClient, TestServer

from contest_scoreboard.scoreboard import ScoreboardSystem
from contest_scoreboard.web_handlers import ADMIN_HEADER

from .conftest import ADMIN_TOKEN, HALF_RIGHT, KEY_TEXT

ADMIN = {ADMIN_HEADER: ADMIN_TOKEN}


@pytest.fixture
async def system(config, tmp_path):
    system = ScoreboardSystem(config=config, db_path=str(tmp_path / "web.db"))
    await system.init_db()
    return system


@pytest.fixture
async def client(system):
    async with TestClient(TestServer(system.create_app())) as client:
        yield client


async def prepare(client, teams=("Alpha", "Beta")):
    resp = await client.post("/api/tasks", json={"name": "Essays"}, headers=ADMIN)
    assert resp.status == 201
    task_id = (await resp.json())["id"]
    resp = await client.put(f"/api/tasks/{task_id}/key", data=KEY_TEXT, headers=ADMIN)
    assert resp.status == 200
    team_ids = []
    for name in teams:
        resp = await client.post("/api/teams", json={"name": name})
        assert resp.status == 201
        team_ids.append((await resp.json())["id"])
    return task_id, team_ids


def submit_url(team_id, task_id):
    return f"/api/teams/{team_id}/tasks/{task_id}/submissions"


class TestScoreboardApi:

    @pytest.mark.asyncio
    async def test_empty_scoreboard(self, client):
        resp = await client.get("/api/scoreboard")
        assert resp.status == 200
        data = await resp.json()
        assert data["teams"] == []
        assert data["status"] == "Live"

    @pytest.mark.asyncio
    async def test_submit_and_rank(self, client):
        task_id, (alpha, beta) = await prepare(client)

        resp = await client.post(submit_url(alpha, task_id), data=HALF_RIGHT)
        assert resp.status == 200
        assert (await resp.json())["score"] == 50.0
        resp = await client.post(submit_url(beta, task_id), data=KEY_TEXT)
        assert (await resp.json())["best_score"] == 100.0

        data = await (await client.get("/api/scoreboard")).json()
        assert [t["name"] for t in data["teams"]] == ["Beta", "Alpha"]
        assert [t["rank"] for t in data["teams"]] == [1, 2]
        assert data["teams"][0]["submissions"][0]["is_best_score"] is True

        data = await (await client.get("/api/scoreboard?limit=1")).json()
        assert len(data["teams"]) == 1

    @pytest.mark.asyncio
    async def test_text_scoreboard(self, client):
        task_id, (alpha, _) = await prepare(client)
        await client.post(submit_url(alpha, task_id), data=KEY_TEXT)

        resp = await client.get("/api/scoreboard.txt")
        assert resp.status == 200
        text = await resp.text()
        assert "Alpha" in text
        assert "100.00 *" in text
        assert "(1 attempt)" in text

    @pytest.mark.asyncio
    async def test_stats(self, client):
        task_id, (alpha, _) = await prepare(client)
        await client.post(submit_url(alpha, task_id), data=KEY_TEXT)
        stats = await (await client.get("/api/stats")).json()
        assert stats["total_submissions"] == 1
        assert stats["highest_score"] == 100.0


class TestErrors:

    @pytest.mark.asyncio
    async def test_row_count_mismatch_message(self, client):
        task_id, (alpha, _) = await prepare(client)
        resp = await client.post(submit_url(alpha, task_id), data="1,alpha,5.0\n")
        assert resp.status == 400
        data = await resp.json()
        assert data["error"] == "RowCountMismatch"
        assert "1 data rows" in data["message"]
        assert "answer key has 4" in data["message"]

    @pytest.mark.asyncio
    async def test_closed_contest(self, client):
        task_id, (alpha, _) = await prepare(client)
        resp = await client.put("/api/contest/status", json={"status": "Finished"}, headers=ADMIN)
        assert (await resp.json())["status"] == "Finished"

        resp = await client.post(submit_url(alpha, task_id), data=KEY_TEXT)
        assert resp.status == 400
        assert (await resp.json())["error"] == "ContestNotLive"

    @pytest.mark.asyncio
    async def test_unknown_team_and_task(self, client):
        task_id, _ = await prepare(client)
        resp = await client.post(submit_url(99, task_id), data=KEY_TEXT)
        assert resp.status == 404
        resp = await client.post(submit_url(1, "T99"), data=KEY_TEXT)
        assert resp.status == 404
        resp = await client.post(submit_url("abc", task_id), data=KEY_TEXT)
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_admin_routes_need_token(self, client):
        resp = await client.post("/api/tasks", json={"name": "Sneaky"})
        assert resp.status == 403
        resp = await client.put(
            "/api/contest/status", json={"status": "Finished"}, headers={ADMIN_HEADER: "nope"}
        )
        assert resp.status == 403
        status = await (await client.get("/api/contest/status")).json()
        assert status["status"] == "Live"

    @pytest.mark.asyncio
    async def test_bad_status_value(self, client):
        resp = await client.put("/api/contest/status", json={"status": "Paused"}, headers=ADMIN)
        assert resp.status == 400

    @pytest.mark.asyncio
    async def test_bad_json(self, client):
        resp = await client.post("/api/teams", data="not json")
        assert resp.status == 400


class TestAdminApi:

    @pytest.mark.asyncio
    async def test_key_download(self, client):
        task_id, _ = await prepare(client)
        resp = await client.get(f"/api/tasks/{task_id}/key")
        assert resp.status == 403

        resp = await client.get(f"/api/tasks/{task_id}/key", headers=ADMIN)
        assert resp.status == 200
        assert await resp.text() == KEY_TEXT

        await client.patch(f"/api/tasks/{task_id}", json={"key_visibility": "public"}, headers=ADMIN)
        resp = await client.get(f"/api/tasks/{task_id}/key")
        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_delete_task(self, client):
        task_id, (alpha, _) = await prepare(client)
        await client.post(submit_url(alpha, task_id), data=KEY_TEXT)

        resp = await client.delete(f"/api/tasks/{task_id}", headers=ADMIN)
        assert resp.status == 204

        tasks = await (await client.get("/api/tasks")).json()
        assert tasks["tasks"] == []
        data = await (await client.get("/api/scoreboard")).json()
        assert all(t["total_score"] == 0.0 for t in data["teams"])

    @pytest.mark.asyncio
    async def test_rename_and_delete_team(self, client):
        _, (alpha, beta) = await prepare(client)
        resp = await client.patch(f"/api/teams/{alpha}", json={"name": "Omega"}, headers=ADMIN)
        assert (await resp.json())["name"] == "Omega"
        resp = await client.delete(f"/api/teams/{beta}", headers=ADMIN)
        assert resp.status == 204
        data = await (await client.get("/api/scoreboard")).json()
        assert [t["name"] for t in data["teams"]] == ["Omega"]

    @pytest.mark.asyncio
    async def test_master_key(self, client):
        task_id, (alpha, _) = await prepare(client)
        master = f"taskId,id,prediction\n{task_id},1,cat\n{task_id},2,dog\n"
        resp = await client.put("/api/keys", data=master, headers=ADMIN)
        assert (await resp.json())["tasks"] == [task_id]

        resp = await client.post(submit_url(alpha, task_id), data="id,prediction\n1,cat\n2,dog\n")
        assert (await resp.json())["score"] == 100.0

    @pytest.mark.asyncio
    async def test_reset(self, client):
        task_id, (alpha, _) = await prepare(client)
        await client.post(submit_url(alpha, task_id), data=KEY_TEXT)
        resp = await client.post("/api/contest/reset", headers=ADMIN)
        assert resp.status == 200
        data = await (await client.get("/api/scoreboard")).json()
        assert data["teams"] == []
        tasks = await (await client.get("/api/tasks")).json()
        assert tasks["tasks"][0]["key_uploaded"] is False


class TestWebSocket:

    @pytest.mark.asyncio
    async def test_live_feed(self, client):
        task_id, (alpha, _) = await prepare(client)

        async with client.ws_connect("/ws") as ws:
            initial = await ws.receive_json()
            assert initial["type"] == "scoreboard:update"
            assert len(initial["teams"]) == 2
            assert not any(
                s["recently_updated"] for t in initial["teams"] for s in t["submissions"]
            )

            await client.post(submit_url(alpha, task_id), data=KEY_TEXT)
            update = await ws.receive_json()
            leader = update["teams"][0]
            assert leader["id"] == alpha
            assert leader["submissions"][0]["recently_updated"] is True
            assert update["teams"][1]["submissions"][0]["recently_updated"] is False

            await ws.send_str("refresh")
            again = await ws.receive_json()
            assert not any(
                s["recently_updated"] for t in again["teams"] for s in t["submissions"]
            )

    @pytest.mark.asyncio
    async def test_status_change_pushed(self, client):
        await prepare(client)

        async with client.ws_connect("/ws") as ws:
            await ws.receive_json()
            await client.put("/api/contest/status", json={"status": "Finished"}, headers=ADMIN)
            update = await ws.receive_json()
            assert update["status"] == "Finished"
