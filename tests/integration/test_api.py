"""End-to-end tests of the HTTP surface over the in-memory store and a scripted LLM."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import TEAM_ID, OUTSIDER_TOKEN, FakeLLM, seed_members
from teamflow.models import Task, Subtask, DeadlinePolicy

TASKS_JSON = json.dumps([
    {"title": "Create posts table", "description": "Schema for blog posts", "estimated_days": 2},
    {"title": "Build comment form", "description": "Form component for comments", "estimated_days": 1},
])


def _data_events(body):
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


def _named_events(body):
    events = []
    for frame in body.strip().split("\n\n"):
        lines = dict(line.split(": ", 1) for line in frame.splitlines())
        events.append((lines["event"], json.loads(lines["data"])))
    return events


@pytest.fixture(autouse=True)
def no_create_delay(monkeypatch):
    monkeypatch.setattr("teamflow.config.TASK_CREATE_DELAY", 0)


@pytest.fixture
def outsider():
    return {"Authorization": f"Bearer {OUTSIDER_TOKEN}"}


@pytest.fixture
def task(store):
    return store.insert_task(Task(team_id=TEAM_ID, title="Build editor", description="Markdown editor"))


class TestAccessControl:

    def test_missing_header(self, client):
        response = client.post("/api/allocate-tasks", json={"team_id": TEAM_ID})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_unknown_token(self, client):
        response = client.get("/api/team-members", params={"team_id": TEAM_ID},
                              headers={"Authorization": "Bearer forged"})
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid token"}

    def test_non_member(self, client, outsider):
        response = client.post("/api/allocate-tasks", json={"team_id": TEAM_ID}, headers=outsider)
        assert response.status_code == 403
        assert response.json() == {"error": "Access denied"}

    def test_missing_field(self, client, auth):
        response = client.post("/api/generate-tasks", json={"team_id": TEAM_ID}, headers=auth)
        assert response.status_code == 400
        assert "goal" in response.json()["error"]

    def test_blank_goal(self, client, auth):
        response = client.post("/api/generate-tasks", json={"team_id": TEAM_ID, "goal": "  "}, headers=auth)
        assert response.status_code == 400

    def test_unknown_team(self, client, auth):
        response = client.post("/api/generate-tasks", json={"team_id": "ghost", "goal": "x"}, headers=auth)
        assert response.status_code == 404
        assert response.json() == {"error": "Team not found"}

    def test_chat_requires_auth(self, client):
        assert client.post("/api/ai-stack-chat", json={"message": "hi"}).status_code == 401

    def test_health_is_open(self, client):
        assert client.get("/health").json()["status"] == "ok"


class TestGenerateTasks:

    def test_stream(self, client, auth, store, llm):
        llm.stream_text = TASKS_JSON
        llm.tag_text = '["Database"]'
        response = client.post("/api/generate-tasks", json={"team_id": TEAM_ID, "goal": "Build a blog"},
                               headers=auth)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache, no-transform"
        events = _data_events(response.text)
        assert [e["status"] for e in events] == [
            "generating", "parsing", "creating",
            "creating_task", "task_created", "creating_task", "task_created",
            "complete",
        ]
        assert [t["title"] for t in events[-1]["tasks"]] == ["Create posts table", "Build comment form"]
        assert len(store.list_tasks(TEAM_ID)) == 2
        assert all(t["tags"] == ["Database"] for t in store.list_tasks(TEAM_ID))

    def test_stream_parse_error(self, client, auth, store, llm):
        llm.stream_text = "no tasks today"
        response = client.post("/api/generate-tasks", json={"team_id": TEAM_ID, "goal": "Build a blog"},
                               headers=auth)
        assert response.status_code == 200
        assert _data_events(response.text)[-1]["status"] == "error"
        assert store.list_tasks(TEAM_ID) == []


class TestSubtaskGeneration:

    def test_generate_subtasks(self, client, auth, store, llm, task):
        seed_members(store, TEAM_ID, 1)
        llm.generate_text = json.dumps([{"title": "Pick a library"}, {"title": "Render preview"}])
        response = client.post("/api/generate-subtasks", json={"task_id": task["id"]}, headers=auth)

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Generated 2 subtasks and assigned them to team members"
        assert [s["assigned_to"] for s in body["subtasks"]] == ["owner", "user-0"]
        assert all(s["deadline"] for s in body["subtasks"])

    def test_unparseable_is_bad_gateway(self, client, auth, llm, task):
        llm.generate_text = "sorry"
        response = client.post("/api/generate-subtasks", json={"task_id": task["id"]}, headers=auth)
        assert response.status_code == 502
        assert response.json() == {"error": "Failed to parse AI response"}

    def test_null_description_is_accepted(self, client, auth, llm, task):
        llm.generate_text = json.dumps([{"title": "Pick a library", "description": None}])
        response = client.post("/api/generate-subtasks", json={"task_id": task["id"]}, headers=auth)
        assert response.status_code == 200
        assert [s["title"] for s in response.json()["subtasks"]] == ["Pick a library"]

    def test_configured_policy_applies_without_override(self, client, auth, llm, task, monkeypatch):
        monkeypatch.setattr("teamflow.config.SUBTASK_DEADLINE_POLICY", DeadlinePolicy.RANDOM)
        llm.generate_text = json.dumps([{"title": "Pick a library"}, {"title": "Render preview"}])
        response = client.post("/api/generate-subtasks", json={"task_id": task["id"]}, headers=auth)
        now = datetime.now(timezone.utc)
        for sub in response.json()["subtasks"]:
            # sequential would put these one and two days out
            assert datetime.fromisoformat(sub["deadline"].replace("Z", "+00:00")) - now > timedelta(days=2)

    def test_unknown_task(self, client, auth):
        response = client.post("/api/generate-subtasks", json={"task_id": "ghost"}, headers=auth)
        assert response.status_code == 404


class TestAllocation:

    def test_allocate_tasks(self, client, auth, store):
        seed_members(store, TEAM_ID, 2)
        for i in range(4):
            store.insert_task(Task(team_id=TEAM_ID, title=f"Task {i}", position=i))
        response = client.post("/api/allocate-tasks", json={"team_id": TEAM_ID}, headers=auth)

        body = response.json()
        assert body["message"] == "Successfully allocated 4 tasks"
        assert body["errors"] == 0
        assert [t["assigned_to"] for t in body["allocatedTasks"]] == ["owner", "user-0", "user-1", "owner"]
        assert body["allocatedTasks"][1]["assigned_user"]["email"] == "user0@example.com"

    def test_nothing_to_allocate(self, client, auth):
        response = client.post("/api/allocate-tasks", json={"team_id": TEAM_ID}, headers=auth)
        assert response.json() == {"message": "No unassigned tasks found"}

    def test_assign_subtasks(self, client, auth, store, task):
        seed_members(store, TEAM_ID, 1)
        for i in range(5):
            store.insert_subtask(Subtask(task_id=task["id"], title=f"Sub {i}", position=i))
        response = client.post("/api/assign-subtasks", json={"task_id": task["id"], "team_id": TEAM_ID},
                               headers=auth)
        assigned = [s["assigned_to"] for s in response.json()["allocatedSubtasks"]]
        assert sorted(assigned.count(u) for u in set(assigned)) == [2, 3]

    def test_assign_subtasks_of_foreign_task(self, client, auth, store):
        store.add_team("other")
        foreign = store.insert_task(Task(team_id="other", title="Elsewhere"))
        response = client.post("/api/assign-subtasks", json={"task_id": foreign["id"], "team_id": TEAM_ID},
                               headers=auth)
        assert response.status_code == 404


class TestTagging:

    def test_auto_tag_single_task(self, client, auth, store, llm, task):
        llm.tag_text = '["Frontend", "Nonsense"]'
        response = client.post("/api/auto-tag-tasks", headers=auth, json={
            "task_id": task["id"], "title": task["title"], "description": task["description"],
        })
        body = response.json()
        assert body["success"] is True
        assert body["tags"] == ["Frontend"]
        assert store.get_task(task["id"])["tags"] == ["Frontend"]

    def test_auto_tag_store_failure(self, client, auth, store, task):
        store.fail_ids.add(task["id"])
        response = client.post("/api/auto-tag-tasks", headers=auth,
                               json={"task_id": task["id"], "title": task["title"]})
        assert response.status_code == 500
        assert response.json() == {"error": "Failed to update task tags"}

    def test_retag_team(self, client, auth, store, llm):
        for i in range(3):
            store.insert_task(Task(team_id=TEAM_ID, title=f"Task {i}", position=i))
        llm.tag_text = '["Testing"]'
        response = client.put("/api/auto-tag-tasks", json={"team_id": TEAM_ID}, headers=auth)
        body = response.json()
        assert (body["processed"], body["successful"], body["errors"]) == (3, 3, 0)
        assert all(t["tags"] == ["Testing"] for t in body["updated_tasks"])


class TestStackChat:

    def test_events(self, client, auth):
        llm = FakeLLM(stream_text=(
            "Go with Supabase auth.\n"
            "SUGGESTIONS: [{\"category\": \"backend\", \"field\": \"authentication\", \"value\": \"supabase\"}]"
        ))
        client.app.state.llm = llm
        response = client.post("/api/ai-stack-chat", headers=auth, json={
            "message": "How should we do auth?",
            "conversation": [{"role": "user", "content": "We build a blog"}],
            "currentStack": {"frontend": {"framework": "nextjs"}},
        })

        assert response.headers["content-type"].startswith("text/event-stream")
        events = _named_events(response.text)
        assert {name for name, _ in events[:-2]} == {"chunk"}
        assert events[-2] == ("suggestions", {"suggestions": [
            {"category": "backend", "field": "authentication", "value": "supabase"},
        ]})
        assert events[-1] == ("done", {"final": "Go with Supabase auth."})
        assert "User: We build a blog" in llm.prompts[0]
        assert '"framework": "nextjs"' in llm.prompts[0]

    def test_stream_error(self, client, auth):
        client.app.state.llm = FakeLLM(stream_text="x" * 40, stream_error=True)
        response = client.post("/api/ai-stack-chat", headers=auth, json={"message": "hi"})
        events = _named_events(response.text)
        assert events[-1] == ("error", {"message": "Streaming error"})


class TestTeamViews:

    def test_team_members(self, client, auth, store):
        seed_members(store, TEAM_ID, 1)
        response = client.get("/api/team-members", params={"team_id": TEAM_ID}, headers=auth)
        members = response.json()["members"]
        assert members[0] == {
            "id": "owner", "email": "owner@example.com", "name": "Olive Owner", "field": "Backend",
            "role": "owner", "joined_at": "2024-12-31T00:00:00+00:00",
        }
        assert members[1]["field"] == "Not specified"

    def test_team_subtasks(self, client, auth, store, task):
        store.insert_subtask(Subtask(task_id=task["id"], title="Dated", deadline="2025-05-01T00:00:00+00:00",
                                     assigned_to="owner"))
        store.insert_subtask(Subtask(task_id=task["id"], title="Undated"))
        response = client.get("/api/team-subtasks", params={"team_id": TEAM_ID}, headers=auth)
        rows = response.json()["subtasks"]
        assert [r["title"] for r in rows] == ["Dated"]
        assert rows[0]["tasks"]["title"] == "Build editor"
        assert rows[0]["assigned_user"]["email"] == "owner@example.com"


class TestSubtaskCrud:

    def test_create_list_update_delete(self, client, auth, task):
        created = client.post("/api/subtasks", headers=auth,
                              json={"task_id": task["id"], "title": "Write tests", "position": 1})
        assert created.status_code == 201
        subtask = created.json()["subtask"]

        listed = client.get("/api/subtasks", params={"task_id": task["id"]}, headers=auth).json()["subtasks"]
        assert [s["id"] for s in listed] == [subtask["id"]]

        updated = client.put("/api/subtasks", headers=auth, json={"id": subtask["id"], "is_completed": True})
        assert updated.json()["subtask"]["is_completed"] is True
        assert updated.json()["subtask"]["title"] == "Write tests"

        deleted = client.delete("/api/subtasks", params={"id": subtask["id"]}, headers=auth)
        assert deleted.json() == {"success": True}
        assert client.delete("/api/subtasks", params={"id": subtask["id"]}, headers=auth).status_code == 404

    def test_outsider_cannot_edit(self, client, outsider, task):
        response = client.post("/api/subtasks", headers=outsider, json={"task_id": task["id"], "title": "x"})
        assert response.status_code == 403


class TestTaskStatus:

    def test_completion_requires_subtasks_done(self, client, auth, store, task):
        sub = store.insert_subtask(Subtask(task_id=task["id"], title="Open"))
        url = f"/api/tasks/{task['id']}/status"

        blocked = client.patch(url, json={"status": "completed"}, headers=auth)
        assert blocked.status_code == 400
        assert blocked.json() == {"error": "Cannot move to completed: not all subtasks are completed"}

        assert client.patch(url, json={"status": "in-progress", "position": 3}, headers=auth).json()["task"][
            "position"] == 3

        store.update_subtask(sub["id"], {"is_completed": True})
        done = client.patch(url, json={"status": "completed"}, headers=auth)
        assert done.status_code == 200
        assert done.json()["task"]["status"] == "completed"

    def test_task_without_subtasks_can_complete(self, client, auth, task):
        response = client.patch(f"/api/tasks/{task['id']}/status", json={"status": "completed"}, headers=auth)
        assert response.status_code == 200

    def test_unknown_status(self, client, auth, task):
        response = client.patch(f"/api/tasks/{task['id']}/status", json={"status": "archived"}, headers=auth)
        assert response.status_code == 400
