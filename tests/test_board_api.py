from __future__ import annotations

import pytest
from httpx import AsyncClient

from taskboard.activity import append_comment
from taskboard.db import Database
from taskboard.errors import Conflict
from taskboard.ordering.scope import ScopeIndex

from conftest import make_user


def _lose_claims(monkeypatch: pytest.MonkeyPatch, times: int) -> list[str]:
  """Make the next `times` scope-version claims lose to a concurrent writer."""
  real_claim = ScopeIndex._claim
  lost: list[str] = []

  async def _claim(self, scope_id: str, version: int, *, item_id: str | None = None) -> None:
    if len(lost) < times:
      lost.append(scope_id)
      raise Conflict("order changed concurrently", scope_id=scope_id, item_id=item_id)
    await real_claim(self, scope_id, version, item_id=item_id)

  monkeypatch.setattr(ScopeIndex, "_claim", _claim)
  return lost


async def _setup(client: AsyncClient, database: Database) -> tuple[dict, dict, list[dict]]:
  _, h = await make_user(database, "owner@example.com")
  p = (await client.post("/projects", json={"name": "Board"}, headers=h)).json()
  cols = (await client.get(f"/projects/{p['id']}/columns", headers=h)).json()
  return h, p, cols


async def _task(client: AsyncClient, h: dict, project_id: str, column_id: str, title: str, **extra) -> dict:
  res = await client.post(f"/projects/{project_id}/tasks", json={"columnId": column_id, "title": title, **extra}, headers=h)
  assert res.status_code == 200, res.text
  return res.json()


async def _column_titles(client: AsyncClient, h: dict, project_id: str) -> dict[str, list[str]]:
  board = (await client.get(f"/projects/{project_id}/board", headers=h)).json()
  return {c["name"]: [t["title"] for t in c["tasks"]] for c in board["columns"]}


@pytest.mark.anyio
async def test_tasks_append_and_insert_by_position(client: AsyncClient, database: Database) -> None:
  h, p, cols = await _setup(client, database)
  todo = cols[0]["id"]

  a = await _task(client, h, p["id"], todo, "A")
  b = await _task(client, h, p["id"], todo, "B")
  c = await _task(client, h, p["id"], todo, "C", position=1)
  first = await _task(client, h, p["id"], todo, "First", position=0)

  assert b["orderKey"] > a["orderKey"]
  assert a["orderKey"] < c["orderKey"] < b["orderKey"]
  assert first["orderKey"] < a["orderKey"]
  assert (await _column_titles(client, h, p["id"]))["To Do"] == ["First", "A", "C", "B"]


@pytest.mark.anyio
async def test_task_in_foreign_column_is_rejected(client: AsyncClient, database: Database) -> None:
  h, p, _ = await _setup(client, database)
  other = (await client.post("/projects", json={"name": "Other"}, headers=h)).json()
  other_col = (await client.get(f"/projects/{other['id']}/columns", headers=h)).json()[0]

  res = await client.post(f"/projects/{p['id']}/tasks", json={"columnId": other_col["id"], "title": "x"}, headers=h)
  assert res.status_code == 404

  bad_position = await client.post(f"/projects/{p['id']}/tasks", json={"columnId": other_col["id"], "title": "x", "position": -1}, headers=h)
  assert bad_position.status_code == 422


@pytest.mark.anyio
async def test_move_task_across_columns(client: AsyncClient, database: Database) -> None:
  h, p, cols = await _setup(client, database)
  todo, doing = cols[0]["id"], cols[1]["id"]
  t = await _task(client, h, p["id"], todo, "T")
  await _task(client, h, p["id"], todo, "U")
  await _task(client, h, p["id"], todo, "V")
  await _task(client, h, p["id"], doing, "X")
  await _task(client, h, p["id"], doing, "Y")

  res = await client.post(f"/tasks/{t['id']}/move", json={"columnId": doing, "position": "end", "version": t["version"]}, headers=h)
  assert res.status_code == 200, res.text
  body = res.json()
  assert (body["fromScopeId"], body["toScopeId"], body["index"], body["noop"]) == (todo, doing, 2, False)
  assert body["task"]["columnId"] == doing
  assert body["task"]["version"] == t["version"] + 1

  titles = await _column_titles(client, h, p["id"])
  assert titles["To Do"] == ["U", "V"]
  assert titles["In Progress"] == ["X", "Y", "T"]

  activity = (await client.get(f"/tasks/{t['id']}/activity", headers=h)).json()
  assert [a["action"] for a in activity] == ["created", "moved"]
  assert activity[1]["oldValue"] == {"columnId": todo}


@pytest.mark.anyio
async def test_noop_move_and_stale_version(client: AsyncClient, database: Database) -> None:
  h, p, cols = await _setup(client, database)
  todo = cols[0]["id"]
  await _task(client, h, p["id"], todo, "A")
  b = await _task(client, h, p["id"], todo, "B")

  noop = await client.post(f"/tasks/{b['id']}/move", json={"position": 1}, headers=h)
  assert noop.status_code == 200
  assert noop.json()["noop"] is True
  assert noop.json()["task"]["orderKey"] == b["orderKey"]
  assert noop.json()["task"]["version"] == b["version"]

  stale = await client.post(f"/tasks/{b['id']}/move", json={"position": 0, "version": b["version"] + 5}, headers=h)
  assert stale.status_code == 409
  assert stale.json()["detail"]["code"] == "conflict"
  assert stale.json()["detail"]["itemId"] == b["id"]
  assert (await _column_titles(client, h, p["id"]))["To Do"] == ["A", "B"]

  missing = await client.post(f"/tasks/{b['id']}/move", json={"columnId": "nope"}, headers=h)
  assert missing.status_code == 404


@pytest.mark.anyio
async def test_update_task_records_field_changes(client: AsyncClient, database: Database) -> None:
  h, p, cols = await _setup(client, database)
  t = await _task(client, h, p["id"], cols[0]["id"], "Draft", labels=["a", " a ", "b"])
  assert t["labels"] == ["a", "b"]

  res = await client.patch(
    f"/tasks/{t['id']}",
    json={"version": t["version"], "title": "Final", "priority": "urgent", "dueDate": "2026-05-01"},
    headers=h,
  )
  assert res.status_code == 200, res.text
  updated = res.json()
  assert (updated["title"], updated["priority"]) == ("Final", "urgent")
  assert updated["version"] == t["version"] + 1
  assert updated["orderKey"] == t["orderKey"]

  stale = await client.patch(f"/tasks/{t['id']}", json={"version": t["version"], "title": "Lost"}, headers=h)
  assert stale.status_code == 409

  detail = (await client.get(f"/tasks/{t['id']}", headers=h)).json()
  changes = [(a["action"], a["field"]) for a in detail["activity"]]
  assert changes == [("created", None), ("updated", "title"), ("updated", "priority"), ("updated", "dueDate")]
  assert detail["activity"][1]["oldValue"] == "Draft"
  assert detail["activity"][1]["newValue"] == "Final"


@pytest.mark.anyio
async def test_assignees_must_be_members(client: AsyncClient, database: Database) -> None:
  h, p, cols = await _setup(client, database)
  owner_id = p["ownerId"]
  stranger_id, _ = await make_user(database, "stranger@example.com")

  ok = await _task(client, h, p["id"], cols[0]["id"], "Mine", assignees=[owner_id])
  assert ok["assignees"] == [owner_id]
  bad = await client.post(f"/projects/{p['id']}/tasks", json={"columnId": cols[0]["id"], "title": "x", "assignees": [stranger_id]}, headers=h)
  assert bad.status_code == 400


@pytest.mark.anyio
async def test_comments_append_and_remove(client: AsyncClient, database: Database) -> None:
  h, p, cols = await _setup(client, database)
  t = await _task(client, h, p["id"], cols[0]["id"], "Discuss")

  c1 = (await client.post(f"/tasks/{t['id']}/comments", json={"body": "first"}, headers=h)).json()
  c2 = (await client.post(f"/tasks/{t['id']}/comments", json={"body": "second"}, headers=h)).json()
  listed = (await client.get(f"/tasks/{t['id']}/comments", headers=h)).json()
  assert [c["body"] for c in listed] == ["first", "second"]

  assert (await client.delete(f"/tasks/{t['id']}/comments/{c1['id']}", headers=h)).status_code == 200
  assert (await client.delete(f"/tasks/{t['id']}/comments/{c1['id']}", headers=h)).status_code == 404
  detail = (await client.get(f"/tasks/{t['id']}", headers=h)).json()
  assert [c["id"] for c in detail["comments"]] == [c2["id"]]
  assert [a["action"] for a in detail["activity"]] == ["created", "commented", "commented", "deleted_comment"]

  # Comments never change the task's place on the board.
  assert detail["orderKey"] == t["orderKey"]
  assert detail["version"] == t["version"]


@pytest.mark.anyio
async def test_delete_task_leaves_siblings_alone(client: AsyncClient, database: Database) -> None:
  h, p, cols = await _setup(client, database)
  todo = cols[0]["id"]
  a = await _task(client, h, p["id"], todo, "A")
  b = await _task(client, h, p["id"], todo, "B")
  c = await _task(client, h, p["id"], todo, "C")
  await client.post(f"/tasks/{b['id']}/comments", json={"body": "bye"}, headers=h)

  assert (await client.delete(f"/tasks/{b['id']}", headers=h)).status_code == 200
  tasks = (await client.get(f"/projects/{p['id']}/tasks", headers=h)).json()
  assert [(x["id"], x["orderKey"]) for x in tasks] == [(a["id"], a["orderKey"]), (c["id"], c["orderKey"])]
  assert (await client.get(f"/tasks/{b['id']}", headers=h)).status_code == 404


@pytest.mark.anyio
async def test_column_create_rename_move_and_delete(client: AsyncClient, database: Database) -> None:
  h, p, cols = await _setup(client, database)

  blocked = await client.post(f"/projects/{p['id']}/columns", json={"name": "Blocked", "position": 2}, headers=h)
  assert blocked.status_code == 200, blocked.text
  names = [c["name"] for c in (await client.get(f"/projects/{p['id']}/columns", headers=h)).json()]
  assert names == ["To Do", "In Progress", "Blocked", "In Review", "Done"]

  renamed = await client.patch(f"/columns/{blocked.json()['id']}", json={"name": "On Hold"}, headers=h)
  assert renamed.json()["name"] == "On Hold"

  done = cols[3]
  moved = await client.post(f"/columns/{done['id']}/move", json={"position": 0}, headers=h)
  assert moved.status_code == 200, moved.text
  assert moved.json()["index"] == 0
  names = [c["name"] for c in (await client.get(f"/projects/{p['id']}/columns", headers=h)).json()]
  assert names == ["Done", "To Do", "In Progress", "On Hold", "In Review"]

  doing = cols[1]["id"]
  t = await _task(client, h, p["id"], doing, "Gone with the column")
  assert (await client.delete(f"/columns/{doing}", headers=h)).status_code == 200
  assert (await client.get(f"/tasks/{t['id']}", headers=h)).status_code == 404
  board = (await client.get(f"/projects/{p['id']}/board", headers=h)).json()
  assert [c["name"] for c in board["columns"]] == ["Done", "To Do", "On Hold", "In Review"]


@pytest.mark.anyio
async def test_renormalize_endpoints_keep_order(client: AsyncClient, database: Database) -> None:
  h, p, cols = await _setup(client, database)
  todo = cols[0]["id"]
  for title in ("A", "B", "C"):
    await _task(client, h, p["id"], todo, title, position=0)

  res = await client.post(f"/columns/{todo}/renormalize", headers=h)
  assert res.json() == {"scopeId": todo, "items": 3}
  board = (await client.get(f"/projects/{p['id']}/board", headers=h)).json()
  first = board["columns"][0]
  assert [t["title"] for t in first["tasks"]] == ["C", "B", "A"]
  assert [t["orderKey"] for t in first["tasks"]] == [0.0, 1024.0, 2048.0]

  res = await client.post(f"/projects/{p['id']}/columns/renormalize", headers=h)
  assert res.json() == {"scopeId": p["id"], "items": 4}
  keys = [c["orderKey"] for c in (await client.get(f"/projects/{p['id']}/columns", headers=h)).json()]
  assert keys == [0.0, 1024.0, 2048.0, 3072.0]


@pytest.mark.anyio
async def test_board_filters(client: AsyncClient, database: Database) -> None:
  h, p, cols = await _setup(client, database)
  todo, done = cols[0]["id"], cols[3]["id"]
  await _task(client, h, p["id"], todo, "Fix bug", labels=["bug"], priority="high")
  await _task(client, h, p["id"], todo, "Write docs", labels=["docs"], dueDate="2026-04-10T09:00:00Z")
  await _task(client, h, p["id"], todo, "Triage bug", labels=["bug"])
  await _task(client, h, p["id"], done, "Ship", status="done", dueDate="2026-04-01")

  board = (await client.get(f"/projects/{p['id']}/board", params={"label": "bug"}, headers=h)).json()
  assert {c["name"]: [t["title"] for t in c["tasks"]] for c in board["columns"]} == {
    "To Do": ["Fix bug", "Triage bug"],
    "In Progress": [],
    "In Review": [],
    "Done": [],
  }

  by_text = (await client.get(f"/projects/{p['id']}/tasks", params={"text": "BUG", "priority": "high"}, headers=h)).json()
  assert [t["title"] for t in by_text] == ["Fix bug"]

  dated = (await client.get(f"/projects/{p['id']}/tasks", params={"dueFrom": "2026-04-01T00:00:00Z", "dueTo": "2026-04-30T00:00:00Z"}, headers=h)).json()
  assert [t["title"] for t in dated] == ["Write docs", "Ship"]

  by_status = (await client.get(f"/projects/{p['id']}/tasks", params={"status": "done"}, headers=h)).json()
  assert [t["title"] for t in by_status] == ["Ship"]

  labels = (await client.get(f"/projects/{p['id']}/tasks", params=[("label", "docs"), ("label", "bug")], headers=h)).json()
  assert len(labels) == 3


@pytest.mark.anyio
async def test_task_create_retries_after_lost_claim(client: AsyncClient, database: Database, monkeypatch: pytest.MonkeyPatch) -> None:
  h, p, cols = await _setup(client, database)
  todo = cols[0]["id"]
  await _task(client, h, p["id"], todo, "A")

  lost = _lose_claims(monkeypatch, 1)
  b = await _task(client, h, p["id"], todo, "B", position=0)

  assert lost == [todo]
  assert b["createdBy"] == p["ownerId"]
  assert (await _column_titles(client, h, p["id"]))["To Do"] == ["B", "A"]
  activity = (await client.get(f"/tasks/{b['id']}/activity", headers=h)).json()
  assert [(a["action"], a["actorId"]) for a in activity] == [("created", p["ownerId"])]


@pytest.mark.anyio
async def test_task_move_retries_after_lost_claim(client: AsyncClient, database: Database, monkeypatch: pytest.MonkeyPatch) -> None:
  h, p, cols = await _setup(client, database)
  todo, doing = cols[0]["id"], cols[1]["id"]
  t = await _task(client, h, p["id"], todo, "T")
  await _task(client, h, p["id"], doing, "X")

  _lose_claims(monkeypatch, 1)
  res = await client.post(f"/tasks/{t['id']}/move", json={"columnId": doing, "position": "end"}, headers=h)

  assert res.status_code == 200, res.text
  body = res.json()
  assert body["attempts"] == 2
  assert (body["toScopeId"], body["index"]) == (doing, 1)
  titles = await _column_titles(client, h, p["id"])
  assert titles["To Do"] == []
  assert titles["In Progress"] == ["X", "T"]
  activity = (await client.get(f"/tasks/{t['id']}/activity", headers=h)).json()
  assert [a["action"] for a in activity] == ["created", "moved"]


@pytest.mark.anyio
async def test_column_move_retries_after_lost_claim(client: AsyncClient, database: Database, monkeypatch: pytest.MonkeyPatch) -> None:
  h, p, cols = await _setup(client, database)
  done = cols[3]["id"]

  _lose_claims(monkeypatch, 1)
  res = await client.post(f"/columns/{done}/move", json={"position": 0}, headers=h)

  assert res.status_code == 200, res.text
  assert res.json()["attempts"] == 2
  assert res.json()["index"] == 0
  names = [c["name"] for c in (await client.get(f"/projects/{p['id']}/columns", headers=h)).json()]
  assert names == ["Done", "To Do", "In Progress", "In Review"]


@pytest.mark.anyio
async def test_move_conflict_surfaces_after_max_attempts(client: AsyncClient, database: Database, monkeypatch: pytest.MonkeyPatch) -> None:
  h, p, cols = await _setup(client, database)
  todo, doing = cols[0]["id"], cols[1]["id"]
  t = await _task(client, h, p["id"], todo, "T")

  lost = _lose_claims(monkeypatch, 10)
  res = await client.post(f"/tasks/{t['id']}/move", json={"columnId": doing}, headers=h)

  assert res.status_code == 409
  assert res.json()["detail"]["code"] == "conflict"
  assert lost == [doing, doing, doing]
  monkeypatch.undo()
  titles = await _column_titles(client, h, p["id"])
  assert titles["To Do"] == ["T"]
  assert titles["In Progress"] == []


@pytest.mark.anyio
async def test_comment_retries_after_activity_conflict(client: AsyncClient, database: Database, monkeypatch: pytest.MonkeyPatch) -> None:
  h, p, cols = await _setup(client, database)
  t = await _task(client, h, p["id"], cols[0]["id"], "Discuss")
  calls: list[str] = []

  async def _flaky_append(db, **kwargs):
    calls.append(kwargs["task_id"])
    if len(calls) == 1:
      raise Conflict("task activity changed concurrently", item_id=kwargs["task_id"])
    return await append_comment(db, **kwargs)

  monkeypatch.setattr("taskboard.routers.tasks.append_comment", _flaky_append)
  res = await client.post(f"/tasks/{t['id']}/comments", json={"body": "hello"}, headers=h)

  assert res.status_code == 200, res.text
  assert res.json()["authorId"] == p["ownerId"]
  assert calls == [t["id"], t["id"]]
  detail = (await client.get(f"/tasks/{t['id']}", headers=h)).json()
  assert [c["body"] for c in detail["comments"]] == ["hello"]
  assert [a["action"] for a in detail["activity"]] == ["created", "commented"]
