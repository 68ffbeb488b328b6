from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from scheduler_watcher.api import GREETING, create_app
from scheduler_watcher.store import TaskStore


class RecordingScheduler:
    def __init__(self) -> None:
        self.started = False
        self.stopped = False

    def start(self) -> None:
        self.started = True

    def shutdown(self, wait: bool = True) -> None:
        self.stopped = True


@pytest.fixture()
def store(tmp_path: Path):
    task_store = TaskStore(tmp_path / "tasks.db")
    yield task_store
    task_store.close()


@pytest.fixture()
def client(store: TaskStore):
    with TestClient(create_app(store)) as test_client:
        yield test_client


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def test_list_is_empty_without_tasks(client: TestClient) -> None:
    response = client.get("/task")

    assert response.status_code == 200
    assert response.json() == []


def test_list_returns_tasks_in_id_order(client: TestClient, store: TaskStore) -> None:
    first = store.create(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))
    second = store.create(datetime(2024, 3, 1, 9, 0, 10, tzinfo=timezone.utc))

    body = client.get("/task").json()

    assert [item["id"] for item in body] == [first.id, second.id]
    assert parse_timestamp(body[0]["createdAt"]) == first.created_at
    assert parse_timestamp(body[1]["createdAt"]) == second.created_at


def test_hello_returns_plain_text(client: TestClient) -> None:
    response = client.get("/task/hello")

    assert response.status_code == 200
    assert response.text == GREETING
    assert response.headers["content-type"].startswith("text/plain")


def test_get_single_task(client: TestClient, store: TaskStore) -> None:
    task = store.create()

    response = client.get(f"/task/{task.id}")

    assert response.status_code == 200
    assert response.json()["id"] == task.id


def test_unknown_task_is_not_found(client: TestClient) -> None:
    response = client.get("/task/999")

    assert response.status_code == 404
    assert response.json()["detail"] == "Task 999 not found"


def test_lifespan_runs_the_scheduler(store: TaskStore) -> None:
    scheduler = RecordingScheduler()

    with TestClient(create_app(store, scheduler=scheduler)) as test_client:
        assert scheduler.started is True
        assert scheduler.stopped is False
        assert test_client.get("/task").status_code == 200

    assert scheduler.stopped is True
