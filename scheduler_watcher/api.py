"""HTTP query surface over the task store."""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from . import __version__
from .models import Task
from .scheduler import Scheduler
from .store import TaskStore

GREETING = "Hello Task Scheduler"

router = APIRouter(prefix="/task", tags=["Tasks"])


class TaskResponse(BaseModel):
    id: int
    createdAt: datetime

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(id=task.id, createdAt=task.created_at)


def _store(request: Request) -> TaskStore:
    return request.app.state.store


@router.get("", response_model=list[TaskResponse])
def list_tasks(request: Request) -> list[TaskResponse]:
    """All recorded tasks, oldest first."""
    return [TaskResponse.from_task(task) for task in _store(request).list_all()]


@router.get("/hello", response_class=PlainTextResponse)
def hello() -> str:
    return GREETING


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(task_id: int, request: Request) -> TaskResponse:
    task = _store(request).get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Task {task_id} not found")
    return TaskResponse.from_task(task)


def create_app(store: TaskStore, *, scheduler: Scheduler | None = None) -> FastAPI:
    """Build the application; a given *scheduler* runs for the app's lifetime."""

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown()

    app = FastAPI(title="scheduler-watcher", version=__version__, lifespan=lifespan)
    app.state.store = store
    app.include_router(router)
    return app


__all__ = ["GREETING", "TaskResponse", "create_app", "router"]
