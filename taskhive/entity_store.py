"""
Entity Store

Persistence for tasks and projects: one JSON document, rewritten atomically
(temp file + rename) on every save. Ids are integer auto-increments assigned
on first save; 0 is never issued because the changelog reserves task_id 0
for project-level records.
"""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import StoreError
from .project_model import Project
from .task_model import Task

logger = logging.getLogger("entity_store")

DEFAULT_ENTITIES_FILE = Path(os.getenv("TASKHIVE_DATA_DIR", "data/taskhive")) / "entities.json"

STORE_VERSION = "1.0"


class EntityStore:
    """Task and project records keyed by id."""

    def __init__(self, entities_file: Optional[Path] = None):
        self._file = Path(entities_file) if entities_file else DEFAULT_ENTITIES_FILE
        self._lock = asyncio.Lock()
        self._tasks: Dict[int, Dict[str, Any]] = {}
        self._projects: Dict[int, Dict[str, Any]] = {}
        self._next_task_id = 1
        self._next_project_id = 1
        self._load()

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def get_task(self, task_id: int) -> Optional[Task]:
        data = self._tasks.get(task_id)
        return Task.from_dict(data) if data else None

    async def save_task(self, task: Task) -> Task:
        """Insert or replace a task. Assigns task.id on first save."""
        async with self._lock:
            if task.id is None:
                task.id = self._next_task_id
                self._next_task_id += 1
            self._tasks[task.id] = task.to_dict()
            self._save()
        return task

    async def list_tasks(self, project_id: Optional[int] = None) -> List[Task]:
        tasks = [Task.from_dict(d) for d in self._tasks.values()]
        if project_id is not None:
            tasks = [t for t in tasks if t.project_id == project_id]
        return sorted(tasks, key=lambda t: t.id)

    async def delete_task(self, task_id: int) -> bool:
        async with self._lock:
            if self._tasks.pop(task_id, None) is None:
                return False
            self._save()
        return True

    # -------------------------------------------------------------------------
    # Projects
    # -------------------------------------------------------------------------

    async def get_project(self, project_id: int) -> Optional[Project]:
        data = self._projects.get(project_id)
        return Project.from_dict(data) if data else None

    async def save_project(self, project: Project) -> Project:
        """Insert or replace a project. Assigns project.id on first save."""
        async with self._lock:
            if project.id is None:
                project.id = self._next_project_id
                self._next_project_id += 1
            self._projects[project.id] = project.to_dict()
            self._save()
        return project

    async def list_projects(self, user_id: Optional[int] = None) -> List[Project]:
        projects = [Project.from_dict(d) for d in self._projects.values()]
        if user_id is not None:
            projects = [p for p in projects if p.user_id == user_id]
        return sorted(projects, key=lambda p: p.id)

    async def delete_project(self, project_id: int) -> List[int]:
        """Delete a project and its tasks. Returns the deleted task ids."""
        async with self._lock:
            if self._projects.pop(project_id, None) is None:
                return []
            task_ids = [tid for tid, d in self._tasks.items() if d.get("project_id") == project_id]
            for task_id in task_ids:
                del self._tasks[task_id]
            self._save()
        return task_ids

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _load(self) -> None:
        if not self._file.exists():
            logger.info("No existing entities file, starting fresh")
            return

        try:
            with open(self._file) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load entities: {e}")
            raise StoreError("load_entities", e)

        self._tasks = {int(k): v for k, v in data.get("tasks", {}).items()}
        self._projects = {int(k): v for k, v in data.get("projects", {}).items()}
        self._next_task_id = data.get("next_task_id", max(self._tasks, default=0) + 1)
        self._next_project_id = data.get("next_project_id", max(self._projects, default=0) + 1)
        logger.info(f"Loaded {len(self._projects)} projects and {len(self._tasks)} tasks")

    def _save(self) -> None:
        data = {
            "version": STORE_VERSION,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "next_task_id": self._next_task_id,
            "next_project_id": self._next_project_id,
            "tasks": {str(k): v for k, v in self._tasks.items()},
            "projects": {str(k): v for k, v in self._projects.items()},
        }
        try:
            self._file.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self._file.with_suffix(".tmp")
            with open(temp_file, "w") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self._file)
        except OSError as e:
            logger.error(f"Failed to save entities: {e}")
            raise StoreError("save_entities", e)
