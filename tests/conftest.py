"""
Pytest configuration for Taskhive tests.

This module provides:
1. Async test support without pytest-asyncio
2. Temporary stores and a service wired to them
3. Changelog record builders with explicit timestamps
"""

import asyncio
import functools
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from taskhive.changelog_store import ChangeLogRecord, ChangeLogStore
from taskhive.entity_store import EntityStore
from taskhive.review_cache import ReviewCache
from taskhive.service import TaskhiveService


# -----------------------------------------------------------------------------
# Async Test Support
# -----------------------------------------------------------------------------
def async_test(func):
    """
    Decorator to run async tests without pytest-asyncio.

    Usage:
        @async_test
        async def test_something(self, service):
            project = await service.create_project({"name": "x"}, 1)
            assert project.id is not None
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def data_dir(tmp_path) -> Path:
    path = tmp_path / "taskhive"
    path.mkdir()
    return path


@pytest.fixture
def changelog_store(data_dir) -> ChangeLogStore:
    return ChangeLogStore(data_dir / "changelogs.jsonl")


@pytest.fixture
def entity_store(data_dir) -> EntityStore:
    return EntityStore(data_dir / "entities.json")


@pytest.fixture
def service(entity_store, changelog_store) -> TaskhiveService:
    return TaskhiveService(entity_store, changelog_store)


@pytest.fixture
def cached_service(entity_store, changelog_store) -> TaskhiveService:
    return TaskhiveService(entity_store, changelog_store, review_cache=ReviewCache(ttl_seconds=60))


# -----------------------------------------------------------------------------
# Record Builders
# -----------------------------------------------------------------------------
BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_record(
    new_status,
    minutes=0,
    description="",
    remark=None,
    task_id=1,
    project_id=1,
    user_id=7,
    sequence=None,
    record_id=None,
) -> ChangeLogRecord:
    """A stored-looking record at BASE_TIME + minutes."""
    return ChangeLogRecord(
        user_id=user_id,
        description=description,
        old_status="Done",
        new_status=new_status,
        remark=remark,
        project_id=project_id,
        task_id=task_id,
        id=record_id or f"chg-test-{minutes}-{sequence}",
        created_at=BASE_TIME + timedelta(minutes=minutes),
        sequence=sequence,
    )


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
OWNER_ID = 1
REVIEWER_ID = 2
OTHER_USER_ID = 3
