"""Tests for TenantRepository over a scoped collection."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from tenant_guard.context import TenantContext, tenant_scope
from tenant_guard.errors import MissingTenantContextError
from tenant_guard.storage.entity import EntityDefinition, TenantDocument
from tenant_guard.storage.repository import TenantRepository

ACME = TenantContext(tenant_id="acme")
GLOBEX = TenantContext(tenant_id="globex")


class Course(TenantDocument):
    name: str
    slug: str | None = None


COURSES = EntityDefinition(Course, "courses", unique_per_tenant=("slug",))


@pytest.fixture()
def repo(scoped_courses) -> TenantRepository[Course]:
    return TenantRepository(COURSES, scoped_courses)


class TestTenantRepository:
    async def test_create_stamps_tenant(self, courses, repo) -> None:
        with tenant_scope(ACME):
            course = await repo.create(Course(name="Python 101"))

        assert course.tenant_id == "acme"
        assert course.id is not None
        assert courses.documents[0]["tenantId"] == "acme"
        assert courses.documents[0]["name"] == "Python 101"

    async def test_get_by_id_is_tenant_scoped(self, repo) -> None:
        with tenant_scope(ACME):
            course = await repo.create(Course(name="Python 101"))
            assert await repo.get_by_id(course.id) == course

        with tenant_scope(GLOBEX):
            assert await repo.get_by_id(course.id) is None

    async def test_list_all_newest_first(self, repo) -> None:
        with tenant_scope(ACME):
            first = await repo.create(
                Course(name="first", created_at=datetime(2026, 1, 1, tzinfo=UTC))
            )
            second = await repo.create(
                Course(name="second", created_at=datetime(2026, 2, 1, tzinfo=UTC))
            )
        with tenant_scope(GLOBEX):
            await repo.create(Course(name="other"))

        with tenant_scope(ACME):
            listed = await repo.list_all()
            limited = await repo.list_all(limit=1)
            skipped = await repo.list_all(skip=1)

        assert [c.name for c in listed] == [second.name, first.name]
        assert [c.name for c in limited] == ["second"]
        assert [c.name for c in skipped] == ["first"]

    async def test_count(self, repo) -> None:
        with tenant_scope(ACME):
            await repo.create(Course(name="a"))
            await repo.create(Course(name="b", slug="b"))
            assert await repo.count() == 2
            assert await repo.count({"slug": "b"}) == 1
        with tenant_scope(GLOBEX):
            assert await repo.count() == 0

    async def test_update(self, courses, repo) -> None:
        with tenant_scope(ACME):
            course = await repo.create(Course(name="a"))
        with tenant_scope(GLOBEX):
            assert await repo.update(course.id, {"name": "hijacked"}) is False
        with tenant_scope(ACME):
            assert await repo.update(course.id, {"name": "b"}) is True
        assert courses.documents[0]["name"] == "b"

    async def test_delete(self, courses, repo) -> None:
        with tenant_scope(ACME):
            course = await repo.create(Course(name="a"))
        with tenant_scope(GLOBEX):
            assert await repo.delete(course.id) is False
        with tenant_scope(ACME):
            assert await repo.delete(course.id) is True
        assert courses.documents == []

    async def test_aggregate(self, repo) -> None:
        with tenant_scope(ACME):
            await repo.create(Course(name="a"))
        with tenant_scope(GLOBEX):
            await repo.create(Course(name="b"))
            rows = await repo.aggregate([{"$count": "total"}])
        assert rows == [{"total": 1}]

    async def test_reads_require_context(self, repo) -> None:
        with pytest.raises(MissingTenantContextError):
            await repo.list_all()

    async def test_ensure_indexes(self, courses, repo) -> None:
        names = await repo.ensure_indexes()
        assert names == [
            "tenantId_1",
            "tenantId_1_createdAt_-1",
            "tenantId_1_updatedAt_-1",
            "tenantId_1_slug_1",
        ]
        assert courses.indexes["tenantId_1_slug_1"]["unique"] is True
