"""
Tests for version persistence and the single-published constraint.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError
from src.import_engine.errors import InvalidStateError, NotFoundError
from src.import_engine.models import VersionStatus
from src.import_engine.repository import VersionRepository, new_id


def version_values(version_id, number, status="draft"):
    return dict(
        id=version_id,
        version_number=number,
        status=status,
        file_name="roads.geojson",
        file_type="geojson",
        file_path=f"/tmp/{version_id}",
        uploaded_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class TestVersionNumbers:
    """Monotonic allocation."""

    def test_new_id_format(self):
        version_id = new_id("IV")
        assert version_id.startswith("IV-")
        assert len(version_id) == 11

    @pytest.mark.asyncio
    async def test_numbers_increase_across_deletions(self, service):
        """Deleting the newest draft never frees its number."""
        numbers = []
        for i in range(3):
            draft = await service.create_draft(b"{}", f"roads{i}.geojson")
            numbers.append(draft.version_number)
            if i % 2 == 0:
                await service.delete_version(draft.id)

        last = await service.create_draft(b"{}", "last.geojson")
        numbers.append(last.version_number)

        assert numbers == sorted(numbers)
        assert len(set(numbers)) == len(numbers)
        assert numbers == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_counter_catches_up_with_existing_rows(self, session_factory):
        """Rows created without the counter still bound the next number."""
        async with session_factory() as session, session.begin():
            await VersionRepository(session).create(**version_values("IV-a", 7))
        async with session_factory() as session, session.begin():
            assert await VersionRepository(session).next_version_number() == 8


class TestVersionRepository:
    """Reads and the published constraint."""

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, session_factory):
        async with session_factory() as session:
            with pytest.raises(NotFoundError):
                await VersionRepository(session).get("IV-missing")

    @pytest.mark.asyncio
    async def test_list_newest_first_with_total(self, session_factory):
        async with session_factory() as session, session.begin():
            repo = VersionRepository(session)
            for n in range(1, 6):
                status = "archived" if n < 3 else "draft"
                await repo.create(**version_values(f"IV-{n}", n, status))

        async with session_factory() as session:
            repo = VersionRepository(session)
            page, total = await repo.list_versions(limit=2)
            assert [v.version_number for v in page] == [5, 4]
            assert total == 5

            drafts, total = await repo.list_versions(status=VersionStatus.DRAFT, offset=1)
            assert [v.version_number for v in drafts] == [4, 3]
            assert total == 3

    @pytest.mark.asyncio
    async def test_second_published_row_rejected(self, session_factory):
        """The partial unique index forbids two published versions."""
        with pytest.raises(IntegrityError):
            async with session_factory() as session, session.begin():
                repo = VersionRepository(session)
                await repo.create(**version_values("IV-1", 1, "published"))
                await repo.create(**version_values("IV-2", 2, "published"))

    @pytest.mark.asyncio
    async def test_archive_published(self, session_factory):
        now = datetime(2026, 2, 1, tzinfo=timezone.utc)
        async with session_factory() as session, session.begin():
            repo = VersionRepository(session)
            await repo.create(**version_values("IV-1", 1, "published"))
            await repo.create(**version_values("IV-2", 2))
            assert await repo.archive_published(except_id="IV-2", at=now) == ["IV-1"]
            await repo.update("IV-2", status="published")

        async with session_factory() as session:
            repo = VersionRepository(session)
            assert (await repo.published()).id == "IV-2"
            assert (await repo.get("IV-1")).status == VersionStatus.ARCHIVED


class TestDeleteVersion:
    """Only drafts can be deleted."""

    @pytest.mark.asyncio
    async def test_delete_removes_files(self, service, files):
        draft = await service.create_draft(b"{}", "roads.geojson")
        assert files.version_dir(draft.id).exists()

        await service.delete_version(draft.id)

        assert not files.version_dir(draft.id).exists()
        with pytest.raises(NotFoundError):
            await service.get_version(draft.id)

    @pytest.mark.asyncio
    async def test_delete_non_draft_rejected(self, service, session_factory):
        draft = await service.create_draft(b"{}", "roads.geojson")
        async with session_factory() as session, session.begin():
            await VersionRepository(session).update(draft.id, status="archived")

        with pytest.raises(InvalidStateError):
            await service.delete_version(draft.id)
