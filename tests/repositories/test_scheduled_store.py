"""
Tests for the SQL scheduled message queue.
Run against in-memory SQLite through aiosqlite.
"""
import pytest
from sqlalchemy.exc import OperationalError

from chatcore.core.exceptions import ConflictError, NotFoundError, StoreUnavailable
from chatcore.utils.datetime_utils import from_epoch_millis


@pytest.mark.asyncio
class TestScheduledStore:
    """Insert, reads and removal of scheduled messages."""

    async def test_insert_and_find_by_id(self, scheduled_store, direct_scope, make_scheduled):
        """Test that an inserted scheduled message reads back unchanged."""
        scheduled = make_scheduled(direct_scope, send_at_millis=5000)

        assert await scheduled_store.insert(scheduled) == scheduled.scheduled_id

        loaded = await scheduled_store.find_by_id(scheduled.scheduled_id)
        assert loaded.scope == direct_scope
        assert loaded.sender_id == "user_a"
        assert loaded.content == scheduled.content
        assert loaded.send_at == from_epoch_millis(5000)
        assert loaded.message_id == "msg_" + scheduled.scheduled_id.split("_", 1)[1]

    async def test_duplicate_id_raises_conflict(self, scheduled_store, direct_scope, make_scheduled):
        """Test that reusing a scheduled ID is rejected."""
        await scheduled_store.insert(make_scheduled(direct_scope, scheduled_id="sch_dup"))

        with pytest.raises(ConflictError):
            await scheduled_store.insert(make_scheduled(direct_scope, scheduled_id="sch_dup"))

        assert (await scheduled_store.find_by_id("sch_dup")).scheduled_id == "sch_dup"

    async def test_find_by_id_missing(self, scheduled_store):
        """Test that an unknown ID raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await scheduled_store.find_by_id("sch_missing")

    async def test_list_for_sender_soonest_first(self, scheduled_store, direct_scope, group_scope, make_scheduled):
        """Test that a sender's queue is ordered by send time and excludes others."""
        later = make_scheduled(direct_scope, send_at_millis=9000)
        sooner = make_scheduled(group_scope, send_at_millis=6000)
        other = make_scheduled(direct_scope, sender_id="user_b", send_at_millis=7000)
        for scheduled in (later, sooner, other):
            await scheduled_store.insert(scheduled)

        listed = await scheduled_store.list_for_sender("user_a")

        assert [s.scheduled_id for s in listed] == [sooner.scheduled_id, later.scheduled_id]

    async def test_find_due_is_inclusive_and_limited(self, scheduled_store, direct_scope, make_scheduled):
        """Test that rows at or before now are due, oldest first, up to the limit."""
        for millis in (7000, 5000, 6000, 9000):
            await scheduled_store.insert(make_scheduled(direct_scope, send_at_millis=millis))

        due = await scheduled_store.find_due(from_epoch_millis(7000), 10)
        assert [s.send_at for s in due] == [from_epoch_millis(m) for m in (5000, 6000, 7000)]

        limited = await scheduled_store.find_due(from_epoch_millis(7000), 2)
        assert [s.send_at for s in limited] == [from_epoch_millis(5000), from_epoch_millis(6000)]

    async def test_delete(self, scheduled_store, direct_scope, make_scheduled):
        """Test that delete removes the row and reports whether it existed."""
        scheduled = make_scheduled(direct_scope)
        await scheduled_store.insert(scheduled)

        assert await scheduled_store.delete(scheduled.scheduled_id) is True
        assert await scheduled_store.delete(scheduled.scheduled_id) is False
        with pytest.raises(NotFoundError):
            await scheduled_store.find_by_id(scheduled.scheduled_id)

    async def test_read_failure(self, scheduled_store, mocker):
        """Test that a failing query raises StoreUnavailable."""
        mocker.patch.object(
            scheduled_store.db, "execute", side_effect=OperationalError("SELECT", {}, Exception("db down"))
        )

        with pytest.raises(StoreUnavailable):
            await scheduled_store.find_due(from_epoch_millis(5000), 10)
