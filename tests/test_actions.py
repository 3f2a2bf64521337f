"""Tests for offline-capable reader actions."""

import pytest

from offline.actions import ContentRejectedError, OfflineActions
from offline.connectivity import ConnectivityMonitor
from offline.models import EntityType, MutationAction
from offline.remote import RemoteError


def make_actions(store, remote, online=True, user_id="user-1"):
    return OfflineActions(store, remote, ConnectivityMonitor(online=online), user_id)


@pytest.mark.asyncio
async def test_online_write_goes_straight_to_backend(store, remote):
    actions = make_actions(store, remote)

    result = await actions.add_bookmark("b1", 42, title="Start here")

    assert result.queued is False
    assert store.count() == 0
    op, table, row = remote.calls[0]
    assert (op, table) == ("insert", "book_bookmarks")
    assert row["user_id"] == "user-1"
    assert row["page_number"] == 42
    assert row["id"] == result.payload["id"]


@pytest.mark.asyncio
async def test_offline_write_is_queued(store, remote):
    actions = make_actions(store, remote, online=False)

    result = await actions.add_annotation("b1", 7, content="Lovely line", color="green")

    assert result.queued is True
    assert result.enqueue.ok
    assert remote.calls == []
    (queued,) = store.peek_all()
    assert queued.entity_type is EntityType.ANNOTATION
    assert queued.action is MutationAction.CREATE
    assert queued.payload == result.payload


@pytest.mark.asyncio
async def test_network_failure_falls_back_to_queue(store, make_remote):
    remote = make_remote(fail=lambda *args: RemoteError("ConnectError: refused"))
    actions = make_actions(store, remote)

    result = await actions.add_favorite("b1")

    assert result.queued is True
    assert store.count() == 1
    assert actions.connectivity.is_online is False


@pytest.mark.asyncio
async def test_server_error_queues_but_stays_online(store, make_remote):
    remote = make_remote(fail=lambda *args: RemoteError("Bad Gateway", 502))
    actions = make_actions(store, remote)

    result = await actions.delete_review("r1")

    assert result.queued is True
    assert actions.connectivity.is_online is True


@pytest.mark.asyncio
async def test_permanent_rejection_is_raised_not_queued(store, make_remote):
    remote = make_remote(fail=lambda *args: RemoteError("row not found", 404))
    actions = make_actions(store, remote)

    with pytest.raises(RemoteError):
        await actions.update_bookmark("bm1", note="x")
    assert store.count() == 0


@pytest.mark.asyncio
async def test_offensive_text_is_rejected_before_queueing(store, remote):
    actions = make_actions(store, remote, online=False)

    with pytest.raises(ContentRejectedError) as excinfo:
        await actions.add_review("b1", 2, review_text="f.u.c.k this book")

    assert "fuck" in excinfo.value.result.flagged_words
    assert store.count() == 0


@pytest.mark.asyncio
async def test_review_rating_must_be_one_to_five(store, remote):
    actions = make_actions(store, remote)
    with pytest.raises(ValueError):
        await actions.add_review("b1", 6)
    with pytest.raises(ValueError):
        await actions.update_review("r1", rating=0)


@pytest.mark.asyncio
async def test_user_is_required(store, remote):
    actions = make_actions(store, remote, user_id="")
    with pytest.raises(ValueError):
        await actions.add_favorite("b1")


@pytest.mark.asyncio
async def test_progress_update_upserts(store, remote):
    actions = make_actions(store, remote)

    await actions.update_progress("b1", 120, total_pages=300, is_completed=False)

    op, table, (row, conflict) = remote.calls[0]
    assert (op, table, conflict) == ("upsert", "reading_progress", ("book_id", "user_id"))
    assert row["current_page"] == 120
    assert row["total_pages"] == 300


@pytest.mark.asyncio
async def test_partial_update_only_sends_given_fields(store, remote):
    actions = make_actions(store, remote, online=False)

    result = await actions.update_annotation("a1", color="blue")

    assert set(result.payload) == {"id", "color", "updated_at"}
