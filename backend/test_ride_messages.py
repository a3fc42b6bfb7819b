"""
MESSAGE SYNCHRONIZER TESTS

Every tracked copy of a ride gets the same rendering; permanently
unreachable copies are pruned, transient failures are kept for the
next attempt.
"""
import asyncio

import pytest

from conftest import rider
from ridebot.core.exceptions import TransportFailure, TransportFailureKind
from ridebot.schemas.ride import ParticipationState


@pytest.mark.asyncio
async def test_post_initial_tracks_handle(messages, transport, repository, make_ride):
    ride = make_ride()

    updated = await messages.post_initial(ride, chat_id=-100, thread_id=7)

    assert len(transport.sent) == 1
    assert transport.sent[0]["handle"].thread_id == 7
    assert updated.messages == [transport.sent[0]["handle"]]
    assert repository.get(ride.id).messages == updated.messages


@pytest.mark.asyncio
async def test_post_initial_for_creator_adds_share_hint(messages, transport, make_ride):
    ride = make_ride(created_by=5)

    await messages.post_initial(ride, chat_id=5, is_for_creator=True)

    assert f"/shareride {ride.id}" in transport.sent[0]["text"]


@pytest.mark.asyncio
async def test_resync_edits_every_copy_with_identical_rendering(messages, transport, participation, make_ride):
    ride = make_ride(created_by=5)
    await messages.post_initial(ride, chat_id=5, is_for_creator=True)
    await messages.post_initial(ride, chat_id=-100)
    await messages.post_initial(ride, chat_id=-200, thread_id=3)
    participation.set_participation(ride.id, rider(9, "Bo"), ParticipationState.JOINED)

    result = await messages.resync(ride.id)

    assert result.success
    assert result.updated_count == 3
    assert result.removed_count == 0
    texts = {edit["text"] for edit in transport.edits}
    assert len(texts) == 1
    text = texts.pop()
    assert "Bo" in text
    assert "/shareride" not in text


@pytest.mark.asyncio
async def test_resync_prunes_permanent_failures_only(messages, transport, repository, make_ride):
    ride = make_ride()
    await messages.post_initial(ride, chat_id=1)
    await messages.post_initial(ride, chat_id=2)
    await messages.post_initial(ride, chat_id=3)
    transport.fail_edit[2] = TransportFailureKind.MESSAGE_GONE
    transport.fail_edit[3] = TransportFailureKind.TRANSIENT

    result = await messages.resync(ride.id)

    assert result.updated_count == 1
    assert result.removed_count == 1
    remaining = {h.chat_id for h in repository.get(ride.id).messages}
    assert remaining == {1, 3}


@pytest.mark.asyncio
async def test_resync_of_cancelled_ride_drops_buttons(messages, transport, repository, make_ride):
    ride = make_ride(created_by=1)
    await messages.post_initial(ride, chat_id=1)
    repository.cancel(ride.id, user_id=1)

    await messages.resync(ride.id)

    edit = transport.edits[-1]
    assert edit["keyboard"] == []
    assert "This ride has been cancelled." in edit["text"]


@pytest.mark.asyncio
async def test_concurrent_resyncs_do_not_lose_prunes(messages, transport, repository, make_ride):
    ride = make_ride()
    for chat_id in (1, 2, 3, 4):
        await messages.post_initial(ride, chat_id=chat_id)
    transport.fail_edit[2] = TransportFailureKind.CHAT_GONE
    transport.fail_edit[4] = TransportFailureKind.BLOCKED

    await asyncio.gather(*(messages.resync(ride.id) for _ in range(5)))

    assert {h.chat_id for h in repository.get(ride.id).messages} == {1, 3}
    assert len(messages.locks) == 0


@pytest.mark.asyncio
async def test_post_initial_send_failure_tracks_nothing(messages, transport, repository, make_ride):
    ride = make_ride()
    transport.fail_send[1] = TransportFailureKind.BLOCKED

    with pytest.raises(TransportFailure):
        await messages.post_initial(ride, chat_id=1)

    assert repository.get(ride.id).messages == []


@pytest.mark.asyncio
async def test_delete_messages_is_best_effort(messages, transport, make_ride):
    ride = make_ride()
    await messages.post_initial(ride, chat_id=1)
    await messages.post_initial(ride, chat_id=2)
    transport.fail_delete[2] = TransportFailureKind.NO_RIGHTS

    ride_with_handles = messages.repository.get(ride.id)
    deleted = await messages.delete_messages(ride_with_handles)

    assert deleted == 1
    assert [h.chat_id for h in transport.deleted] == [1]
