"""
Keeps every posted copy of a ride up to date.

A ride is rendered once and pushed to each tracked message. Handles whose
chat or message is permanently unreachable are pruned from the ride in a
single repository write; transient failures leave the handle in place for
the next resync. Resyncs of the same ride run one at a time so a prune is
never lost.
"""
import logging
from typing import Optional

from ridebot.core.exceptions import TransportFailure
from ridebot.core.locks import KeyedLock
from ridebot.schemas.ride import MessageHandle, RideRecord, SyncResult
from ridebot.services.message_formatter import MessageFormatter
from ridebot.services.ride_repository import RideRepository
from ridebot.telegram.transport import Transport

logger = logging.getLogger(__name__)


class RideMessagesService:
    def __init__(
        self,
        repository: RideRepository,
        transport: Transport,
        formatter: MessageFormatter = None,
        locks: KeyedLock = None,
    ):
        self.repository = repository
        self.transport = transport
        self.formatter = formatter or MessageFormatter()
        self.locks = locks or KeyedLock()

    async def post_initial(
        self,
        ride: RideRecord,
        chat_id: int,
        thread_id: Optional[int] = None,
        is_for_creator: bool = False,
    ) -> RideRecord:
        """Send the ride to ``chat_id`` (and thread) and start tracking the message."""
        rendered = self.formatter.render(ride, ride.participation, is_for_creator=is_for_creator)
        handle = await self.transport.send_message(
            chat_id, rendered.text, keyboard=rendered.keyboard, thread_id=thread_id
        )
        async with self.locks.hold(ride.id):
            updated = self.repository.add_message(ride.id, handle)
        logger.info(f"[RideMessages] Posted ride {ride.id} to chat {chat_id} (message {handle.message_id})")
        return updated

    async def resync(self, ride_id: str) -> SyncResult:
        """Re-render the ride and edit every tracked message; prune the unreachable ones."""
        async with self.locks.hold(ride_id):
            ride = self.repository.get(ride_id)
            rendered = self.formatter.render(ride, ride.participation)

            updated_count = 0
            pruned: list[MessageHandle] = []
            for handle in ride.messages:
                try:
                    await self.transport.edit_message(handle, rendered.text, keyboard=rendered.keyboard)
                    updated_count += 1
                except TransportFailure as e:
                    if e.is_permanent:
                        logger.info(
                            f"[RideMessages] Dropping message {handle.chat_id}/{handle.message_id} "
                            f"of ride {ride_id}: {e.kind.value} ({e.reason})"
                        )
                        pruned.append(handle)
                    else:
                        logger.warning(
                            f"[RideMessages] Transient failure updating {handle.chat_id}/{handle.message_id} "
                            f"of ride {ride_id}: {e.reason}"
                        )

            if pruned:
                self.repository.remove_messages(ride_id, pruned)

        logger.info(f"[RideMessages] Resynced ride {ride_id}: updated={updated_count} removed={len(pruned)}")
        return SyncResult(success=True, updated_count=updated_count, removed_count=len(pruned))

    async def delete_messages(self, ride: RideRecord) -> int:
        """Best-effort removal of every posted copy. Returns how many were deleted."""
        deleted = 0
        for handle in ride.messages:
            try:
                await self.transport.delete_message(handle)
                deleted += 1
            except TransportFailure as e:
                logger.warning(
                    f"[RideMessages] Could not delete {handle.chat_id}/{handle.message_id} of ride {ride.id}: {e.reason}"
                )
        return deleted
