"""Notification fan-out for one saved-search run.

:class:`NotificationDispatcher` takes the new listings found for a search and
delivers them on up to two independent channels:

1. the **client digest**, unless the client has switched email off;
2. the **admin shadow digest**, when the search has
   ``admin_shadow_notification`` set.  Client preferences do not affect it.

Each channel is fault-isolated: an exception from one send is logged and
recorded as a failed channel in the
:class:`~idxalerts.core.models.DispatchResult` without preventing the other
send.  Deciding what a failed channel means for the run is left to the
caller.  The dispatcher never mutates the search.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from idxalerts.core import events
from idxalerts.core.models import Client, DispatchResult, Listing, SavedSearch
from idxalerts.core.ports import DigestNotifier

__all__ = ["NotificationDispatcher"]

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fans one batch of listings out to the client and admin channels.

    Args:
        notifier: Delivery backend.
        admin_address: Recipient for shadow digests.  Empty disables shadow
            delivery with a warning.
    """

    def __init__(self, notifier: DigestNotifier, admin_address: str = "") -> None:
        self._notifier = notifier
        self._admin_address = admin_address

    async def dispatch(
        self,
        search: SavedSearch,
        client: Client,
        listings: list[Listing],
    ) -> DispatchResult:
        """Send the digests for *listings* and report which ones went out.

        Raises:
            ValueError: If *listings* is empty.
        """
        if not listings:
            raise ValueError(f"Refusing to dispatch zero listings for search {search.id}.")

        failed: list[str] = []
        client_sent = False
        if client.notification_preferences.email:
            client_sent = await self._attempt(
                "client",
                search,
                self._notifier.send_client_digest,
                client,
                search,
                listings,
            )
            if not client_sent:
                failed.append("client")
            else:
                logger.info(
                    "Client digest sent for search %s (%d listings)",
                    search.id,
                    len(listings),
                    extra={"event": events.DISPATCH_CLIENT_SENT, "search_id": search.id},
                )
        else:
            logger.info(
                "Client %s has email notifications off; skipping client digest for search %s",
                client.id,
                search.id,
                extra={"event": events.DISPATCH_CLIENT_SKIPPED, "search_id": search.id},
            )

        shadow_sent = False
        if search.admin_shadow_notification:
            if not self._admin_address:
                logger.warning(
                    "Search %s requests an admin shadow copy but no admin address is "
                    "configured",
                    search.id,
                )
            else:
                shadow_sent = await self._attempt(
                    "shadow",
                    search,
                    self._notifier.send_admin_shadow_digest,
                    self._admin_address,
                    client,
                    search,
                    listings,
                )
                if not shadow_sent:
                    failed.append("shadow")
                else:
                    logger.info(
                        "Shadow digest sent for search %s",
                        search.id,
                        extra={"event": events.DISPATCH_SHADOW_SENT, "search_id": search.id},
                    )

        return DispatchResult(
            client_sent=client_sent,
            shadow_sent=shadow_sent,
            failed_channels=tuple(failed),
        )

    @staticmethod
    async def _attempt(
        channel: str,
        search: SavedSearch,
        send: Callable[..., Awaitable[bool]],
        *args: Any,
    ) -> bool:
        try:
            sent = bool(await send(*args))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "%s digest for search %s raised: %s",
                channel.capitalize(),
                search.id,
                exc,
                exc_info=True,
                extra={"event": events.DISPATCH_FAILED, "search_id": search.id},
            )
            return False
        if not sent:
            logger.warning(
                "%s digest for search %s was not delivered",
                channel.capitalize(),
                search.id,
                extra={"event": events.DISPATCH_FAILED, "search_id": search.id},
            )
        return sent
