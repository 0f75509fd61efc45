"""High-level digest delivery for idxalerts.

Provides :class:`EmailNotifier`, the concrete
:class:`~idxalerts.core.ports.DigestNotifier` used in production.  It owns
the decision of *whether* to send (based on
:class:`~idxalerts.core.run_context.RunContext`) and delegates to:

* :mod:`idxalerts.notifiers.formatter` for rendering.
* :class:`~idxalerts.notifiers.email.EmailClient` for transport.

Both send methods report failure by returning ``False``; they never raise.
A structured ``ERROR`` log line is always emitted for a failed send.

Typical usage::

    ctx = RunContext(dry_run=False)

    async with EmailClient(...) as client:
        notifier = EmailNotifier(client, ctx, app_url=settings.app_url)
        sent = await notifier.send_client_digest(client_record, search, listings)
"""

from __future__ import annotations

import logging

from idxalerts.core.exceptions import EmailDeliveryError
from idxalerts.core.models import Client, Listing, SavedSearch
from idxalerts.core.run_context import RunContext
from idxalerts.notifiers.email import EmailClient
from idxalerts.notifiers.formatter import (
    EmailMessage,
    build_client_digest,
    build_shadow_digest,
)

__all__ = ["EmailNotifier"]

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Formats and delivers client and admin-shadow digests.

    Respects the :class:`~idxalerts.core.run_context.RunContext` operating
    mode:

    * **dry-run mode** (``ctx.dry_run=True``): renders the digest and logs it
      at ``INFO`` level instead of calling the mail API.  Returns ``True``.
    * **live mode**: renders and sends via :class:`EmailClient`.

    Args:
        client: Open :class:`EmailClient`, or ``None`` in dry-run mode.  The
            notifier does **not** manage the client's lifecycle.
        ctx: Runtime operating mode flags.
        app_url: Portal base URL used for links inside digests.

    Raises:
        ValueError: If *client* is ``None`` in live mode.
    """

    def __init__(
        self,
        client: EmailClient | None,
        ctx: RunContext,
        *,
        app_url: str = "",
    ) -> None:
        if client is None and ctx.should_notify:
            raise ValueError("EmailNotifier needs an EmailClient in live mode.")
        self._client = client
        self._ctx = ctx
        self._app_url = app_url

    async def send_client_digest(
        self,
        client: Client,
        search: SavedSearch,
        listings: list[Listing],
    ) -> bool:
        """Deliver the client digest for *listings*.

        Returns:
            ``True`` if the digest was sent (live) or logged (dry-run);
            ``False`` if rendering or delivery failed.
        """
        if not client.email:
            logger.error(
                "Client %s has no email address; digest for search %s not sent",
                client.id,
                search.id,
            )
            return False
        try:
            message = build_client_digest(client, search, listings, app_url=self._app_url)
        except ValueError as exc:
            logger.error("Could not render digest for search %s: %s", search.id, exc)
            return False
        return await self._deliver(message, label=f"client digest for search {search.id}")

    async def send_admin_shadow_digest(
        self,
        admin_address: str,
        client: Client,
        search: SavedSearch,
        listings: list[Listing],
    ) -> bool:
        """Deliver the admin shadow copy.  Same contract as :meth:`send_client_digest`."""
        try:
            message = build_shadow_digest(
                admin_address, client, search, listings, app_url=self._app_url
            )
        except ValueError as exc:
            logger.error("Could not render shadow digest for search %s: %s", search.id, exc)
            return False
        return await self._deliver(message, label=f"shadow digest for search {search.id}")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _deliver(self, message: EmailMessage, *, label: str) -> bool:
        if not self._ctx.should_notify:
            logger.info(
                "[%s] Would send %s to %s: %s\n%s",
                self._ctx.mode_label,
                label,
                message.to,
                message.subject,
                message.text,
            )
            return True

        assert self._client is not None
        try:
            await self._client.send(message)
        except EmailDeliveryError as exc:
            logger.error("Failed to send %s to %s after all retries: %s", label, message.to, exc)
            return False
        except Exception as exc:  # noqa: BLE001
            logger.critical(
                "Unexpected error sending %s to %s: %s",
                label,
                message.to,
                exc,
                exc_info=True,
            )
            return False
        logger.info("Sent %s to %s (%s)", label, message.to, message.subject)
        return True
