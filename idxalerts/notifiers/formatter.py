"""Email digest formatter for saved-search notifications.

Turns a batch of :class:`~idxalerts.core.models.Listing` objects into a
ready-to-send :class:`EmailMessage` (subject, plain-text body, HTML body).

Two digests exist:

* **client digest** — previews the first :data:`CLIENT_PREVIEW_COUNT`
  listings, summarises the remainder and links to the portal.
* **admin shadow digest** — a compact copy for the brokerage admin, previews
  :data:`SHADOW_PREVIEW_COUNT` listings and names the client and search.

Every client-facing body carries :data:`MLS_COPYRIGHT_NOTICE`.  All
user-supplied text is HTML-escaped before it is embedded in the HTML body.

Public API
----------
:func:`client_subject` — ``"3 New Properties Match Your Search"``.

:func:`log_subject` — subject recorded in the notification audit log.

:func:`build_client_digest` / :func:`build_shadow_digest` — full messages.

Typical usage::

    from idxalerts.notifiers.formatter import build_client_digest

    message = build_client_digest(client, search, listings, app_url=settings.app_url)
    await email_client.send(message)
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from typing import Final

from idxalerts.core.models import Client, Listing, SavedSearch

__all__ = [
    "MLS_COPYRIGHT_NOTICE",
    "CLIENT_PREVIEW_COUNT",
    "SHADOW_PREVIEW_COUNT",
    "EmailMessage",
    "client_subject",
    "log_subject",
    "shadow_subject",
    "build_client_digest",
    "build_shadow_digest",
]

logger = logging.getLogger(__name__)

#: Copyright line required on every page or message showing MLS® data.
MLS_COPYRIGHT_NOTICE: Final[str] = (
    "MLS® property information is provided under copyright© by the Vancouver Island "
    "Real Estate Board and Victoria Real Estate Board. The information is from sources "
    "deemed reliable, but should not be relied upon without independent verification."
)

#: Listings shown in full in a client digest.
CLIENT_PREVIEW_COUNT: Final[int] = 5

#: Listings shown in full in an admin shadow digest.
SHADOW_PREVIEW_COUNT: Final[int] = 3

_PLACEHOLDER_PHOTO: Final[str] = "/images/placeholder-property.jpg"


@dataclass(frozen=True, slots=True)
class EmailMessage:
    """A fully rendered email, transport-agnostic.

    Attributes:
        to: Recipient address.
        subject: Subject line.
        text: Plain-text alternative body.
        html: HTML body.
    """

    to: str
    subject: str
    text: str
    html: str


# ---------------------------------------------------------------------------
# Subjects
# ---------------------------------------------------------------------------


def _noun(count: int) -> str:
    return "Property" if count == 1 else "Properties"


def client_subject(count: int) -> str:
    """Subject of the client digest."""
    return f"{count} New {_noun(count)} Match Your Search"


def log_subject(count: int, search_name: str) -> str:
    """Subject stored in the notification audit log."""
    return f"{count} New {_noun(count)} - {search_name}"


def shadow_subject(count: int, client_name: str) -> str:
    """Subject of the admin shadow digest."""
    return f"Shadow: {count} {_noun(count)} for {client_name}"


# ---------------------------------------------------------------------------
# Field formatters
# ---------------------------------------------------------------------------


def _fmt_price(price: int) -> str:
    return f"${price:,}"


def _fmt_number(value: float | None) -> str:
    if value is None:
        return "N/A"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return f"{value:g}"


def _fmt_size(listing: Listing, *, include_area: bool = True) -> str:
    """``3 beds • 2 baths • 1,250 sqft`` with ``N/A`` for unknown values."""
    parts = [
        f"{_fmt_number(listing.bedrooms)} beds",
        f"{_fmt_number(listing.bathrooms)} baths",
    ]
    if include_area:
        parts.append(f"{listing.square_feet:,} sqft" if listing.square_feet else "N/A")
    return " • ".join(parts)


def _fmt_kind(listing: Listing) -> str:
    kind = listing.property_type or "Property"
    return f"{kind} in {listing.city}" if listing.city else kind


def _listing_url(app_url: str, listing: Listing) -> str:
    return f"{app_url}/portal/property/{listing.mls_number}"


def _remainder(total: int, shown: int) -> int:
    return max(total - shown, 0)


# ---------------------------------------------------------------------------
# HTML fragments
# ---------------------------------------------------------------------------

_HTML_STYLE = """\
body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
.container { max-width: 600px; margin: 0 auto; padding: 20px; }
.header { color: white; padding: 20px; text-align: center; }
.content { padding: 20px; background-color: #f9fafb; }
.card { border: 1px solid #e5e7eb; border-radius: 8px; padding: 15px; margin: 15px 0; background: white; }
.price { font-size: 22px; font-weight: bold; color: #2563eb; margin: 8px 0; }
.button { display: inline-block; padding: 12px 24px; background-color: #2563eb; color: white; text-decoration: none; border-radius: 6px; }
.notice { margin-top: 30px; padding-top: 20px; border-top: 1px solid #e5e7eb; font-size: 12px; color: #6b7280; }
.footer { padding: 20px; text-align: center; font-size: 12px; color: #6b7280; }"""


def _html_page(title: str, header_colour: str, body: str, footer: str) -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        f"<style>\n{_HTML_STYLE}\n</style>\n"
        "</head>\n<body>\n<div class=\"container\">\n"
        f"<div class=\"header\" style=\"background-color: {header_colour};\">"
        f"<h1>{html.escape(title)}</h1></div>\n"
        f"<div class=\"content\">\n{body}\n</div>\n"
        f"<div class=\"footer\">{footer}</div>\n"
        "</div>\n</body>\n</html>\n"
    )


def _html_card(listing: Listing, app_url: str, *, compact: bool) -> str:
    photo = html.escape(listing.primary_photo or _PLACEHOLDER_PHOTO, quote=True)
    address = html.escape(listing.address or listing.mls_number)
    lines = [
        "<div class=\"card\">",
        f"<img src=\"{photo}\" alt=\"{address}\" "
        f"style=\"width: 100%; height: {150 if compact else 200}px; object-fit: cover;\">",
        f"<h3>{address}</h3>",
        f"<p class=\"price\">{_fmt_price(listing.price)}</p>",
        f"<p>{html.escape(_fmt_size(listing, include_area=not compact))}</p>",
    ]
    if not compact:
        url = html.escape(_listing_url(app_url, listing), quote=True)
        lines.extend(
            [
                f"<p style=\"color: #6b7280;\">{html.escape(_fmt_kind(listing))}</p>",
                f"<p style=\"font-size: 12px; color: #9ca3af;\">Listed by: "
                f"{html.escape(listing.listing_brokerage)}</p>",
                f"<a href=\"{url}\" class=\"button\">View Details</a>",
            ]
        )
    lines.append("</div>")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Digests
# ---------------------------------------------------------------------------


def build_client_digest(
    client: Client,
    search: SavedSearch,
    listings: list[Listing],
    *,
    app_url: str = "",
) -> EmailMessage:
    """Render the client digest for *listings*.

    Args:
        client: Recipient; ``client.email`` becomes the ``to`` address.
        search: The saved search whose run produced *listings*.
        listings: Non-empty, newest first.
        app_url: Portal base URL (no trailing slash) used for links.

    Raises:
        ValueError: If *listings* is empty.
    """
    if not listings:
        raise ValueError("Cannot build a digest for zero listings.")

    count = len(listings)
    preview = listings[:CLIENT_PREVIEW_COUNT]
    more = _remainder(count, len(preview))
    portal_url = f"{app_url}/portal/dashboard"
    name = html.escape(client.name or "there")
    search_name = html.escape(search.name)

    # -- HTML ------------------------------------------------------------
    body_parts = [
        f"<p>Hello {name},</p>",
        f"<p>We found <strong>{count} new {_noun(count).lower()}</strong> "
        f"matching your search \"{search_name}\":</p>",
        *(_html_card(listing, app_url, compact=False) for listing in preview),
    ]
    if more:
        body_parts.append(
            f"<p><strong>Plus {more} more {_noun(more).lower()}</strong> matching your "
            f"criteria. <a href=\"{html.escape(portal_url, quote=True)}\">View all in your "
            "portal</a></p>"
        )
    body_parts.append(
        f"<a href=\"{html.escape(portal_url, quote=True)}\" class=\"button\">"
        "View All in Your Portal</a>"
    )
    body_parts.append(f"<p class=\"notice\">{html.escape(MLS_COPYRIGHT_NOTICE)}</p>")
    footer = (
        f"<a href=\"{html.escape(app_url, quote=True)}/portal/searches\">Manage your saved "
        f"searches</a> | <a href=\"{html.escape(app_url, quote=True)}/portal/unsubscribe\">"
        "Unsubscribe</a>"
    )
    html_body = _html_page(
        "New Properties Match Your Search!", "#2563eb", "\n".join(body_parts), footer
    )

    # -- Plain text ------------------------------------------------------
    text_lines = [
        "New Properties Match Your Search!",
        "",
        f"Hello {client.name or 'there'},",
        "",
        f"We found {count} new {_noun(count).lower()} matching your search \"{search.name}\".",
        "",
    ]
    for listing in preview:
        text_lines.extend(
            [
                listing.address or listing.mls_number,
                f"{_fmt_price(listing.price)} • {_fmt_size(listing, include_area=False)}",
                _fmt_kind(listing),
                f"View: {_listing_url(app_url, listing)}",
                "",
            ]
        )
    if more:
        text_lines.extend([f"Plus {more} more {_noun(more).lower()} in your portal.", ""])
    text_lines.extend([f"View all: {portal_url}", "", MLS_COPYRIGHT_NOTICE])

    return EmailMessage(
        to=client.email,
        subject=client_subject(count),
        text="\n".join(text_lines),
        html=html_body,
    )


def build_shadow_digest(
    admin_address: str,
    client: Client,
    search: SavedSearch,
    listings: list[Listing],
    *,
    app_url: str = "",
) -> EmailMessage:
    """Render the admin shadow copy of a client digest.

    Raises:
        ValueError: If *listings* is empty.
    """
    if not listings:
        raise ValueError("Cannot build a digest for zero listings.")

    count = len(listings)
    preview = listings[:SHADOW_PREVIEW_COUNT]
    more = _remainder(count, len(preview))
    admin_url = f"{app_url}/admin/searches"

    body_parts = [
        "<p><strong>This is a shadow copy of a notification sent to your client.</strong></p>",
        "<p style=\"background-color: #dbeafe; padding: 15px; border-left: 4px solid #2563eb;\">"
        f"<strong>Client:</strong> {html.escape(client.name)} ({html.escape(client.email)})<br>"
        f"<strong>Search:</strong> \"{html.escape(search.name)}\"<br>"
        f"<strong>Properties Found:</strong> {count}</p>",
        "<p><strong>Properties sent to client:</strong></p>",
        *(_html_card(listing, app_url, compact=True) for listing in preview),
    ]
    if more:
        body_parts.append(f"<p><em>Plus {more} more {_noun(more).lower()}...</em></p>")
    body_parts.append(
        f"<a href=\"{html.escape(admin_url, quote=True)}\" class=\"button\">"
        "Manage Client Searches</a>"
    )
    body_parts.append(
        "<p class=\"notice\">You're receiving this because shadow notifications are enabled "
        "for this search. You can disable shadow notifications in the admin dashboard.</p>"
    )
    html_body = _html_page(
        "Shadow Alert: Client Notification",
        "#7c3aed",
        "\n".join(body_parts),
        "PREC Real Estate - Admin Shadow Notification",
    )

    text_lines = [
        "Shadow Alert: Client Notification",
        "",
        "This is a shadow copy of a notification sent to your client.",
        "",
        f"Client: {client.name} ({client.email})",
        f"Search: \"{search.name}\"",
        f"Properties Found: {count}",
        "",
        "Properties sent to client:",
        "",
    ]
    for listing in preview:
        text_lines.extend(
            [
                listing.address or listing.mls_number,
                f"{_fmt_price(listing.price)} • {_fmt_size(listing, include_area=False)}",
                "",
            ]
        )
    if more:
        text_lines.extend([f"Plus {more} more {_noun(more).lower()}...", ""])
    text_lines.extend(
        [
            f"Manage Client Searches: {admin_url}",
            "",
            "You're receiving this because shadow notifications are enabled for this search.",
        ]
    )

    return EmailMessage(
        to=admin_address,
        subject=shadow_subject(count, client.name),
        text="\n".join(text_lines),
        html=html_body,
    )
