"""Email digest rendering, delivery, and client/admin fan-out."""

from idxalerts.notifiers.dispatcher import NotificationDispatcher
from idxalerts.notifiers.email import EmailClient
from idxalerts.notifiers.formatter import (
    EmailMessage,
    build_client_digest,
    build_shadow_digest,
    client_subject,
    log_subject,
)
from idxalerts.notifiers.notifier import EmailNotifier

__all__ = [
    "EmailClient",
    "EmailMessage",
    "EmailNotifier",
    "NotificationDispatcher",
    "build_client_digest",
    "build_shadow_digest",
    "client_subject",
    "log_subject",
]
