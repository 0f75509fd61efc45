"""HTTP transport for outbound digest mail.

:class:`EmailClient` posts one JSON message per request to a transactional
mail API::

    POST <api_url>
    Authorization: Bearer <api_key>

    {"from": {"email": ..., "name": ...}, "to": [{"email": ...}],
     "subject": ..., "text": ..., "html": ...}

Any 2xx is accepted.  429 and 5xx responses as well as network failures are
retried with :mod:`tenacity`; a ``Retry-After`` on a 429 is honoured up to
one minute.  Rendering the digest is :mod:`idxalerts.notifiers.formatter`'s
job, and deciding whether to send at all belongs to
:class:`~idxalerts.notifiers.notifier.EmailNotifier`.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from idxalerts.core.exceptions import EmailDeliveryError, EmailRateLimitError
from idxalerts.notifiers.formatter import EmailMessage

__all__ = ["EmailClient"]

logger = logging.getLogger(__name__)

_SERVER_ERRORS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})
_MAX_ATTEMPTS: Final[int] = 4
_BACKOFF_CEILING: Final[float] = 30.0
_RETRY_AFTER_CEILING: Final[float] = 60.0
_USER_AGENT: Final[str] = "idxalerts/0.1"


class _ServerError(EmailDeliveryError):
    """5xx from the mail API; retried."""


def _email_wait(retry_state: RetryCallState) -> float:
    """Seconds to sleep before the next send attempt.

    A rate-limit response dictates its own delay.  Everything else backs off
    as ``2**(n-1)`` plus up to that much jitter (jitter capped at 5 s).
    """
    exc = retry_state.outcome.exception() if retry_state.outcome is not None else None
    if isinstance(exc, EmailRateLimitError) and exc.retry_after > 0:
        return min(exc.retry_after, _RETRY_AFTER_CEILING)

    base = min(2.0 ** max(retry_state.attempt_number - 1, 0), _BACKOFF_CEILING)
    return base + random.uniform(0.0, min(base, 5.0))


class EmailClient:
    """Async mail API client owning one keep-alive :class:`httpx.AsyncClient`.

    Use as ``async with EmailClient(...) as client:``; :meth:`close` is also
    safe to call directly and more than once.  Tests inject an
    :class:`httpx.MockTransport` through *transport*.

    Raises:
        ValueError: When the endpoint, key or sender is empty, or
            *max_attempts* is below one.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        from_address: str,
        *,
        from_name: str = "",
        timeout: float = 15.0,
        max_attempts: int = _MAX_ATTEMPTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        for label, value in (
            ("api_url", api_url),
            ("api_key", api_key),
            ("from_address", from_address),
        ):
            if not value:
                raise ValueError(f"EmailClient requires a non-empty {label}.")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts!r}.")

        self._api_url = api_url
        self._api_key = api_key
        self._sender: dict[str, str] = {"email": from_address}
        if from_name:
            self._sender["name"] = from_name
        self._max_attempts = max_attempts
        self._timeout = httpx.Timeout(timeout, connect=5.0)
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def __aenter__(self) -> EmailClient:
        self._session()
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.close()

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None

    async def send(self, message: EmailMessage) -> None:
        """Deliver *message*, retrying transient failures.

        Raises:
            EmailRateLimitError: Still rate limited after the last attempt.
            EmailDeliveryError: Rejected by the API, no recipient, or the
                network kept failing.
        """
        if not message.to:
            raise EmailDeliveryError("Message has no recipient address.")

        retrying = AsyncRetrying(
            wait=_email_wait,
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type(
                (EmailRateLimitError, _ServerError, httpx.TransportError)
            ),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._post(message)
        except httpx.TransportError as exc:
            raise EmailDeliveryError(f"Transport error: {exc}") from exc

    def _session(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self._api_key}", "User-Agent": _USER_AGENT},
            )
        return self._http

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Mail send attempt %d/%d failed: %s",
            retry_state.attempt_number,
            self._max_attempts,
            exc,
        )

    async def _post(self, message: EmailMessage) -> None:
        payload: dict[str, Any] = {
            "from": self._sender,
            "to": [{"email": message.to}],
            "subject": message.subject,
            "text": message.text,
            "html": message.html,
        }
        response = await self._session().post(self._api_url, json=payload)
        logger.debug("Mail API answered HTTP %d for %s", response.status_code, message.to)
        _raise_for_status(response)


def _raise_for_status(response: httpx.Response) -> None:
    """Map a mail API response onto the delivery exception hierarchy."""
    status = response.status_code
    if response.is_success:
        return
    if status == 429:
        raise EmailRateLimitError(retry_after=_retry_after(response))
    if status in _SERVER_ERRORS:
        raise _ServerError(f"Transient server error: HTTP {status}", status_code=status)
    raise EmailDeliveryError(_error_detail(response), status_code=status)


def _retry_after(response: httpx.Response) -> float:
    try:
        return max(float(response.headers.get("retry-after", "1")), 1.0)
    except ValueError:
        return 1.0


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            if body.get(key):
                return str(body[key])
    return response.text or f"HTTP {response.status_code}"
