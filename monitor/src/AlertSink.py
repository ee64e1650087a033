"""AlertSink: Fire-and-forget alert delivery.

Alerts are raised for every abnormal state the monitor sees: stale or
deviating contract prices, query failures, low relayer balance and failed
jobs. Delivering an alert must never fail or block the job that raised it, so
``notify()`` swallows and logs transport errors.

.. code-block:: python

    sink = WebhookAlertSink("https://hooks.slack.com/services/...")
    sink.notify("Reach max retry", "MAX_RETRY: 3, MAX_QUERY_SYMBOLS: 25")
    ...
    await sink.aclose()
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)


class AlertSink(ABC):
    """Abstract destination for monitor alerts."""

    @abstractmethod
    def notify(self, title: str, body: str) -> None:
        """Send an alert without blocking or raising.

        :param title: Short alert title.
        :param body: Human-readable details.
        """
        pass

    async def aclose(self) -> None:
        """Flush pending alerts and release resources."""
        pass


class LogAlertSink(AlertSink):
    """Alert sink that only writes alerts to the log."""

    def notify(self, title: str, body: str) -> None:
        logger.warning(f"ALERT {title}: {body}")


class WebhookAlertSink(AlertSink):
    """Posts alerts to a chat webhook (Slack-compatible JSON payload).

    Inside a running event loop the POST is scheduled as a task. Outside of
    one (e.g. from a worker thread) it is sent from a background thread.

    :ivar url: Webhook URL.
    :ivar timeout: Request timeout in seconds.
    """

    DEFAULT_TIMEOUT = 10.0

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the webhook sink.

        :param url: Webhook URL to POST alerts to.
        :param timeout: Request timeout in seconds (default: 10).
        :param client: Optional HTTP client used for async delivery.
        """
        self.url = url
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = client
        self._pending: set[asyncio.Task] = set()
        self._threads: set[threading.Thread] = set()

    @staticmethod
    def build_payload(title: str, body: str) -> dict[str, str]:
        """Build the webhook JSON body.

        :param title: Alert title.
        :param body: Alert details.
        :returns: Payload dict.
        """
        return {"text": f"*{title}*\n{body}"}

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _post(self, title: str, body: str) -> None:
        try:
            response = await self._get_client().post(
                self.url, json=self.build_payload(title, body)
            )
            if not response.is_success:
                logger.warning(
                    f"Alert '{title}' rejected by webhook: "
                    f"HTTP {response.status_code} {response.text[:200]}"
                )
        except httpx.HTTPError as e:
            logger.warning(f"Failed to deliver alert '{title}': {e}")

    def _post_sync(self, title: str, body: str) -> None:
        try:
            response = httpx.post(
                self.url,
                json=self.build_payload(title, body),
                timeout=self.timeout,
            )
            if not response.is_success:
                logger.warning(
                    f"Alert '{title}' rejected by webhook: "
                    f"HTTP {response.status_code}"
                )
        except httpx.HTTPError as e:
            logger.warning(f"Failed to deliver alert '{title}': {e}")
        finally:
            self._threads.discard(threading.current_thread())

    def join(self, timeout: float | None = None) -> None:
        """Wait for alerts posted from outside the event loop."""
        for thread in list(self._threads):
            thread.join(timeout)

    def notify(self, title: str, body: str) -> None:
        logger.warning(f"ALERT {title}: {body}")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            thread = threading.Thread(
                target=self._post_sync, args=(title, body), daemon=True
            )
            self._threads.add(thread)
            thread.start()
            return

        task = loop.create_task(self._post(title, body))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def aclose(self) -> None:
        """Wait for in-flight alerts and close the HTTP client."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._threads:
            await asyncio.to_thread(self.join, self.timeout)
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


def catch_incident(
    job: Callable[[], Awaitable[Any]],
    alert_sink: AlertSink,
    name: str | None = None,
) -> Callable[[], Awaitable[Any]]:
    """Wrap an async job so that any failure is logged and alerted.

    The exception is not re-raised, so a periodic schedule keeps running.
    The wrapped job returns None when it failed.

    :param job: Async job to wrap.
    :param alert_sink: Sink receiving the incident alert.
    :param name: Job name used in the alert (default: job.__name__).
    :returns: Wrapped async job.
    """
    job_name = name or getattr(job, "__name__", repr(job))

    @functools.wraps(job)
    async def wrapper() -> Any:
        try:
            return await job()
        except Exception as e:
            logger.exception(f"Job {job_name} failed")
            alert_sink.notify(f"Incident in {job_name}", f"{type(e).__name__}: {e}")
            return None

    return wrapper
