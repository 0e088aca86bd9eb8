"""
Status reporting.

Observers that the daemon attaches to the scheduler: one records every run
transition in the history store, the other forwards transitions to an
HTTP webhook.
"""

import requests
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from runslot.state import store
from runslot.utils.retry import retry
from runslot.utils.logging import get_logger
from runslot.scheduler.models import Run

log = get_logger("reporting")


def record_history(run: Run, transition: str) -> None:
    """Scheduler observer persisting the run's current state."""
    store.record_run(run.to_dict())


class WebhookReporter:
    """
    Scheduler observer POSTing run transitions to a URL.

    Deliveries run on a single background thread in transition order, so
    a slow endpoint never holds up admission.
    """

    def __init__(self, url: str, timeout: int = 10):
        self.url = url
        self.timeout = timeout
        self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webhook")

    def __call__(self, run: Run, transition: str) -> None:
        payload = {"transition": transition, "run": run.to_dict()}
        self._pool.submit(self._deliver, payload)

    def _deliver(self, payload: dict) -> None:
        try:
            resp = self._post(payload)
            if resp.status_code >= 400:
                log.warning(f"Webhook rejected {payload['run']['run_id']}: HTTP {resp.status_code}")
        except requests.exceptions.RequestException as e:
            log.warning(f"Webhook delivery failed for {payload['run']['run_id']}: {e}")

    @retry(max_attempts=3, delay=1.0, exceptions=(requests.exceptions.ConnectionError, requests.exceptions.Timeout))
    def _post(self, payload: dict) -> requests.Response:
        return requests.post(self.url, json=payload, timeout=self.timeout)

    def close(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)


def make_webhook_reporter(url: Optional[str], timeout: int = 10) -> Optional[WebhookReporter]:
    if not url:
        return None
    log.info(f"Reporting run transitions to {url}")
    return WebhookReporter(url, timeout=timeout)
