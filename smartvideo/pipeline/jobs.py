"""
Remote job protocol shared by the scene generator and the assembler.

    submit(...)  → RemoteJob(job_id, state=submitted)
    poll(job_id) → RemoteJob with the *current* state, never blocks on the job

The wait loop lives on the caller side (wait_for_job): fixed interval,
bounded by a deadline, and the observed state never moves backwards.
"""

import time
import random
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

import httpx

from .errors import JobTimeoutError, RemoteJobFailedError, RemoteTransportError
from .models import JobState, RemoteJob

logger = logging.getLogger(__name__)

# ── Retry configuration (polls only; submissions are never retried) ──────────
MAX_RETRIES = 3
BASE_DELAY = 1.0        # seconds, doubles each retry: 1, 2, 4
JITTER_MAX = 0.5
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}

DEFAULT_POLL_INTERVAL = 5.0


async def request_with_backoff(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    **kwargs,
) -> httpx.Response:
    """
    HTTP request with exponential backoff on 429 / 5xx and transport errors.

    Uses base_delay * 2^attempt + random jitter, or Retry-After when given.
    Raises httpx.HTTPStatusError / httpx.TransportError once retries run out.
    """
    for attempt in range(max_retries + 1):
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            if attempt >= max_retries:
                raise
            delay = base_delay * (2 ** attempt) + random.uniform(0, JITTER_MAX)
            logger.warning(
                f"Request error on attempt {attempt + 1}/{max_retries + 1}: {e} "
                f"— retrying in {delay:.1f}s (url={url})"
            )
            await asyncio.sleep(delay)
            continue

        if response.status_code not in RETRYABLE_STATUS_CODES or attempt >= max_retries:
            response.raise_for_status()
            return response

        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            delay = int(retry_after)
        else:
            delay = base_delay * (2 ** attempt) + random.uniform(0, JITTER_MAX)
        logger.warning(
            f"HTTP {response.status_code} on attempt {attempt + 1}/{max_retries + 1} "
            f"— retrying in {delay:.1f}s (url={url})"
        )
        await asyncio.sleep(delay)

    raise RuntimeError(f"Request to {url} failed after {max_retries + 1} attempts")


class RemoteJobClient(ABC):
    """Base for clients of a submit/poll long-running job API."""

    service = "remote"

    def __init__(self):
        self.abandoned: set[str] = set()

    @abstractmethod
    async def submit(self, *args, **kwargs) -> RemoteJob:
        ...

    @abstractmethod
    async def poll(self, job_id: str) -> RemoteJob:
        ...

    async def cancel(self, job_id: str):
        """
        Stop tracking a job. Neither Vidgo nor Shotstack exposes a cancel
        endpoint, so the remote job may keep running; we only mark it.
        """
        self.abandoned.add(job_id)
        logger.warning(f"{self.service} job {job_id} abandoned; remote work may continue")


def _advance(previous: RemoteJob, current: RemoteJob) -> RemoteJob:
    """Keep the most terminal state seen so far; a stale status never wins."""
    if current.state.rank < previous.state.rank:
        logger.debug(
            f"Ignoring regressed status for {current.job_id}: "
            f"{previous.state.value} → {current.state.value}"
        )
        return previous.model_copy(update={"raw_status": current.raw_status})
    return current


async def wait_for_job(
    client: RemoteJobClient,
    job: RemoteJob,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    deadline: Optional[float] = None,
    label: str = "",
    on_poll: Optional[Callable[[RemoteJob, int], None]] = None,
) -> RemoteJob:
    """
    Poll until the job reaches a terminal state.

    Args:
        client:        The client that submitted the job.
        job:           The RemoteJob returned by submit().
        poll_interval: Fixed delay between polls (seconds).
        deadline:      time.monotonic() value after which we give up.
        label:         Name used in errors and logs (e.g. the scene id).
        on_poll:       Optional callback(job, attempt) after every poll.

    Returns:
        The finished RemoteJob (result_url is set).

    Raises:
        RemoteJobFailedError: the service reported failure, or finished without a URL.
        JobTimeoutError:      the deadline passed first.
        RemoteTransportError: polling kept failing; the job is abandoned first.
    """
    label = label or job.job_id
    started = time.monotonic()
    attempt = 0

    try:
        while not job.state.is_terminal:
            now = time.monotonic()
            if deadline is not None and now >= deadline:
                raise JobTimeoutError(
                    f"{label}: {client.service} job {job.job_id} timed out "
                    f"after {now - started:.0f}s (last status: {job.raw_status or job.state.value})",
                    job_id=job.job_id,
                    label=label,
                    elapsed=now - started,
                )

            delay = poll_interval if deadline is None else min(poll_interval, max(0.0, deadline - now))
            await asyncio.sleep(delay)

            attempt += 1
            job = _advance(job, await client.poll(job.job_id))
            logger.info(f"{label}: {client.service} poll #{attempt} status={job.raw_status or job.state.value}")
            if on_poll:
                on_poll(job, attempt)

    except (JobTimeoutError, RemoteTransportError, asyncio.CancelledError):
        await client.cancel(job.job_id)
        raise

    if job.state == JobState.FAILED:
        raise RemoteJobFailedError(
            f"{label} failed on {client.service} (job {job.job_id}): {job.error or 'unknown error'}",
            job_id=job.job_id,
            label=label,
        )
    if not job.result_url:
        raise RemoteJobFailedError(
            f"{label} finished on {client.service} (job {job.job_id}) but returned no result URL",
            job_id=job.job_id,
            label=label,
        )
    return job
