"""Single-round-trip job lookups used by the tracker."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol

from autocloud.jobs.models import JobSnapshot
from autocloud.utils.errors import ServerError
from autocloud.utils.logging import LoggerFactory

if TYPE_CHECKING:
    from autocloud.api import ApiClient

logger = LoggerFactory.get_logger("jobs.fetcher")

# Fetches slower than this are logged.
SLOW_FETCH_MS = 2000.0


class JobFetcher(Protocol):
    """Fetch the current representation of a job.

    Implementations raise ``ClientError`` for caller-side failures,
    ``ServerError`` for transient ones and ``ParseError`` for bodies that
    cannot be turned into a ``JobSnapshot``.
    """

    async def fetch(self, job_id: str) -> JobSnapshot:
        ...


class HttpJobFetcher:
    """Adapts ``ApiClient.get_job`` to the fetcher contract."""

    def __init__(self, api: "ApiClient", *, timeout: Optional[float] = None) -> None:
        self._api = api
        self._timeout = timeout

    async def fetch(self, job_id: str) -> JobSnapshot:
        with logger.performance_timer("fetch_job", threshold_ms=SLOW_FETCH_MS):
            request = self._api.get_job(job_id)
            if self._timeout is None:
                payload = await request
            else:
                try:
                    payload = await asyncio.wait_for(request, timeout=self._timeout)
                except asyncio.TimeoutError as exc:
                    raise ServerError(
                        f"Fetching job timed out after {self._timeout}s",
                        operation="get_job",
                        context={"job_id": job_id},
                    ) from exc
        return JobSnapshot.from_api(payload)


class CallableJobFetcher:
    """Wraps a plain ``async def fetch(job_id) -> payload`` function."""

    def __init__(self, func: Callable[[str], Awaitable[Any]]) -> None:
        self._func = func

    async def fetch(self, job_id: str) -> JobSnapshot:
        result = await self._func(job_id)
        if isinstance(result, JobSnapshot):
            return result
        return JobSnapshot.from_api(result)
