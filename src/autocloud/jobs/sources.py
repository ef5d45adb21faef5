"""
Observation sources for the job tracker.

The tracker asks a source for "the next snapshot of job X" and does not care
how it is obtained:

* ``PollingSource`` fetches immediately; the tracker paces calls with its base
  interval.
* ``StreamingSource`` keeps a server-sent-events connection open per job and
  only fetches once the API pushes a job event, so the tracker does not sleep
  between observations.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

import aiohttp

from autocloud.http import basic_auth_header
from autocloud.jobs.fetcher import JobFetcher
from autocloud.jobs.models import JobSnapshot
from autocloud.utils.errors import ConfigurationError, ServerError, classify_status
from autocloud.utils.logging import ContextKeys, LoggerFactory

logger = LoggerFactory.get_logger("jobs.sources")

JOB_EVENT_OBJECT = "job-event"


class SnapshotSource(Protocol):
    """Where the tracker gets its observations from."""

    # True when the tracker must wait its base interval between calls.
    paced: bool

    async def next_snapshot(self, job_id: str) -> JobSnapshot:
        ...

    async def release(self, job_id: str) -> None:
        ...


class PollingSource:
    """Every observation is one fetch."""

    paced = True

    def __init__(self, fetcher: JobFetcher) -> None:
        self.fetcher = fetcher

    async def next_snapshot(self, job_id: str) -> JobSnapshot:
        return await self.fetcher.fetch(job_id)

    async def release(self, job_id: str) -> None:
        return None


@dataclass
class _EventStream:
    session: Optional[aiohttp.ClientSession] = None
    response: Optional[aiohttp.ClientResponse] = None
    # Set once a snapshot was fetched on the current connection.
    primed: bool = False

    @property
    def is_open(self) -> bool:
        return self.response is not None and not self.response.closed


class StreamingSource:
    """Fetches a job whenever its event stream delivers a job event.

    Every (re)connection is followed by an immediate fetch, so the tracker
    gets a baseline without waiting for the next push. The stream is opened
    first so an event sent while that fetch is in flight is still read.
    """

    paced = False

    def __init__(
        self,
        fetcher: JobFetcher,
        events_url: Callable[[str], str],
        token: Optional[str],
        *,
        connect_timeout: float = 10.0,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ) -> None:
        if not token:
            raise ConfigurationError("No token.", setting="token")
        self.fetcher = fetcher
        self._events_url = events_url
        self._token = token
        self._connect_timeout = connect_timeout
        self._session_factory = session_factory
        self._streams: Dict[str, _EventStream] = {}

    async def next_snapshot(self, job_id: str) -> JobSnapshot:
        stream = self._streams.setdefault(job_id, _EventStream())
        if stream.is_open:
            response = stream.response
        else:
            # Connect before fetching so no event is missed in between.
            response = await self._connect(job_id, stream)
            stream.primed = False

        if not stream.primed:
            snapshot = await self.fetcher.fetch(job_id)
            stream.primed = True
            return snapshot

        while True:
            data = await self._read_event_data(job_id, stream, response)
            try:
                event = json.loads(data)
            except json.JSONDecodeError as exc:
                raise ServerError(
                    "Error parsing event data.",
                    operation="stream_job_events",
                    context={"job_id": job_id, "data": data[:200]},
                ) from exc
            if not isinstance(event, dict) or event.get("object") != JOB_EVENT_OBJECT:
                continue
            logger.debug(
                "Job event received",
                extra_context={ContextKeys.JOB_ID: job_id, "event": event.get("name")},
            )
            return await self.fetcher.fetch(job_id)

    async def release(self, job_id: str) -> None:
        stream = self._streams.pop(job_id, None)
        if stream is not None:
            await self._teardown(stream)

    async def _connect(self, job_id: str, stream: _EventStream) -> aiohttp.ClientResponse:
        url = self._events_url(job_id)
        stream.session = self._session_factory() if self._session_factory else aiohttp.ClientSession()
        headers = {"Authorization": basic_auth_header(self._token), "Accept": "text/event-stream"}
        try:
            response = await stream.session.get(
                url,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self._connect_timeout),
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            await self._teardown(stream)
            raise ServerError(
                f"Unable to open event stream: {exc}",
                endpoint=url,
                operation="stream_job_events",
            ) from exc

        if response.status >= 400:
            message = await _response_message(response)
            response.release()
            await self._teardown(stream)
            raise classify_status(response.status, message, endpoint=url, operation="stream_job_events")

        stream.response = response
        logger.info(
            "Opened job event stream",
            extra_context={ContextKeys.JOB_ID: job_id, ContextKeys.ENDPOINT: url},
        )
        return response

    async def _read_event_data(
        self,
        job_id: str,
        stream: _EventStream,
        response: aiohttp.ClientResponse,
    ) -> str:
        """Read one server-sent event and return its joined ``data`` lines."""
        data_lines: List[str] = []
        undecodable = False
        while True:
            try:
                raw = await response.content.readline()
            except aiohttp.ClientError as exc:
                await self._teardown(stream)
                raise ServerError(
                    f"Event stream failed: {exc}",
                    operation="stream_job_events",
                    context={"job_id": job_id},
                ) from exc

            if not raw:
                await self._teardown(stream)
                raise ServerError(
                    "Event stream closed by the server",
                    operation="stream_job_events",
                    context={"job_id": job_id},
                )

            try:
                line = raw.decode("utf-8").rstrip("\r\n")
            except UnicodeDecodeError:
                # Skip to the end of the event so the stream stays usable.
                undecodable = True
                continue
            if not line:
                if undecodable:
                    raise ServerError(
                        "Error parsing event data.",
                        operation="stream_job_events",
                        context={"job_id": job_id},
                    )
                if data_lines:
                    return "\n".join(data_lines)
                continue
            if line.startswith(":"):
                continue
            name, _, value = line.partition(":")
            if name == "data":
                data_lines.append(value[1:] if value.startswith(" ") else value)

    async def _teardown(self, stream: _EventStream) -> None:
        if stream.response is not None:
            stream.response.close()
        if stream.session is not None:
            with contextlib.suppress(aiohttp.ClientError):
                await stream.session.close()
        stream.response = None
        stream.session = None


async def _response_message(response: aiohttp.ClientResponse) -> str:
    try:
        body = await response.json(content_type=None)
    except (aiohttp.ClientError, json.JSONDecodeError, UnicodeDecodeError):
        return "Unexpected response"
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return "Unexpected response"
