"""
Async client for the automation cloud REST API.

Thin wrappers over ``Requester``: each method maps onto one route and returns
the decoded JSON body. ``track_job`` hands off to a lazily created
``JobTracker`` whose transport follows ``ClientConfig.transport``.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional

import aiohttp
import httpx

from autocloud.config import ClientConfig
from autocloud.http import Requester
from autocloud.jobs.fetcher import HttpJobFetcher
from autocloud.jobs.sources import PollingSource, SnapshotSource, StreamingSource
from autocloud.jobs.tracker import (
    ChangeCallback,
    CloseCallback,
    ErrorCallback,
    JobTracker,
    Subscription,
)
from autocloud.utils.logging import LoggerFactory

logger = LoggerFactory.get_logger("api")

JsonDict = Dict[str, Any]


def assert_string_arguments(**arguments: Any) -> None:
    for name, value in arguments.items():
        if not isinstance(value, str):
            raise TypeError(f'"{name}" must be a string.')


class ApiClient:
    """Authenticated access to services, jobs and their artefacts."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
    ) -> None:
        self.config = config
        self._requester = Requester(
            config.api_url,
            config.require_token(),
            timeout=config.request_timeout,
            http_client=http_client,
        )
        self._session_factory = session_factory
        self._tracker: Optional[JobTracker] = None

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop every job this client is tracking."""
        if self._tracker is not None:
            await self._tracker.close()

    @property
    def base_url(self) -> str:
        return self._requester.base_url

    async def raw(self, path: str, **options: Any) -> Any:
        """Call an arbitrary path relative to the API base URL."""
        assert_string_arguments(path=path)
        return await self._requester.request(path, **options)

    async def get_services(self) -> JsonDict:
        return await self._requester.request("services", operation="get_services")

    async def get_service(self, service_id: str) -> JsonDict:
        assert_string_arguments(serviceId=service_id)
        return await self._requester.request(f"services/{service_id}", operation="get_service")

    async def get_previous_job_outputs(self, service_id: str, inputs: Optional[List[Any]] = None) -> JsonDict:
        assert_string_arguments(serviceId=service_id)
        return await self._requester.request(
            f"services/{service_id}/previous-job-outputs",
            method="POST",
            body={"inputs": inputs or []},
            operation="get_previous_job_outputs",
        )

    async def get_jobs(self, query: Optional[Mapping[str, Any]] = None) -> JsonDict:
        return await self._requester.request("jobs", query=query, operation="get_jobs")

    async def create_job(self, fields: Mapping[str, Any]) -> JsonDict:
        return await self._requester.request("jobs", method="POST", body=dict(fields), operation="create_job")

    async def get_job(self, job_id: str) -> JsonDict:
        assert_string_arguments(jobId=job_id)
        return await self._requester.request(f"jobs/{job_id}", operation="get_job")

    async def cancel_job(self, job_id: str) -> JsonDict:
        assert_string_arguments(jobId=job_id)
        return await self._requester.request(f"jobs/{job_id}/cancel", method="POST", operation="cancel_job")

    async def reset_job(self, job_id: str) -> JsonDict:
        assert_string_arguments(jobId=job_id)
        return await self._requester.request(f"jobs/{job_id}/reset", method="POST", operation="reset_job")

    async def create_job_input(self, job_id: str, data: Any, key: str, stage: Optional[str] = None) -> JsonDict:
        """Submit an input the job is waiting for."""
        assert_string_arguments(jobId=job_id, key=key)
        body: JsonDict = {"key": key, "data": data}
        if stage is not None:
            body["stage"] = stage
        return await self._requester.request(
            f"jobs/{job_id}/inputs",
            method="POST",
            body=body,
            operation="create_job_input",
        )

    async def get_job_outputs(self, job_id: str) -> JsonDict:
        assert_string_arguments(jobId=job_id)
        return await self._requester.request(f"jobs/{job_id}/outputs", operation="get_job_outputs")

    async def get_job_output(self, job_id: str, key: str, stage: Optional[str] = None) -> JsonDict:
        assert_string_arguments(jobId=job_id, key=key)
        path = f"jobs/{job_id}/outputs/{key}"
        if stage:
            path += f"/{stage}"
        return await self._requester.request(path, operation="get_job_output")

    async def get_job_screenshots(self, job_id: str) -> JsonDict:
        assert_string_arguments(jobId=job_id)
        return await self._requester.request(f"jobs/{job_id}/screenshots", operation="get_job_screenshots")

    async def get_job_screenshot(
        self,
        job_id_or_path: str,
        screenshot_id: Optional[str] = None,
        ext: str = "png",
    ) -> bytes:
        """Download a screenshot image.

        Accepts either a job id plus screenshot id, or an absolute path (as
        listed by ``get_job_screenshots``) starting with ``/``.
        """
        if job_id_or_path and job_id_or_path.startswith("/"):
            return await self._requester.request(job_id_or_path, parse=False, operation="get_job_screenshot")

        assert_string_arguments(jobId=job_id_or_path, id=screenshot_id, ext=ext)
        return await self._requester.request(
            f"jobs/{job_id_or_path}/screenshots/{screenshot_id}.{ext}",
            parse=False,
            operation="get_job_screenshot",
        )

    async def get_job_mimo_logs(self, job_id: str) -> JsonDict:
        assert_string_arguments(jobId=job_id)
        return await self._requester.request(f"jobs/{job_id}/mimo-logs", operation="get_job_mimo_logs")

    async def get_job_end_user(self, job_id: str) -> JsonDict:
        assert_string_arguments(jobId=job_id)
        return await self._requester.request(f"jobs/{job_id}/end-user", operation="get_job_end_user")

    async def get_job_events(self, job_id: str, offset: int = 0) -> JsonDict:
        assert_string_arguments(jobId=job_id)
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValueError("offset must be a non-negative integer.")
        return await self._requester.request(
            f"jobs/{job_id}/events",
            query={"offset": offset},
            operation="get_job_events",
        )

    def events_url(self, job_id: str) -> str:
        return self._requester.url_for(f"jobs/{job_id}/events")

    def build_source(self) -> SnapshotSource:
        """Create the observation source selected by ``config.transport``."""
        fetcher = HttpJobFetcher(self, timeout=self.config.fetch_timeout)
        if self.config.transport == "stream":
            return StreamingSource(
                fetcher,
                self.events_url,
                self.config.token,
                session_factory=self._session_factory,
            )
        return PollingSource(fetcher)

    def job_tracker(self) -> JobTracker:
        """The tracker shared by every ``track_job`` call on this client."""
        if self._tracker is None:
            self._tracker = JobTracker.from_config(self.build_source(), self.config)
            logger.debug(
                "Created job tracker",
                extra_context={"transport": self.config.transport, "poll_interval": self.config.poll_interval},
            )
        return self._tracker

    def track_job(
        self,
        job_id: str,
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
        on_close: Optional[CloseCallback] = None,
        *,
        known_state: Optional[str] = None,
    ) -> Subscription:
        """Subscribe to state changes of ``job_id``; cancel the returned handle to stop."""
        assert_string_arguments(jobId=job_id)
        return self.job_tracker().subscribe(
            job_id,
            on_change,
            on_error,
            on_close,
            known_state=known_state,
        )
