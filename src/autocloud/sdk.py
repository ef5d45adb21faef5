"""
Entry points for the two kinds of callers.

``create_client_sdk`` is for backends holding a service credential and exposes
the whole ``ApiClient``. ``create_end_user_sdk`` is for an end-user session
holding a job token: every call is bound to that one job and service.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

import aiohttp
import httpx

from autocloud.api import ApiClient
from autocloud.config import ClientConfig
from autocloud.jobs.tracker import ChangeCallback, CloseCallback, ErrorCallback, Subscription
from autocloud.utils.errors import ConfigurationError
from autocloud.vault import VaultClient

JsonDict = Dict[str, Any]


def create_client_sdk(
    config: ClientConfig,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
) -> ApiClient:
    if not config.has_token:
        raise ConfigurationError("Token required.", setting="token")
    return ApiClient(config, http_client=http_client, session_factory=session_factory)


def create_end_user_sdk(
    config: ClientConfig,
    job_id: Optional[str],
    service_id: Optional[str],
    *,
    http_client: Optional[httpx.AsyncClient] = None,
    session_factory: Optional[Callable[[], aiohttp.ClientSession]] = None,
) -> "EndUserSdk":
    if not config.has_token:
        raise ConfigurationError("A token is required.", setting="token")
    if not job_id:
        raise ConfigurationError("A jobId is required.", setting="job_id")
    if not service_id:
        raise ConfigurationError("A serviceId is required.", setting="service_id")

    return EndUserSdk(
        ApiClient(config, http_client=http_client, session_factory=session_factory),
        VaultClient(config, http_client=http_client),
        job_id=job_id,
        service_id=service_id,
    )


class EndUserSdk:
    """API surface for an end user driving a single job."""

    def __init__(self, api: ApiClient, vault: VaultClient, *, job_id: str, service_id: str) -> None:
        self.api = api
        self.vault = vault
        self.job_id = job_id
        self.service_id = service_id

    async def __aenter__(self) -> "EndUserSdk":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.api.aclose()

    async def get_service(self) -> JsonDict:
        return await self.api.get_service(self.service_id)

    async def get_previous_job_outputs(self, inputs: Optional[List[Any]] = None) -> JsonDict:
        return await self.api.get_previous_job_outputs(self.service_id, inputs)

    async def get_job(self) -> JsonDict:
        return await self.api.get_job(self.job_id)

    async def cancel_job(self) -> JsonDict:
        return await self.api.cancel_job(self.job_id)

    async def reset_job(self) -> JsonDict:
        return await self.api.reset_job(self.job_id)

    async def create_job_input(self, data: Any, key: str, stage: Optional[str] = None) -> JsonDict:
        return await self.api.create_job_input(self.job_id, data, key, stage)

    async def get_job_outputs(self) -> JsonDict:
        return await self.api.get_job_outputs(self.job_id)

    async def get_job_output(self, key: str, stage: Optional[str] = None) -> JsonDict:
        return await self.api.get_job_output(self.job_id, key, stage)

    async def get_job_screenshots(self) -> JsonDict:
        return await self.api.get_job_screenshots(self.job_id)

    async def get_job_screenshot(self, id_or_path: str, ext: str = "png") -> bytes:
        if id_or_path and id_or_path.startswith("/"):
            return await self.api.get_job_screenshot(id_or_path)
        return await self.api.get_job_screenshot(self.job_id, id_or_path, ext)

    async def get_job_mimo_logs(self) -> JsonDict:
        return await self.api.get_job_mimo_logs(self.job_id)

    async def get_job_events(self, offset: int = 0) -> JsonDict:
        return await self.api.get_job_events(self.job_id, offset)

    def track_job(
        self,
        on_change: ChangeCallback,
        on_error: Optional[ErrorCallback] = None,
        on_close: Optional[CloseCallback] = None,
        *,
        known_state: Optional[str] = None,
    ) -> Subscription:
        return self.api.track_job(self.job_id, on_change, on_error, on_close, known_state=known_state)

    async def vault_pan(self, pan: str) -> str:
        return await self.vault.vault_pan(pan)
