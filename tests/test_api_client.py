"""Integration-style tests for the API client against a local aiohttp app."""

import asyncio
import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List

import pytest
import pytest_asyncio
from aiohttp import web

from autocloud import (
    ApiClient,
    ClientConfig,
    ClientError,
    ConfigurationError,
    ParseError,
    ServerError,
    create_client_sdk,
    create_end_user_sdk,
)
from autocloud.jobs.fetcher import HttpJobFetcher

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


@dataclass
class FakeApi:
    base_url: str
    requests: List[Dict[str, Any]] = field(default_factory=list)
    job_states: Dict[str, List[str]] = field(default_factory=dict)


@pytest_asyncio.fixture
async def fake_api():
    """Spin up a temporary aiohttp app that mimics the job API and the vault."""
    api = FakeApi(base_url="")

    async def record(request: web.Request) -> Any:
        body = await request.json() if request.can_read_body else None
        api.requests.append(
            {
                "method": request.method,
                "path": request.path,
                "query": dict(request.query),
                "authorization": request.headers.get("Authorization"),
                "content_type": request.headers.get("Content-Type"),
                "body": body,
            }
        )
        return body

    async def get_job(request: web.Request) -> web.StreamResponse:
        await record(request)
        job_id = request.match_info["job_id"]
        if job_id == "missing":
            return web.json_response({"message": "Job not found"}, status=404)
        if job_id == "broken":
            return web.json_response({"message": "Service unavailable"}, status=503)
        if job_id == "moved":
            raise web.HTTPFound("/api/jobs/job-9")
        if job_id == "slow":
            await asyncio.sleep(0.5)
        if job_id == "garbage":
            return web.Response(text="<html>oops</html>", content_type="text/html")
        states = api.job_states.get(job_id, ["processing"])
        state = states.pop(0) if len(states) > 1 else states[0]
        return web.json_response({"object": "job", "id": job_id, "state": state, "updatedAt": 1700000000000})

    async def echo(request: web.Request) -> web.Response:
        body = await record(request)
        return web.json_response({"path": request.path, "query": dict(request.query), "body": body})

    async def create_job(request: web.Request) -> web.Response:
        body = await record(request)
        return web.json_response({"id": "job-new", "state": "processing", **body}, status=201)

    async def screenshot(request: web.Request) -> web.Response:
        await record(request)
        return web.Response(body=PNG_BYTES, content_type="image/png")

    async def vault_otp(request: web.Request) -> web.Response:
        await record(request)
        return web.json_response({"id": "otp-1"})

    async def vault_pan(request: web.Request) -> web.Response:
        body = await record(request)
        assert body == {"otp": "otp-1", "pan": "4111111111111111"}
        return web.json_response({"id": "pan-1", "key": "key-1"})

    async def vault_temporary(request: web.Request) -> web.Response:
        body = await record(request)
        assert body == {"panId": "pan-1", "key": "key-1"}
        return web.json_response({"panToken": "pan-token-1"})

    app = web.Application()
    app.router.add_get("/api/services", echo)
    app.router.add_get("/api/services/{service_id}", echo)
    app.router.add_post("/api/services/{service_id}/previous-job-outputs", echo)
    app.router.add_get("/api/jobs", echo)
    app.router.add_post("/api/jobs", create_job)
    app.router.add_get("/api/jobs/{job_id}", get_job)
    app.router.add_post("/api/jobs/{job_id}/cancel", echo)
    app.router.add_post("/api/jobs/{job_id}/reset", echo)
    app.router.add_post("/api/jobs/{job_id}/inputs", echo)
    app.router.add_get("/api/jobs/{job_id}/outputs", echo)
    app.router.add_get("/api/jobs/{job_id}/outputs/{key}", echo)
    app.router.add_get("/api/jobs/{job_id}/outputs/{key}/{stage}", echo)
    app.router.add_get("/api/jobs/{job_id}/screenshots", echo)
    app.router.add_get("/api/jobs/{job_id}/screenshots/{name}", screenshot)
    app.router.add_get("/api/jobs/{job_id}/mimo-logs", echo)
    app.router.add_get("/api/jobs/{job_id}/end-user", echo)
    app.router.add_get("/api/jobs/{job_id}/events", echo)
    app.router.add_post("/vault/otp", vault_otp)
    app.router.add_post("/vault/pan", vault_pan)
    app.router.add_post("/vault/pan/temporary", vault_temporary)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = runner.addresses[0][1]
    api.base_url = f"http://127.0.0.1:{port}"

    yield api

    await runner.cleanup()


def _config(api: FakeApi, **overrides: Any) -> ClientConfig:
    return ClientConfig(
        token="secret-token",
        api_url=f"{api.base_url}/api",
        vault_url=f"{api.base_url}/vault",
        **overrides,
    )


@pytest.mark.asyncio
async def test_requests_carry_basic_auth_and_json_body(fake_api):
    client = ApiClient(_config(fake_api))

    job = await client.create_job({"serviceId": "svc-1", "input": {"url": "https://example.com"}})

    assert job["id"] == "job-new"
    request = fake_api.requests[-1]
    expected = base64.b64encode(b"secret-token:").decode("ascii")
    assert request["authorization"] == f"Basic {expected}"
    assert request["content_type"] == "application/json"
    assert request["body"]["serviceId"] == "svc-1"


@pytest.mark.asyncio
async def test_get_jobs_drops_unset_query_parameters(fake_api):
    client = ApiClient(_config(fake_api))

    response = await client.get_jobs({"state": "success", "limit": 10, "serviceId": None})

    assert response["query"] == {"state": "success", "limit": "10"}


@pytest.mark.asyncio
async def test_routes_for_job_resources(fake_api):
    client = ApiClient(_config(fake_api))

    await client.get_services()
    await client.get_service("svc-1")
    await client.get_previous_job_outputs("svc-1")
    await client.cancel_job("job-1")
    await client.reset_job("job-1")
    await client.create_job_input("job-1", {"name": "Ada"}, "passenger", "stage-1")
    await client.get_job_outputs("job-1")
    await client.get_job_output("job-1", "price")
    await client.get_job_output("job-1", "price", "checkout")
    await client.get_job_screenshots("job-1")
    await client.get_job_mimo_logs("job-1")
    await client.get_job_end_user("job-1")
    await client.get_job_events("job-1", 5)

    seen = [(r["method"], r["path"]) for r in fake_api.requests]
    assert seen == [
        ("GET", "/api/services"),
        ("GET", "/api/services/svc-1"),
        ("POST", "/api/services/svc-1/previous-job-outputs"),
        ("POST", "/api/jobs/job-1/cancel"),
        ("POST", "/api/jobs/job-1/reset"),
        ("POST", "/api/jobs/job-1/inputs"),
        ("GET", "/api/jobs/job-1/outputs"),
        ("GET", "/api/jobs/job-1/outputs/price"),
        ("GET", "/api/jobs/job-1/outputs/price/checkout"),
        ("GET", "/api/jobs/job-1/screenshots"),
        ("GET", "/api/jobs/job-1/mimo-logs"),
        ("GET", "/api/jobs/job-1/end-user"),
        ("GET", "/api/jobs/job-1/events"),
    ]
    assert fake_api.requests[2]["body"] == {"inputs": []}
    assert fake_api.requests[5]["body"] == {"key": "passenger", "stage": "stage-1", "data": {"name": "Ada"}}
    assert fake_api.requests[-1]["query"] == {"offset": "5"}


@pytest.mark.asyncio
async def test_screenshots_are_returned_as_bytes(fake_api):
    client = ApiClient(_config(fake_api))

    by_id = await client.get_job_screenshot("job-1", "shot-1")
    by_path = await client.get_job_screenshot("/jobs/job-1/screenshots/shot-2.png")

    assert by_id == PNG_BYTES
    assert by_path == PNG_BYTES
    assert fake_api.requests[0]["path"] == "/api/jobs/job-1/screenshots/shot-1.png"
    assert fake_api.requests[1]["path"] == "/api/jobs/job-1/screenshots/shot-2.png"


@pytest.mark.asyncio
async def test_http_failures_are_classified(fake_api):
    client = ApiClient(_config(fake_api))

    with pytest.raises(ClientError) as client_exc:
        await client.get_job("missing")
    assert client_exc.value.status == 404
    assert client_exc.value.message == "Job not found"
    assert client_exc.value.retryable is False

    with pytest.raises(ServerError) as server_exc:
        await client.get_job("broken")
    assert server_exc.value.status == 503
    assert server_exc.value.retryable is True

    with pytest.raises(ParseError):
        await client.get_job("garbage")


@pytest.mark.asyncio
async def test_transport_failure_is_a_server_error():
    # Nothing listens on port 1 of the loopback interface.
    client = ApiClient(ClientConfig(token="t", api_url="http://127.0.0.1:1", request_timeout=2.0))

    with pytest.raises(ServerError) as exc_info:
        await client.get_job("job-1")

    assert exc_info.value.status is None


@pytest.mark.asyncio
async def test_argument_validation(fake_api):
    client = ApiClient(_config(fake_api))

    with pytest.raises(TypeError):
        await client.get_job(42)  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        await client.get_job_events("job-1", -1)
    with pytest.raises(ValueError):
        await client.get_job_events("job-1", 1.5)  # type: ignore[arg-type]
    assert fake_api.requests == []


@pytest.mark.asyncio
async def test_track_job_polls_until_terminal(fake_api):
    fake_api.job_states["J1"] = ["pending", "pending", "processing", "success"]
    client = ApiClient(_config(fake_api, poll_interval=0.01))
    changes: List[tuple] = []
    closed = asyncio.Event()

    async with client:
        client.track_job(
            "J1",
            lambda current, previous: changes.append((current.state, previous.state if previous else None)),
            on_close=closed.set,
            known_state="pending",
        )
        await asyncio.wait_for(closed.wait(), timeout=5.0)

    assert changes == [("processing", "pending"), ("success", "processing")]
    job_fetches = [r for r in fake_api.requests if r["path"] == "/api/jobs/J1"]
    assert len(job_fetches) == 4


@pytest.mark.asyncio
async def test_track_job_reports_client_errors(fake_api):
    client = ApiClient(_config(fake_api, poll_interval=0.01))
    errors: List[BaseException] = []
    closed = asyncio.Event()

    client.track_job("missing", lambda current, previous: None, errors.append, closed.set)
    await asyncio.wait_for(closed.wait(), timeout=5.0)

    assert len(errors) == 1
    assert isinstance(errors[0], ClientError)
    assert not client.job_tracker().is_tracking("missing")
    await client.aclose()


@pytest.mark.asyncio
async def test_vault_pan_exchanges_card_for_token(fake_api):
    sdk = create_end_user_sdk(_config(fake_api), job_id="job-1", service_id="svc-1")

    token = await sdk.vault_pan("4111111111111111")

    assert token == "pan-token-1"
    assert [r["path"] for r in fake_api.requests] == ["/vault/otp", "/vault/pan", "/vault/pan/temporary"]


@pytest.mark.asyncio
async def test_end_user_sdk_is_bound_to_one_job(fake_api):
    sdk = create_end_user_sdk(_config(fake_api), job_id="job-7", service_id="svc-3")

    job = await sdk.get_job()
    await sdk.get_service()
    await sdk.create_job_input({"ok": True}, "confirmation")
    await sdk.get_job_output("price", "final")
    shot = await sdk.get_job_screenshot("shot-1")
    await sdk.get_job_events()
    await sdk.aclose()

    assert job["id"] == "job-7"
    assert shot == PNG_BYTES
    assert [r["path"] for r in fake_api.requests] == [
        "/api/jobs/job-7",
        "/api/services/svc-3",
        "/api/jobs/job-7/inputs",
        "/api/jobs/job-7/outputs/price/final",
        "/api/jobs/job-7/screenshots/shot-1.png",
        "/api/jobs/job-7/events",
    ]
    assert fake_api.requests[2]["body"] == {"key": "confirmation", "data": {"ok": True}}


def test_sdk_factories_validate_required_options():
    with pytest.raises(ConfigurationError):
        create_client_sdk(ClientConfig())
    with pytest.raises(ConfigurationError):
        create_end_user_sdk(ClientConfig(token="t"), job_id=None, service_id="svc")
    with pytest.raises(ConfigurationError):
        create_end_user_sdk(ClientConfig(token="t"), job_id="job", service_id="")

    assert isinstance(create_client_sdk(ClientConfig(token="t")), ApiClient)


@pytest.mark.asyncio
async def test_http_fetcher_timeout_is_a_server_error(fake_api):
    fetcher = HttpJobFetcher(ApiClient(_config(fake_api)), timeout=0.05)

    with pytest.raises(ServerError):
        await fetcher.fetch("slow")

    snapshot = await fetcher.fetch("job-1")
    assert snapshot.id == "job-1"
    assert snapshot.state == "processing"


@pytest.mark.asyncio
async def test_raw_calls_relative_paths(fake_api):
    client = ApiClient(_config(fake_api))

    response = await client.raw("/jobs", query={"limit": 1, "category": None})

    assert response["path"] == "/api/jobs"
    assert response["query"] == {"limit": "1"}
    with pytest.raises(TypeError):
        await client.raw(None)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_redirects_are_followed(fake_api):
    client = ApiClient(_config(fake_api))

    job = await client.get_job("moved")

    assert job["id"] == "job-9"
    assert [r["path"] for r in fake_api.requests] == ["/api/jobs/moved", "/api/jobs/job-9"]
    assert fake_api.requests[1]["authorization"] == fake_api.requests[0]["authorization"]
