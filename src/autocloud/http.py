"""
Request plumbing shared by the API and vault clients.

Builds authenticated requests against a base URL and turns every failure into
one of ``ClientError``, ``ServerError`` or ``ParseError`` so callers (the job
tracker in particular) can decide whether to retry.
"""

from __future__ import annotations

import base64
import json
from typing import Any, Dict, Mapping, Optional

import httpx

from autocloud.utils.errors import ConfigurationError, ParseError, ServerError, classify_status
from autocloud.utils.logging import ContextKeys, LoggerFactory

logger = LoggerFactory.get_logger("http")

JsonDict = Dict[str, Any]
REDACTED_HEADERS = {"authorization"}


def basic_auth_header(token: str) -> str:
    """The API authenticates with the token as username and an empty password."""
    encoded = base64.b64encode(f"{token}:".encode("utf-8")).decode("ascii")
    return f"Basic {encoded}"


def build_query(parameters: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Drop unset parameters and stringify the rest."""
    if not parameters:
        return {}
    query: Dict[str, str] = {}
    for key, value in parameters.items():
        if value is None:
            continue
        if isinstance(value, bool):
            query[key] = "true" if value else "false"
        else:
            query[key] = str(value)
    return query


def canonical_base_url(base_url: str) -> str:
    return base_url if base_url.endswith("/") else f"{base_url}/"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return "Unexpected response"
    if isinstance(body, dict) and isinstance(body.get("message"), str) and body["message"]:
        return body["message"]
    return "Unexpected response"


class Requester:
    """Sends authenticated JSON requests relative to one base URL."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str],
        *,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        if not token:
            raise ConfigurationError("No token.", setting="token")
        self.base_url = canonical_base_url(base_url)
        self._token = token
        self._timeout = timeout
        self._http_client = http_client

    def url_for(self, path: str) -> str:
        return self.base_url + path.lstrip("/")

    def _headers(self, extra: Optional[Mapping[str, str]], has_body: bool) -> Dict[str, str]:
        headers = dict(extra or {})
        headers["Authorization"] = basic_auth_header(self._token)
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        query: Optional[Mapping[str, Any]] = None,
        body: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        parse: bool = True,
        operation: Optional[str] = None,
    ) -> Any:
        """Perform one request.

        Returns the decoded JSON body, or the raw bytes when ``parse`` is False.
        """
        url = self.url_for(path)
        content = None if body is None else json.dumps(body)
        request_headers = self._headers(headers, content is not None)
        params = build_query(query)

        logger.debug(
            "api_request",
            extra_context={
                "method": method,
                ContextKeys.ENDPOINT: url,
                "query": params,
                "headers": {k: ("[REDACTED]" if k.lower() in REDACTED_HEADERS else v) for k, v in request_headers.items()},
            },
        )

        try:
            if self._http_client is not None:
                response = await self._http_client.request(
                    method,
                    url,
                    params=params,
                    content=content,
                    headers=request_headers,
                    timeout=self._timeout,
                    follow_redirects=True,
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                    response = await client.request(method, url, params=params, content=content, headers=request_headers)
        except httpx.TransportError as exc:
            logger.warning(
                "api_request_transport_error",
                extra_context={"method": method, ContextKeys.ENDPOINT: url},
                exception=exc,
            )
            raise ServerError(
                f"Transport failure: {exc}",
                status=None,
                endpoint=url,
                operation=operation,
            ) from exc

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(
                "api_request_failed",
                extra_context={
                    "method": method,
                    ContextKeys.ENDPOINT: url,
                    ContextKeys.HTTP_STATUS: response.status_code,
                    "response_text": response.text[:500] if response.content else None,
                },
            )
            raise classify_status(response.status_code, message, endpoint=url, operation=operation)

        if not parse:
            return response.content

        if not response.content:
            return {}
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ParseError(
                "Response body is not valid JSON",
                status=response.status_code,
                endpoint=url,
                operation=operation,
            ) from exc
