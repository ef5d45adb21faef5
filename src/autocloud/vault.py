"""Card number vaulting against the vault service."""

from __future__ import annotations

from typing import Optional

import httpx

from autocloud.config import ClientConfig
from autocloud.http import Requester
from autocloud.utils.errors import ParseError
from autocloud.utils.logging import LoggerFactory

logger = LoggerFactory.get_logger("vault")


class VaultClient:
    def __init__(self, config: ClientConfig, *, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self._requester = Requester(
            config.vault_url,
            config.require_token(),
            timeout=config.request_timeout,
            http_client=http_client,
        )

    async def vault_pan(self, pan: str) -> str:
        """Exchange a card number for a temporary PAN token.

        The vault wants a one-time password first, then the PAN is stored and
        finally swapped for a short-lived token that can be sent as job input.
        """
        with logger.operation_context("vault_pan"):
            otp = await self._requester.request("otp", method="POST", operation="vault_pan")
            stored = await self._requester.request(
                "pan",
                method="POST",
                body={"otp": _field(otp, "id"), "pan": pan},
                operation="vault_pan",
            )
            temporary = await self._requester.request(
                "pan/temporary",
                method="POST",
                body={"panId": _field(stored, "id"), "key": _field(stored, "key")},
                operation="vault_pan",
            )
            return _field(temporary, "panToken")


def _field(body: object, name: str) -> str:
    if not isinstance(body, dict) or name not in body:
        raise ParseError(f"Vault response is missing '{name}'", operation="vault_pan")
    return body[name]
