from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from expiry import SessionExpiryHandler
from logger import get_logger
from normalizer import backend_error, is_success, normalize, requires_relogin
from session_store import SessionStore

logger = get_logger("gateway")

# 419 and 440 are session-timeout statuses some legacy stacks send instead of 401
AUTH_FAILURE_STATUSES = {401, 419, 440}


@dataclass
class GatewayResponse:
    status: int
    data: Any

    @property
    def records(self) -> list:
        return normalize(self.data)

    @property
    def success(self) -> bool:
        return is_success(self.data)


class RequestGateway:
    """Sends ``{mdl, act}`` operations through the proxy endpoint."""

    def __init__(
        self,
        store: SessionStore,
        expiry: Optional[SessionExpiryHandler] = None,
        base_url: str = "http://localhost:3000",
        *,
        proxy_path: str = "/api/proxy",
        timeout: float = 15.0,
        user_type: str = "coach",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.store = store
        self.expiry = expiry if expiry is not None else SessionExpiryHandler(store)
        self.proxy_path = proxy_path
        self.user_type = user_type
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def __aenter__(self) -> "RequestGateway":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    def build_body(
        self, model: str, action: str, payload: Optional[dict] = None
    ) -> dict:
        body = {"mdl": model, "act": action, **(payload or {})}
        body.setdefault("user_type", self.user_type)
        token = self.store.get()
        if model != "login" and token:
            body["access_token"] = token
        phone = self.store.storage.get_item("user_phone")
        user_id = self.store.storage.get_item("user_id")
        if phone and not body.get("phone"):
            body["phone"] = phone.strip()
        if not body.get("user_id"):
            if user_id:
                body["user_id"] = user_id
            elif phone:
                body["user_id"] = phone.strip()
        if action == "get" and not body.get("id"):
            body["id"] = "all"
        return body

    async def call(
        self, model: str, action: str, payload: Optional[dict] = None
    ) -> GatewayResponse:
        epoch = self.store.epoch
        token = self.store.get()
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        body = self.build_body(model, action, payload)
        logger.debug(
            "Request %s/%s (authenticated=%s)", model, action, token is not None
        )

        try:
            resp = await self.client.post(self.proxy_path, json=body, headers=headers)
        except httpx.TransportError as e:
            logger.error("Network error on %s/%s: %s", model, action, e)
            raise

        if resp.status_code in AUTH_FAILURE_STATUSES:
            logger.warning("%s/%s rejected with %d", model, action, resp.status_code)
            await self.expiry.handle_unauthorized(epoch, f"HTTP {resp.status_code}")
        elif resp.is_error:
            logger.error("%s/%s failed with %d", model, action, resp.status_code)
        resp.raise_for_status()

        try:
            data = resp.json()
        except ValueError:
            logger.warning("%s/%s returned a non-JSON body", model, action)
            data = None

        if requires_relogin(data):
            await self.expiry.handle_relogin_required(epoch, backend_error(data) or "")
        return GatewayResponse(status=resp.status_code, data=data)
