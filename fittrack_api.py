from __future__ import annotations

from typing import Optional

from gateway import GatewayResponse, RequestGateway
from logger import get_logger

logger = get_logger("api")


class _Facade:
    model = ""

    def __init__(self, gateway: RequestGateway) -> None:
        self.gateway = gateway

    async def _records(self, action: str, payload: Optional[dict] = None) -> list:
        resp = await self.gateway.call(self.model, action, payload)
        return resp.records

    async def _send(
        self, action: str, payload: Optional[dict] = None
    ) -> GatewayResponse:
        return await self.gateway.call(self.model, action, payload)


class LoginApi(_Facade):
    model = "login"

    async def request_otp(self, phone: str) -> GatewayResponse:
        return await self._send("otp", {"phone": phone, "id": "all"})

    async def verify_otp(self, phone: str, code: str) -> GatewayResponse:
        """Verify the one-time code and open a session from its token."""
        resp = await self._send(
            "verify", {"phone": phone, "code": code, "id": "all"}
        )
        data = resp.data if isinstance(resp.data, dict) else {}
        token = data.get("access_token") or data.get("token")
        if resp.success and token:
            store = self.gateway.store
            store.set(token, issued_via="login")
            store.remember_user(phone, data.get("user_id"))
            self.gateway.expiry.mark_authenticated()
        elif resp.success:
            logger.warning("No access token in verification response")
        return resp

    async def logout(self) -> Optional[GatewayResponse]:
        epoch = self.gateway.store.epoch
        resp = None
        try:
            resp = await self._send("logout", {"id": "all"})
        finally:
            await self.gateway.expiry.logout(epoch)
        return resp

    async def ping(self) -> GatewayResponse:
        return await self._send("ping")


class DashboardApi(_Facade):
    model = "dashboard"

    async def get(self) -> list:
        return await self._records("get")


class SettingsApi(_Facade):
    model = "settings"

    async def get(self) -> list:
        return await self._records("get")

    async def get_user_settings(self) -> list:
        resp = await self.gateway.call("users", "get_settings")
        return resp.records

    async def set(self, settings: dict) -> GatewayResponse:
        return await self._send("set", settings)

    async def change_password(
        self, current_password: str, new_password: str
    ) -> GatewayResponse:
        return await self.gateway.call(
            "users",
            "change_password",
            {"current_password": current_password, "new_password": new_password},
        )


class ReportingsApi(_Facade):
    model = "reportings"

    async def list(self, search: str = "") -> list:
        return await self._records("list", {"search": search})

    async def get(self, id: str) -> list:
        return await self._records("get", {"id": id})


class _CrudFacade(_Facade):
    async def list(self, search: str = "") -> list:
        return await self._records("list", {"search": search})

    async def get(self, id: str) -> list:
        return await self._records("get", {"id": id})

    async def set(self, data: dict) -> GatewayResponse:
        return await self._send("set", data)

    async def delete(self, id: str) -> GatewayResponse:
        return await self._send("del", {"id": id})


class GroupsApi(_CrudFacade):
    model = "groups"


class TraineesApi(_CrudFacade):
    model = "trainees"


class FitTrackApi:
    """All named operations over one gateway."""

    def __init__(self, gateway: RequestGateway) -> None:
        self.gateway = gateway
        self.login = LoginApi(gateway)
        self.dashboard = DashboardApi(gateway)
        self.settings = SettingsApi(gateway)
        self.reportings = ReportingsApi(gateway)
        self.groups = GroupsApi(gateway)
        self.trainees = TraineesApi(gateway)
