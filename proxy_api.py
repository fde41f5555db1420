from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from logger import get_logger
from session_store import AUTH_COOKIE
from settings_schema import GatewaySettings

logger = get_logger("proxy")

SERVER_SESSION_COOKIES = ("user_phone", "is_logged_in", "PHPSESSID")


class ProxyAPI:
    """Forwards ``{mdl, act}`` operations to the legacy FitTrack endpoint."""

    def __init__(
        self,
        settings: Optional[GatewaySettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or GatewaySettings()
        self.transport = transport
        self.app = FastAPI(
            title="FitTrack Proxy",
            description="Single proxy endpoint in front of the legacy FitTrack API",
        )
        self._setup_routes()

    @staticmethod
    def clear_server_cookies(response: JSONResponse) -> None:
        """Expire the session cookies the legacy backend sets."""
        for name in SERVER_SESSION_COOKIES:
            response.delete_cookie(name, path="/")

    @staticmethod
    def bearer_token(request: Request) -> Optional[str]:
        """Token from the Authorization header, else from the auth cookie."""
        header = request.headers.get("authorization", "")
        if header.lower().startswith("bearer "):
            token = header[7:].strip()
            if token:
                return token
        return request.cookies.get(AUTH_COOKIE) or None

    async def forward(self, body: dict, token: Optional[str]) -> JSONResponse:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.proxy_timeout, transport=self.transport
            ) as client:
                resp = await client.post(self.settings.api_url, json=body, headers=headers)
            if resp.is_error:
                return JSONResponse(
                    {"error": f"API responded with status: {resp.status_code}"},
                    status_code=resp.status_code,
                )
            return JSONResponse(resp.json())
        except httpx.TimeoutException as e:
            logger.error("Proxy timeout: %s", e)
            return JSONResponse({"error": "API request timed out"}, status_code=504)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Proxy error: %s", e)
            return JSONResponse(
                {"error": "Failed to fetch data from API"}, status_code=500
            )

    def _setup_routes(self) -> None:
        @self.app.get(
            "/health",
            summary="Health check",
            description="Verify the proxy is up.",
        )
        def health():
            return {"status": "ok"}

        @self.app.post(
            self.settings.proxy_path,
            summary="Proxy",
            description="Tunnel one {mdl, act} operation to the legacy API.",
        )
        async def proxy(request: Request):
            try:
                body = await request.json()
            except ValueError as e:
                logger.error("Proxy error: %s", e)
                return JSONResponse(
                    {"error": "Failed to fetch data from API"}, status_code=500
                )
            if not isinstance(body, dict):
                return JSONResponse(
                    {"error": "Failed to fetch data from API"}, status_code=500
                )
            return await self.forward(body, self.bearer_token(request))

        @self.app.post(
            self.settings.logout_path,
            summary="Logout",
            description="Clear the cookies set by the legacy backend.",
        )
        def logout():
            try:
                response = JSONResponse({"success": True})
                self.clear_server_cookies(response)
                return response
            except Exception as e:
                logger.error("Logout error: %s", e)
                return JSONResponse(
                    {"success": False, "error": "Logout failed"}, status_code=500
                )


def create_app(settings: Optional[GatewaySettings] = None) -> FastAPI:
    return ProxyAPI(settings).app


if __name__ == "__main__":
    import uvicorn

    from config import load_settings

    uvicorn.run(create_app(load_settings()))
