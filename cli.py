import argparse
import asyncio
import json
import logging
import time

import requests

from config import load_settings
from expiry import Navigator, SessionExpiryHandler
from gateway import RequestGateway
from logger import setup_logger
from session_store import LocalStorage, SessionStore
from settings_schema import GatewaySettings


def build_store(settings: GatewaySettings) -> SessionStore:
    return SessionStore(
        LocalStorage(settings.storage_path),
        cookie_max_age=settings.cookie_max_age,
    )


def ping(api_url: str, runs: int = 1) -> None:
    """POST ``{mdl: login, act: ping}`` straight to the legacy API."""
    times: list[float] = []
    for _ in range(runs):
        t0 = time.time()
        resp = requests.post(api_url, json={"mdl": "login", "act": "ping"}, timeout=10)
        times.append(time.time() - t0)
        print(f"STATUS: {resp.status_code}")
        print(resp.text)
    avg = sum(times) / len(times)
    print(f"Average ping time over {runs} runs: {avg:.4f}s")


async def call_operation(
    settings: GatewaySettings,
    base_url: str,
    model: str,
    action: str,
    payload: dict,
    transport=None,
) -> list:
    store = build_store(settings)
    navigator = Navigator(on_restart=lambda url: print(f"Session ended, sign in again ({url})"))
    expiry = SessionExpiryHandler(store, navigator, settings.login_path)
    async with RequestGateway(
        store,
        expiry,
        base_url,
        proxy_path=settings.proxy_path,
        timeout=settings.request_timeout,
        user_type=settings.user_type,
        transport=transport,
    ) as gateway:
        resp = await gateway.call(model, action, payload)
    return resp.records


def serve(settings: GatewaySettings, host: str, port: int) -> None:
    import uvicorn

    from proxy_api import create_app

    uvicorn.run(create_app(settings), host=host, port=port)


def main() -> None:
    parser = argparse.ArgumentParser(description="FitTrack gateway commands")
    parser.add_argument("--config", default="settings.yaml")
    parser.add_argument("--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    png = sub.add_parser("ping")
    png.add_argument("--runs", type=int, default=1)

    srv = sub.add_parser("serve")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=3000)

    cal = sub.add_parser("call")
    cal.add_argument("model")
    cal.add_argument("action")
    cal.add_argument("--data", default="{}")
    cal.add_argument("--url", default="http://localhost:3000")

    sub.add_parser("token")
    sub.add_parser("logout")

    args = parser.parse_args()
    setup_logger(level=logging.DEBUG if args.verbose else logging.INFO)
    settings = load_settings(args.config)

    if args.cmd == "ping":
        ping(settings.api_url, args.runs)
    elif args.cmd == "serve":
        serve(settings, args.host, args.port)
    elif args.cmd == "call":
        payload = json.loads(args.data)
        if not isinstance(payload, dict):
            parser.error("--data must be a JSON object")
        records = asyncio.run(
            call_operation(settings, args.url, args.model, args.action, payload)
        )
        print(json.dumps(records, indent=2))
    elif args.cmd == "token":
        store = build_store(settings)
        print("logged in" if store.get() else "logged out")
        print(f"initial route: {store.initial_route(settings.login_path)}")
    elif args.cmd == "logout":
        build_store(settings).clear()
        print("Session cleared")


if __name__ == "__main__":
    main()
