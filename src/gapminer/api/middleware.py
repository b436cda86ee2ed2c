# Usage recording middleware.
# Created: 2026-10-14
#
# Records one usage event per request made with a known API key, after the
# response has been sent. Also copies rate-limit headers onto the response.
# Written as plain ASGI so the recording happens once the body is out.

from __future__ import annotations

import logging
import time

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)


class UsageRecordingMiddleware:
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        state = scope.setdefault("state", {})
        started = time.perf_counter()
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                rl_headers = state.get("rate_limit_headers")
                if rl_headers:
                    headers = MutableHeaders(scope=message)
                    for name, value in rl_headers.items():
                        headers.setdefault(name, value)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            key_id = state.get("metered_key_id")
            if key_id is not None:
                elapsed_ms = (time.perf_counter() - started) * 1000
                meter = scope["app"].state.usage_meter
                # UsageMeter.record() logs and drops its own failures
                await meter.record(
                    key_id,
                    scope["path"],
                    scope["method"],
                    status_code,
                    elapsed_ms,
                )
