from __future__ import annotations

import logging

from aiohttp import web

from .state import BotState

log = logging.getLogger("web")


def build_app(state: BotState, name: str = "Momentum Signal Bot") -> web.Application:
    async def index(request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": name,
                "users": len(state.subscribers),
                "activeSignals": len(state.open_signals()),
            }
        )

    app = web.Application()
    app.router.add_get("/", index)
    return app


async def start_web(state: BotState, host: str, port: int, name: str = "Momentum Signal Bot") -> web.AppRunner:
    runner = web.AppRunner(build_app(state, name))
    await runner.setup()
    site = web.TCPSite(runner, host, int(port))
    await site.start()
    log.info("keepalive_listening host=%s port=%s", host, port)
    return runner
