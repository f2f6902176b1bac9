import contextlib
import logging

import aiohttp_cors
import httpx
from aiohttp import web

from .balance import BalanceChecker
from .dispatcher import Dispatcher, build_client
from .pool import KeyPool
from .stats import UsageRecorder
from .types import ProxyConfig

POOL = web.AppKey("pool", KeyPool)
CONFIG = web.AppKey("config", ProxyConfig)
DISPATCHER = web.AppKey("dispatcher", Dispatcher)
RECORDER = web.AppKey("recorder", UsageRecorder)

DEFAULT_STATS_LIMIT = 50
PROXY_METHODS = ("GET", "HEAD", "POST", "PUT", "PATCH", "DELETE")

logger = logging.getLogger("keyrotator")


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception(f"unhandled error for {request.method} {request.rel_url}")
        return web.json_response(
            {"error": {"message": "internal server error", "details": str(e)}},
            status=500,
        )


async def health(request: web.Request) -> web.Response:
    snapshot = request.app[POOL].snapshot()
    return web.json_response({"upstream": request.app[CONFIG].upstream_base_url, **snapshot})


async def stats(request: web.Request) -> web.Response:
    try:
        limit = int(request.query.get("limit", DEFAULT_STATS_LIMIT))
    except ValueError:
        raise web.HTTPBadRequest(text="limit must be an integer") from None
    key_id = request.query.get("key")
    return web.json_response(request.app[RECORDER].query(limit=limit, key_id=key_id))


async def proxy(request: web.Request) -> web.StreamResponse:
    return await request.app[DISPATCHER].handle(request)


def create_app(
    pool: KeyPool,
    config: ProxyConfig | None = None,
    client: httpx.AsyncClient | None = None,
    recorder: UsageRecorder | None = None,
    balance_checker: BalanceChecker | None = None,
) -> web.Application:
    """Assemble the proxy application.

    A client passed in stays owned by the caller; otherwise one is built from
    the config and closed on cleanup. The balance checker, if any, runs for the
    application's lifetime.
    """
    config = config or ProxyConfig()
    recorder = recorder or UsageRecorder()
    own_client = client is None
    client = client or build_client(config)

    app = web.Application(middlewares=[error_middleware])
    app[POOL] = pool
    app[CONFIG] = config
    app[RECORDER] = recorder
    app[DISPATCHER] = Dispatcher(pool, client, config, recorder)

    async def lifecycle(app: web.Application):
        if balance_checker is not None:
            balance_checker.start()
        yield
        if balance_checker is not None:
            balance_checker.stop()
        if own_client:
            with contextlib.suppress(Exception):
                await client.aclose()

    app.cleanup_ctx.append(lifecycle)

    app.router.add_get("/health", health)
    app.router.add_get("/stats", stats)
    resource = app.router.add_resource(config.path_prefix.rstrip("/") + "/{tail:.*}")
    for method in PROXY_METHODS:
        resource.add_route(method, proxy)

    # OPTIONS on every route is answered here as a CORS preflight
    cors = aiohttp_cors.setup(
        app,
        defaults={
            "*": aiohttp_cors.ResourceOptions(
                allow_credentials=False, expose_headers="*", allow_headers="*"
            )
        },
    )
    for route in list(app.router.routes()):
        cors.add(route)
    return app
