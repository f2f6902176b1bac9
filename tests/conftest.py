import httpx
import pytest

from keyrotator import KeyPool, ProxyConfig, RetryConfig, create_app


class FakeUpstream:
    """httpx MockTransport handler that records requests and replays scripted responses."""

    def __init__(self, respond):
        self.respond = respond
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self.respond(request)
        if isinstance(result, BaseException):
            raise result
        return result

    def tokens(self) -> list[str]:
        return [r.headers["authorization"].split(" ", 1)[1] for r in self.requests]


@pytest.fixture
def build():
    """Factory: build(credentials, respond, **config) -> (app, pool, upstream)."""

    def _build(
        credentials, respond, cooldown_seconds=60.0, max_attempts=6, backoff=0.0, **config
    ):
        pool = KeyPool(credentials, cooldown_seconds=cooldown_seconds)
        upstream = FakeUpstream(respond)
        client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        cfg = ProxyConfig(retry=RetryConfig(max_attempts=max_attempts, backoff=backoff), **config)
        return create_app(pool, cfg, client=client), pool, upstream

    return _build
