import asyncio
import logging
import math
import time

import httpx
from aiohttp import web

from .policies import TRANSPORT_FAILURE, Outcome, classify_status, describe_status
from .pool import KeyPool
from .state import KeyRecord
from .stats import UsageRecorder
from .types import ProxyConfig

# Inbound headers never sent upstream. The body is buffered and re-framed by httpx,
# and accept-encoding is left to httpx so it only negotiates encodings it can decode.
DROP_REQUEST_HEADERS = frozenset(
    {
        "host",
        "content-length",
        "transfer-encoding",
        "connection",
        "keep-alive",
        "proxy-connection",
        "te",
        "trailer",
        "upgrade",
        "authorization",
        "accept-encoding",
    }
)
# Upstream headers not copied back; aiohttp re-frames the body and httpx has decoded it
DROP_RESPONSE_HEADERS = frozenset(
    {"transfer-encoding", "content-encoding", "content-length", "connection", "keep-alive"}
)
# CORS is answered by this server, not the upstream
CORS_RESPONSE_PREFIX = "access-control-"
EVENT_STREAM = "text/event-stream"
DEFAULT_CONTENT_TYPE = "application/json"


def build_client(config: ProxyConfig) -> httpx.AsyncClient:
    """Shared upstream client; only the connect phase is bounded unless configured."""
    timeout = httpx.Timeout(config.read_timeout, connect=config.connect_timeout)
    return httpx.AsyncClient(timeout=timeout, follow_redirects=False)


class Dispatcher:
    """Runs the attempt loop for one inbound proxy request at a time (many concurrently)."""

    def __init__(
        self,
        pool: KeyPool,
        client: httpx.AsyncClient,
        config: ProxyConfig | None = None,
        recorder: UsageRecorder | None = None,
    ):
        self.pool = pool
        self.client = client
        self.config = config or ProxyConfig()
        self.recorder = recorder
        self._logger = logging.getLogger("keyrotator")

    # ---------- request shaping ----------

    def upstream_url(self, request: web.Request) -> str:
        path = request.rel_url.raw_path
        prefix = self.config.path_prefix.rstrip("/")
        if prefix and (path == prefix or path.startswith(prefix + "/")):
            path = path[len(prefix) :]
        url = f"{self.config.upstream_base_url.rstrip('/')}/{path.lstrip('/')}"
        query = request.rel_url.raw_query_string
        return f"{url}?{query}" if query else url

    def forward_headers(self, inbound) -> httpx.Headers:
        headers = httpx.Headers(
            [(k, v) for k, v in inbound.items() if k.lower() not in DROP_REQUEST_HEADERS]
        )
        if "content-type" not in headers:
            headers["Content-Type"] = DEFAULT_CONTENT_TYPE
        if "accept" not in headers:
            headers["Accept"] = DEFAULT_CONTENT_TYPE
        return headers

    def _with_credential(self, headers: httpx.Headers, record: KeyRecord) -> httpx.Headers:
        auth = self.config.auth
        out = headers.copy()
        out[auth.header] = f"{auth.scheme} {record.credential}".strip()
        return out

    def _is_event_stream(self, response: httpx.Response) -> bool:
        return self.config.enable_streaming and EVENT_STREAM in response.headers.get(
            "content-type", ""
        )

    def _response_headers(self, upstream: httpx.Response, record: KeyRecord) -> list:
        headers = [
            (k, v)
            for k, v in upstream.headers.multi_items()
            if k.lower() not in DROP_RESPONSE_HEADERS
            and not k.lower().startswith(CORS_RESPONSE_PREFIX)
        ]
        headers.append((self.config.key_id_header, record.id))
        return headers

    def _record(
        self, record: KeyRecord, status: int | None, started: float, error: str | None
    ) -> None:
        if self.recorder is not None:
            self.recorder.record(record.id, status, (time.monotonic() - started) * 1000, error)

    # ---------- entry point ----------

    async def handle(self, request: web.Request) -> web.StreamResponse:
        try:
            return await self._dispatch(request)
        except asyncio.CancelledError:
            # Client went away: not a key health signal, nothing is reported or retried
            self._logger.debug(f"caller disconnected; abandoning {request.method} {request.rel_url}")
            raise

    async def _dispatch(self, request: web.Request) -> web.StreamResponse:
        url = self.upstream_url(request)
        body = await request.read() if request.body_exists else b""
        base_headers = self.forward_headers(request.headers)
        retry = self.config.retry
        last_error: str | None = None

        for attempt in range(1, retry.max_attempts + 1):
            record = self.pool.select_usable()
            if record is None:
                return self._keys_unavailable(attempt - 1)

            self._logger.debug(
                f"attempt {attempt}/{retry.max_attempts} method={request.method} "
                f"key={record.id} url={url}"
            )
            upstream_request = self.client.build_request(
                request.method,
                url,
                headers=self._with_credential(base_headers, record),
                content=body or None,
            )
            started = time.monotonic()
            try:
                response = await self.client.send(upstream_request, stream=True)
                try:
                    rule = classify_status(response.status_code)
                    if rule.outcome is Outcome.SUCCESS and self._is_event_stream(response):
                        return await self._relay_stream(request, response, record, started)
                    content = await response.aread()
                finally:
                    await response.aclose()
            except (httpx.TransportError, httpx.DecodingError) as e:
                # an undecodable body counts as a failed exchange, like a dropped connection
                rule, status = TRANSPORT_FAILURE, None
                kind = "decoding error" if isinstance(e, httpx.DecodingError) else "network error"
                reason = f"{kind}: {str(e) or type(e).__name__}"
                self._logger.warning(f"{reason} on key={record.id} ({record.masked})")
            else:
                status = response.status_code
                reason = describe_status(status, response.reason_phrase)

            if rule.outcome is Outcome.SUCCESS:
                self.pool.report_success(record)
                self._record(record, status, started, None)
            else:
                self.pool.report_failure(
                    record, reason, permanent=rule.outcome is Outcome.PERMANENT
                )
                self._record(record, status, started, reason)

            if rule.forward:
                return web.Response(
                    status=response.status_code,
                    reason=response.reason_phrase or None,
                    headers=self._response_headers(response, record),
                    body=content,
                )

            last_error = reason
            self._logger.info(f"{rule.name} ({reason}) on key={record.id}; rotating")
            if rule.backoff and attempt < retry.max_attempts:
                await asyncio.sleep(retry.backoff)

        return self._attempts_exhausted(last_error)

    async def _relay_stream(
        self,
        request: web.Request,
        upstream: httpx.Response,
        record: KeyRecord,
        started: float,
    ) -> web.StreamResponse:
        response = web.StreamResponse(
            status=upstream.status_code,
            reason=upstream.reason_phrase or None,
            headers=self._response_headers(upstream, record),
        )
        await response.prepare(request)
        # Headers are committed: from here on the key is credited and no other key is tried
        self.pool.report_success(record)
        self._record(record, upstream.status_code, started, None)
        try:
            async for chunk in upstream.aiter_bytes():
                await response.write(chunk)
        except (httpx.HTTPError, ConnectionError) as e:
            self._logger.warning(f"stream relay aborted on key={record.id}: {e}")
            response.force_close()
            if request.transport is not None:
                request.transport.close()
            return response
        await response.write_eof()
        return response

    # ---------- terminal failures ----------

    def _keys_unavailable(self, attempts_made: int) -> web.Response:
        snapshot = self.pool.snapshot()
        headers = {}
        wait = self.pool.soonest_available_in()
        if wait is not None:
            headers["Retry-After"] = str(max(1, math.ceil(wait)))
        self._logger.warning(
            f"no usable keys ({snapshot['total_keys']} total) after {attempts_made} attempts"
        )
        return web.json_response(
            {
                "error": {
                    "type": "keys_unavailable",
                    "message": (
                        f"No usable keys: all {snapshot['total_keys']} keys are disabled "
                        f"or cooling down ({attempts_made} attempts made)."
                    ),
                    "details": snapshot,
                }
            },
            status=503,
            headers=headers,
        )

    def _attempts_exhausted(self, last_error: str | None) -> web.Response:
        attempts = self.config.retry.max_attempts
        self._logger.warning(f"all {attempts} attempts exhausted; last error: {last_error}")
        return web.json_response(
            {
                "error": {
                    "type": "attempts_exhausted",
                    "message": f"All {attempts} attempts exhausted. Last error: {last_error}",
                    "details": self.pool.snapshot(),
                }
            },
            status=503,
        )
