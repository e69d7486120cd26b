import time

import aiohttp

from lipsync_dispatch.main.logging import get_logger

logger = get_logger(__name__)


class AioHttpClient:
    session: aiohttp.ClientSession = None

    def _create_trace_config(self) -> aiohttp.TraceConfig:
        """Create TraceConfig for connection timing to worker machines."""
        trace = aiohttp.TraceConfig()

        async def on_request_start(session, trace_config_ctx, params):
            trace_config_ctx._request_start_time = time.perf_counter()

        async def on_request_end(session, trace_config_ctx, params):
            if hasattr(trace_config_ctx, "_request_start_time"):
                duration_ms = (time.perf_counter() - trace_config_ctx._request_start_time) * 1000
                logger.debug(
                    f"{params.method} {params.url} -> {params.response.status}",
                    extra={
                        "event": "http_request",
                        "url": str(params.url),
                        "status_code": params.response.status,
                        "duration_ms": int(duration_ms),
                    },
                )

        async def on_conn_start(session, trace_config_ctx, params):
            trace_config_ctx._conn_start_time = time.perf_counter()

        async def on_conn_end(session, trace_config_ctx, params):
            if hasattr(trace_config_ctx, "_conn_start_time"):
                conn_duration_ms = (time.perf_counter() - trace_config_ctx._conn_start_time) * 1000

                # Worker machines sit behind tunnels; slow connects are worth a warning
                if conn_duration_ms > 2000:
                    logger.warning(
                        "SLOW connection to worker machine",
                        extra={
                            "event": "tcp_connection_slow",
                            "duration_ms": int(conn_duration_ms),
                            "threshold_ms": 2000,
                        },
                    )

        trace.on_request_start.append(on_request_start)
        trace.on_request_end.append(on_request_end)
        trace.on_connection_create_start.append(on_conn_start)
        trace.on_connection_create_end.append(on_conn_end)

        return trace

    def start(self):
        # Per-request timeouts (e.g. worker probes) override these
        timeout = aiohttp.ClientTimeout(
            total=30.0,
            connect=10.0,
        )

        connector = aiohttp.TCPConnector(
            limit=100,
            limit_per_host=30,
            use_dns_cache=True,
            ttl_dns_cache=300,
        )

        self.session = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            trace_configs=[self._create_trace_config()],
        )

    async def stop(self):
        if self.session is None:
            return
        await self.session.close()
        self.session = None

    def __call__(self) -> aiohttp.ClientSession:
        assert self.session is not None
        return self.session


aiohttp_client = AioHttpClient()
