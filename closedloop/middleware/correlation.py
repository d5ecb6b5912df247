"""Correlation ID middleware.

Pure ASGI middleware that tags every request with a correlation ID, so
log records from a request (including a loop cycle it triggers) can be
traced together. A response to a request that started a loop cycle also
carries that cycle's ID.
"""

import time
import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from closedloop.logging_config import (
    correlation_id_ctx,
    get_logger,
    request_cycle_ids_ctx,
)

logger = get_logger(__name__)

CORRELATION_ID_HEADER = "X-Correlation-ID"
CYCLE_ID_HEADER = "X-Loop-Cycle-ID"


class CorrelationIdMiddleware:
    """Adds an X-Correlation-ID to each HTTP request and response.

    Uses the incoming header when present, otherwise a new UUID. The ID is
    set in the logging context for the lifetime of the request. When the
    request started loop cycles, the last one is returned in
    X-Loop-Cycle-ID.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        correlation_id = headers.get(b"x-correlation-id", b"").decode() or str(
            uuid.uuid4()
        )
        token = correlation_id_ctx.set(correlation_id)
        cycle_ids: list[str] = []
        cycles_token = request_cycle_ids_ctx.set(cycle_ids)

        start_time = time.perf_counter()
        status_code: int | None = None
        method = scope.get("method", "")
        path = scope.get("path", "")

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code

            if message["type"] == "http.response.start":
                status_code = message.get("status")
                response_headers = list(message.get("headers", []))
                response_headers.append(
                    (CORRELATION_ID_HEADER.lower().encode(), correlation_id.encode())
                )
                if cycle_ids:
                    response_headers.append(
                        (CYCLE_ID_HEADER.lower().encode(), cycle_ids[-1].encode())
                    )
                message = {**message, "headers": response_headers}

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
            logger.info(
                "Request completed",
                method=method,
                path=path,
                status_code=status_code,
                cycle_ids=cycle_ids or None,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
        except Exception:
            logger.exception(
                "Request failed",
                method=method,
                path=path,
                duration_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )
            raise
        finally:
            request_cycle_ids_ctx.reset(cycles_token)
            correlation_id_ctx.reset(token)
