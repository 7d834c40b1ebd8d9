import logging
import time
from contextvars import ContextVar

from sqlalchemy import event
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

# Statements executed on behalf of the current request.
query_count_var: ContextVar[int] = ContextVar("query_count", default=0)


def install_query_counter(engine) -> None:
    """
    Count every statement *engine* sends to the database in ``query_count_var``.

    Eager-load statements (``selectinload``) go through the same cursor hook,
    so the count covers a whole article page hydration.  Call once per engine.
    """

    @event.listens_for(engine.sync_engine, "before_cursor_execute")
    def _count_query(conn, cursor, statement, parameters, context, executemany):
        query_count_var.set(query_count_var.get() + 1)


class TimingMiddleware:
    """
    Pure ASGI middleware stamping each HTTP response with
    ``X-Response-Time-Ms`` and ``X-Query-Count``, and logging one DEBUG line
    per request.

    It must stay pure ASGI: ``BaseHTTPMiddleware`` runs the app in a child
    task, and the counter writes would not be visible here.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        query_count_var.set(0)
        start = time.perf_counter()

        async def send_with_diagnostics(message: Message) -> None:
            if message["type"] == "http.response.start":
                elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
                queries = query_count_var.get()
                message["headers"] = [
                    *message.get("headers", []),
                    (b"x-response-time-ms", str(elapsed_ms).encode()),
                    (b"x-query-count", str(queries).encode()),
                ]
                logger.debug(
                    "%s %s -> %s in %sms (%s queries)",
                    scope["method"],
                    scope["path"],
                    message["status"],
                    elapsed_ms,
                    queries,
                )
            await send(message)

        await self.app(scope, receive, send_with_diagnostics)
