"""Request timing and logging setup for the GraphLOD API."""

import logging
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("graphlod.performance")

RESPONSE_TIME_HEADER = "X-Response-Time"


def route_path(request: Request) -> str:
    """Path template of the matched route, e.g. ``/api/graphs/{graph_id}/camera``.

    Requests for different graphs share one template, so slow endpoints can
    be told apart from slow graphs. Falls back to the raw path when no route
    matched.
    """
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class TimingMiddleware(BaseHTTPMiddleware):
    """Times every request and reports it in the ``X-Response-Time`` header.

    Requests slower than ``slow_request_threshold`` seconds are logged as
    warnings together with the graph they touched.
    """

    def __init__(
        self,
        app,
        slow_request_threshold: float = 1.0,
        log_all_requests: bool = False,
    ):
        super().__init__(app)
        self.slow_request_threshold = slow_request_threshold
        self.log_all_requests = log_all_requests

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"{request.method} {route_path(request)} failed after "
                f"{time.perf_counter() - start:.3f}s: {type(e).__name__}: {e}"
            )
            raise

        duration = time.perf_counter() - start
        response.headers[RESPONSE_TIME_HEADER] = f"{duration:.3f}"

        graph_id = request.path_params.get("graph_id")
        target = f" (graph {graph_id})" if graph_id else ""
        if duration > self.slow_request_threshold:
            logger.warning(
                f"Slow request: {request.method} {route_path(request)}{target} - {duration:.2f}s"
            )
        elif self.log_all_requests:
            logger.debug(f"{request.method} {route_path(request)}{target} - {duration:.3f}s")

        return response


def setup_logging(log_level: str = "INFO") -> None:
    """Configure root logging and the ``graphlod`` logger hierarchy."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("graphlod").setLevel(level)
    # Slow request warnings stay visible even when the app logs at WARNING
    logging.getLogger("graphlod.performance").setLevel(min(level, logging.WARNING))

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
