# edumetrics/obs.py
from __future__ import annotations
import logging
import time, uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match

log = logging.getLogger(__name__)

UNMATCHED_ENDPOINT = "unmatched"


def route_template(request: Request) -> str:
    """
    Path template of the route that will handle this request ("/items/{item_id}"),
    so tag cardinality is bounded by the route table. Anything without a route
    (404 scans) shares one series.
    """
    partial = None
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", UNMATCHED_ENDPOINT)
        if match == Match.PARTIAL and partial is None:
            partial = route  # path matched, method did not (405)
    if partial is not None:
        return getattr(partial, "path", UNMATCHED_ENDPOINT)
    return UNMATCHED_ENDPOINT


class RequestObservability(BaseHTTPMiddleware):
    """
    Wraps every request in track_request/track_response on the aggregator that
    lives on app.state.metrics. A handler exception is counted as a 500 and re-raised.
    """
    async def dispatch(self, request: Request, call_next: Callable):
        metrics = getattr(request.app.state, "metrics", None)
        if metrics is None:
            return await call_next(request)

        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        path = request.url.path
        method = request.method
        handle = metrics.track_request(route_template(request), method)
        start = time.perf_counter()
        status = 500
        try:
            response: Response = await call_next(request)
            status = response.status_code
            return response
        finally:
            metrics.track_response(handle, status, status < 400)
            ms = (time.perf_counter() - start) * 1000
            # structured request line keeps the concrete path; metrics use the template
            log.info("request", extra={"req_id": req_id, "method": method, "path": path, "status": status, "ms": round(ms, 1)})
