"""Middleware classes for the cache service."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import falcon

logger = logging.getLogger(__name__)


class LoggingMiddleware:
    """Middleware to log the request."""

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Log the request."""
        del resp
        logger.info("Request: %s %s", req.method, req.relative_uri)


class TimingMiddleware:
    """Middleware to log the duration and status of each request."""

    def process_request(self, req: falcon.Request, resp: falcon.Response) -> None:
        """Record the start time for request timing."""
        del resp
        req.context["_start_time"] = time.monotonic()

    def process_response(
        self,
        req: falcon.Request,
        resp: falcon.Response,
        resource: object,
        req_succeeded: bool,
    ) -> None:
        """Log request timing and response status."""
        del resource, req_succeeded
        start = req.context.get("_start_time")
        duration = time.monotonic() - start if start is not None else -1.0
        logger.info("[timing] %.2f ms | %s | %s %s", duration * 1000, resp.status, req.method, req.relative_uri)
