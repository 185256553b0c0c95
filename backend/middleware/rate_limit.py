"""
Simple in-memory rate limiter for the signed download proxy.

Signed URLs are bearer credentials in a query string, so the proxy is
limited per client IP to blunt signature guessing and hot-linking.
Uses a sliding window of request timestamps stored in memory.

Not a replacement for a proper WAF or a shared store across workers.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory sliding window rate limiter for selected path prefixes.

    Tracks request counts per (client_ip, path_prefix) in a dict.
    Stale entries are cleaned up periodically.

    Args:
        limits: Path prefix -> (max_requests, window_seconds).
        methods: HTTP methods that count against the limit.
        clock: Time source in seconds, injectable for tests.
    """

    def __init__(self, app, limits: Dict[str, Tuple[int, int]],
                 methods: Tuple[str, ...] = ("GET",), clock=time.time):
        super().__init__(app)
        self._limits = dict(limits)
        self._methods = {m.upper() for m in methods}
        self._clock = clock
        # (ip, path_prefix) -> list of timestamps
        self._counters: Dict[Tuple[str, str], list] = defaultdict(list)
        self._last_cleanup = clock()
        logger.info(f"RateLimitMiddleware active for {', '.join(self._limits)}")

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP from request, respecting X-Forwarded-For."""
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"

    def _match(self, path: str) -> Optional[str]:
        for prefix in self._limits:
            if path.startswith(prefix):
                return prefix
        return None

    def _cleanup_stale(self, now: float) -> None:
        """Remove expired timestamps older than the largest window."""
        # Only clean up every 60 seconds to avoid overhead
        if now - self._last_cleanup < 60 or not self._limits:
            return
        self._last_cleanup = now

        max_window = max(w for _, w in self._limits.values())
        cutoff = now - max_window
        stale_keys = []
        for key, timestamps in self._counters.items():
            self._counters[key] = [t for t in timestamps if t > cutoff]
            if not self._counters[key]:
                stale_keys.append(key)
        for key in stale_keys:
            del self._counters[key]

    async def dispatch(self, request: Request, call_next):
        """Check rate limits before processing.

        Args:
            request: The incoming HTTP request.
            call_next: The next middleware/handler in the chain.

        Returns:
            Response from next handler, or 429 if rate limited.
        """
        if request.method.upper() not in self._methods:
            return await call_next(request)

        matched_prefix = self._match(request.url.path)
        if matched_prefix is None:
            return await call_next(request)

        max_requests, window_seconds = self._limits[matched_prefix]
        client_ip = self._get_client_ip(request)
        key = (client_ip, matched_prefix)
        now = self._clock()

        # Clean stale entries periodically
        self._cleanup_stale(now)

        # Remove timestamps outside the window
        self._counters[key] = [
            t for t in self._counters[key] if t > now - window_seconds
        ]

        if len(self._counters[key]) >= max_requests:
            retry_after = max(1, int(window_seconds - (now - self._counters[key][0])))
            logger.warning(
                f"Rate limit hit: {client_ip} on {matched_prefix} "
                f"({len(self._counters[key])}/{max_requests} in {window_seconds}s)"
            )
            return JSONResponse(
                status_code=429,
                content={"detail": f"Too many requests. Try again in {retry_after} seconds."},
                headers={"Retry-After": str(retry_after)},
            )

        # Record this request
        self._counters[key].append(now)
        return await call_next(request)
