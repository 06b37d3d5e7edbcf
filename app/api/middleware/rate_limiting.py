import time
from typing import Dict, Optional, Tuple
from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from fastapi.responses import JSONResponse
from collections import defaultdict, deque

from app.core.config import get_settings


class SlidingWindowLimiter:
    """Per client and path sliding-window request counter"""

    def __init__(self, calls: int = 100, period: int = 60, path_limits: Optional[Dict[str, Dict[str, int]]] = None):
        """
        Args:
            calls: Number of allowed calls per period
            period: Time period in seconds
            path_limits: Stricter limits for specific paths
        """
        self.calls = calls
        self.period = period
        self.path_limits = path_limits or {}
        self.clients: Dict[str, deque] = defaultdict(deque)

    def is_rate_limited(self, client_ip: str, path: str) -> Tuple[bool, Dict]:
        """Check if client is rate limited, recording the request when it is not"""
        current_time = time.time()

        limits = self.path_limits.get(path, {"calls": self.calls, "period": self.period})
        calls = limits["calls"]
        period = limits["period"]

        key = f"{client_ip}:{path}"

        # Clean old entries
        client_requests = self.clients[key]
        while client_requests and client_requests[0] < current_time - period:
            client_requests.popleft()

        if len(client_requests) >= calls:
            reset_time = client_requests[0] + period
            retry_after = int(reset_time - current_time)
            return True, {
                "retry_after": max(retry_after, 1),
                "limit": calls,
                "period": period,
            }

        client_requests.append(current_time)
        return False, {
            "remaining": calls - len(client_requests),
            "limit": calls,
            "period": period,
        }


def get_client_ip(request: Request) -> str:
    """Extract client IP address"""
    # Check for forwarded headers in case of proxy
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


class AuthRateLimitMiddleware(BaseHTTPMiddleware):
    """Rate limiting for the authentication endpoints"""

    def __init__(self, app, prefix: Optional[str] = None, calls: int = 20, period: int = 60):
        super().__init__(app)
        self.prefix = f"{prefix or get_settings().api_v1_prefix}/auth/"
        self.limiter = SlidingWindowLimiter(
            calls=calls,
            period=period,
            path_limits={
                f"{self.prefix}login": {"calls": 5, "period": 60},  # 5 attempts per minute
                f"{self.prefix}register": {"calls": 3, "period": 60},  # 3 registrations per minute
            },
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        # Only apply to auth endpoints
        if not path.startswith(self.prefix):
            return await call_next(request)

        is_limited, info = self.limiter.is_rate_limited(get_client_ip(request), path)
        if is_limited:
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "error": f"Rate limit exceeded. Try again in {info['retry_after']} seconds.",
                    "details": None,
                    "code": "RATE_LIMITED",
                },
                headers={
                    "Retry-After": str(info["retry_after"]),
                    "X-RateLimit-Limit": str(info["limit"]),
                    "X-RateLimit-Reset": str(int(time.time()) + info["retry_after"]),
                }
            )

        response = await call_next(request)

        # Add rate limit headers to response
        response.headers["X-RateLimit-Limit"] = str(info["limit"])
        response.headers["X-RateLimit-Remaining"] = str(info.get("remaining", 0))
        response.headers["X-RateLimit-Reset"] = str(int(time.time()) + info["period"])

        return response
