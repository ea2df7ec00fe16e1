# middleware.py
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from config.settings import TRUSTED_PROXIES

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type',
    'Access-Control-Max-Age': '86400',
}


def client_address(request: Request) -> str:
    """Client address used as the rate-limit key.

    Proxy headers are only read when the socket peer is listed in
    TRUSTED_PROXIES; any other caller could set them to anything.
    """
    peer = request.client.host if request.client else None
    if peer is not None and peer in TRUSTED_PROXIES:
        forwarded = request.headers.get('cf-connecting-ip') or request.headers.get('x-forwarded-for')
        if forwarded:
            return forwarded.split(',')[0].strip()
    return peer or 'unknown'


class CorsMiddleware(BaseHTTPMiddleware):
    """Permissive CORS on every response; any OPTIONS request is a 204 preflight."""

    async def dispatch(self, request: Request, call_next):
        if request.method == 'OPTIONS':
            return Response(status_code=204, headers=CORS_HEADERS)
        response: Response = await call_next(request)
        for name, value in CORS_HEADERS.items():
            response.headers.setdefault(name, value)
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request.state.client_address = client_address(request)
        method, path = request.method, request.url.path
        start = time.perf_counter()
        logger.info("-> %s %s", method, path)
        try:
            response: Response = await call_next(request)
        except Exception:
            logger.exception("ERROR %s %s after %.0fms", method, path, (time.perf_counter() - start) * 1000)
            raise
        elapsed_ms = (time.perf_counter() - start) * 1000
        level = logging.WARNING if response.status_code >= 400 else logging.INFO
        logger.log(level, "<- %s %s %d %.0fms", method, path, response.status_code, elapsed_ms)
        return response
