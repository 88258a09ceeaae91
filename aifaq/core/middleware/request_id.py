import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from aifaq.core.logging import latency_bucket_ms, request_id_ctx_var, shop_ctx_var

REQUEST_ID_HEADER = "x-request-id"
SHOP_HEADERS = ("x-shop-domain", "x-shopify-shop-domain")
MAX_REQUEST_ID_CHARS = 128

logger = logging.getLogger("aifaq.http")


def _shop_hint(request):
    # Unvalidated; only used to tag log records. Routes validate via get_shop.
    for header in SHOP_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip().lower()[:255]
    return None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Bind request_id and shop to the logging context and log each request once."""

    async def dispatch(self, request, call_next):
        rid = (request.headers.get(REQUEST_ID_HEADER) or "")[:MAX_REQUEST_ID_CHARS] or str(uuid4())
        request.state.request_id = rid
        rid_token = request_id_ctx_var.set(rid)
        shop_token = shop_ctx_var.set(_shop_hint(request))

        start = time.perf_counter()
        fields = {"request_id": rid, "method": request.method, "path": request.url.path}
        try:
            response = await call_next(request)
        except Exception:
            elapsed = (time.perf_counter() - start) * 1000
            logger.error("http.request_failed", extra={**fields, "latency_bucket": latency_bucket_ms(elapsed)})
            raise
        else:
            elapsed = (time.perf_counter() - start) * 1000
            response.headers[REQUEST_ID_HEADER] = rid
            logger.info(
                "http.request",
                extra={**fields, "status": response.status_code, "latency_bucket": latency_bucket_ms(elapsed)},
            )
            return response
        finally:
            shop_ctx_var.reset(shop_token)
            request_id_ctx_var.reset(rid_token)
