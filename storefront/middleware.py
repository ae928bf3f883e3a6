"""HTTP middleware that assigns a request identifier and limits payload size.

Behavior contract:
- If the incoming request carries an ``X-Request-ID`` header, that value is
  reused as the request id; otherwise a new UUIDv4 is generated.
- The id is stored on ``request.state`` and in a ContextVar so code running
  downstream (log filters, outbound HTTP clients) can read it without
  passing it explicitly.
- The response carries the same id in the ``X-Request-ID`` header.
- Requests whose declared ``Content-Length`` exceeds the configured limit are
  refused with 413 before the body is read.
"""

import contextvars
import logging
import uuid

from fastapi import Request
from fastapi.responses import JSONResponse

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")
HEADER = "X-Request-ID"

logger = logging.getLogger("storefront.access")


async def request_id_middleware(request: Request, call_next):
    rid = request.headers.get(HEADER) or str(uuid.uuid4())
    request.state.request_id = rid
    token = REQUEST_ID_CTX.set(rid)
    status = 500
    try:
        response = await call_next(request)
        status = response.status_code
    finally:
        logger.info(
            "request handled",
            extra={"path": request.url.path, "method": request.method, "status": status},
        )
        REQUEST_ID_CTX.reset(token)
    response.headers[HEADER] = rid
    return response


def size_limit_middleware(max_bytes: int):
    """Build a middleware refusing bodies larger than ``max_bytes``."""

    async def _limit(request: Request, call_next):
        clen = request.headers.get("content-length")
        if clen and clen.isdigit() and int(clen) > max_bytes:
            return JSONResponse({"detail": "PAYLOAD_TOO_LARGE"}, status_code=413)
        return await call_next(request)

    return _limit
