from typing import Optional

from fastapi import Query, Request
from fastapi.responses import JSONResponse, Response

from apps.drops.ratelimit import READ, UPLOAD
from apps.drops.schema import DropResponse, HealthResponse
from config.middleware import client_address
from config.settings import SERVICE_NAME
from utils.timeutil import ms_to_iso


def _service(request: Request):
    return request.app.state.drops


async def create_drop(request: Request, ttl: Optional[str] = None, price: Optional[str] = None):
    service = _service(request)
    remaining = await service.admit(UPLOAD, client_address(request))
    service.check_declared_size(request.headers.get('content-length'))
    body = await service.receive_body(request.stream())
    receipt = await service.create_drop(body, ttl=ttl, price=price)
    payload = DropResponse(id=receipt.id, expires=ms_to_iso(receipt.expires_at))
    return JSONResponse(
        status_code=201,
        content=payload.model_dump(),
        headers={'X-RateLimit-Remaining': str(remaining)},
    )


async def retrieve_blob(request: Request, blob_id: str,
                        payment_proof: Optional[str] = Query(None, alias='paymentProof')):
    service = _service(request)
    remaining = await service.admit(READ, client_address(request))
    data, meta = await service.fetch_drop(blob_id, payment_proof)
    return Response(
        content=data,
        media_type='application/octet-stream',
        headers={
            'Content-Length': str(len(data)),
            'Cache-Control': 'private, no-store, no-cache',
            'X-Content-Type-Options': 'nosniff',
            'X-Opaque-Expires': ms_to_iso(meta.expires_at),
            'X-RateLimit-Remaining': str(remaining),
        },
    )


async def health():
    return HealthResponse(status='ok', service=SERVICE_NAME)
