"""
Modulo de ruta para crear colecciones.

POST /api/collections se autentica con bearer token (exento de CSRF por
CSRF_BEARER_EXEMPT_PATHS). El creator_id siempre es el usuario del token,
nunca un valor enviado por el cliente.
"""

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from marketplace.guards import csrf_protect, guard_chain, rate_limit, require_user
from marketplace.limiter import API
from marketplace.models.schemas import CollectionCreateRequest
from marketplace.services.supabase_client import http_error_for, supabase_service

router = APIRouter()


@router.post(
    "/api/collections",
    status_code=201,
    dependencies=[guard_chain(rate_limit(API), csrf_protect, require_user)],
)
async def create_collection(request: Request, body: CollectionCreateRequest):
    payload = {
        "name": body.name.strip(),
        "description": body.description or None,
        "image_url": str(body.image_url) if body.image_url else None,
        "banner_url": str(body.banner_url) if body.banner_url else None,
        "mint_price": body.mint_price,
        "royalty_percentage": body.royalty_percentage,
        "creator_id": request.state.user_id,
    }
    try:
        collection = await run_in_threadpool(supabase_service.insert_collection, payload)
    except Exception as e:
        raise http_error_for(e, "create collection")

    return {"success": True, "data": collection, "message": "Collection created successfully"}
