"""
Modulo de rutas de NFTs.

    POST /api/nfts            -> mintear un NFT en una coleccion propia
    GET  /api/nfts            -> NFTs creados por el usuario
    PUT  /api/nfts/{nft_id}   -> cambiar precio / listado

POST /api/nfts esta en CSRF_BEARER_EXEMPT_PATHS (se autentica con bearer
token) pero tiene un cupo adicional por USUARIO: 20 mints por hora. Ese
guard va despues de require_user porque necesita saber quien es.

PUT /api/nfts/{nft_id} no esta exento: cambia el precio de un activo, asi
que exige el header x-csrf-token.

La persistencia es de Supabase; aqui solo se valida y se verifica la
propiedad antes de escribir.
"""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from marketplace.guards import csrf_protect, guard_chain, rate_limit, require_user
from marketplace.limiter import API, NFT_CREATE
from marketplace.models.schemas import NFTCreateRequest, NFTListingUpdate
from marketplace.services.supabase_client import http_error_for, supabase_service

router = APIRouter()

PLACEHOLDER_IMAGE = "https://via.placeholder.com/400x400?text=NFT+Image"


@router.post(
    "/api/nfts",
    status_code=201,
    dependencies=[
        guard_chain(rate_limit(API), csrf_protect, require_user, rate_limit(NFT_CREATE))
    ],
)
async def create_nft(request: Request, body: NFTCreateRequest):
    user_id = request.state.user_id
    collection_id = str(body.collection_id)

    try:
        collection = await run_in_threadpool(supabase_service.get_collection, collection_id)
    except Exception as e:
        raise http_error_for(e, "load collection")

    if collection is None:
        raise HTTPException(status_code=404, detail="Collection not found")
    if collection["creator_id"] != user_id:
        raise HTTPException(status_code=403, detail="Unauthorized to create NFT in this collection")

    try:
        token_id = await run_in_threadpool(supabase_service.next_token_id, collection_id)
        nft = await run_in_threadpool(
            supabase_service.insert_nft,
            {
                "collection_id": collection_id,
                "token_id": token_id,
                "name": body.name.strip(),
                "description": body.description or None,
                "image_url": str(body.image_url) if body.image_url else PLACEHOLDER_IMAGE,
                "owner_id": user_id,
                "creator_id": user_id,
                "price": None,
                "is_listed": False,
                "is_sold": False,
            },
        )
    except Exception as e:
        raise http_error_for(e, "create NFT")

    return {"success": True, "data": nft, "message": "NFT created successfully"}


@router.get(
    "/api/nfts",
    dependencies=[guard_chain(rate_limit(API), require_user)],
)
async def list_my_nfts(request: Request):
    try:
        nfts = await run_in_threadpool(supabase_service.list_nfts_by_creator, request.state.user_id)
    except Exception as e:
        raise http_error_for(e, "fetch NFTs")
    return {"success": True, "data": nfts}


@router.put(
    "/api/nfts/{nft_id}",
    dependencies=[guard_chain(rate_limit(API), csrf_protect, require_user)],
)
async def update_listing(nft_id: UUID, request: Request, body: NFTListingUpdate):
    user_id = request.state.user_id

    try:
        nft = await run_in_threadpool(supabase_service.get_nft, str(nft_id))
    except Exception as e:
        raise http_error_for(e, "load NFT")

    if nft is None:
        raise HTTPException(status_code=404, detail="NFT not found")
    # Puede listarlo el duenio actual o su creador.
    if user_id not in (nft["owner_id"], nft["creator_id"]):
        raise HTTPException(status_code=403, detail="Unauthorized")

    payload = {"price": body.price, "is_listed": body.is_listed}
    try:
        await run_in_threadpool(supabase_service.update_nft, str(nft_id), payload)
    except Exception as e:
        raise http_error_for(e, "update NFT")

    return {"success": True, "data": {"id": str(nft_id), **payload}, "message": "NFT updated"}
