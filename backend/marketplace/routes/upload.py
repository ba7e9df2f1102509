"""
Modulo de ruta para subida de assets (imagenes, banners, archivos de NFT).

Orden de la cadena de guards de POST /api/upload:
    1. rate_limit(UPLOAD)  -> maximo 10 uploads por hora por IP
    2. csrf_protect        -> exento (ruta autenticada por bearer token)
    3. require_user        -> JWT valido de Supabase
    4. validate_uploads()  -> tamano, MIME, extension, nombre y contenido

Cuando el endpoint corre, todos los archivos ya pasaron la validacion y
estan en request.state.uploads junto con su nombre sanitizado. Aqui solo
se construye la key segura y se sube a S3.

Seguridad implementada:
-----------------------
- La key de S3 nunca usa el nombre original: se arma con
  generate_secure_file_path() (usuario + timestamp + aleatorio + nombre
  sanitizado) y se verifica con validate_file_path().
- El ContentType guardado en S3 es el MIME validado.
"""

import logging

from fastapi import APIRouter, HTTPException, Request

from marketplace.guards import csrf_protect, guard_chain, rate_limit, require_user, validate_uploads
from marketplace.limiter import UPLOAD
from marketplace.models.schemas import ErrorResponse, UploadResponse
from marketplace.services.s3 import s3_service
from marketplace.services.validator import generate_secure_file_path, validate_file_path

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/api/upload",
    response_model=UploadResponse,
    responses={403: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
    dependencies=[
        guard_chain(rate_limit(UPLOAD), csrf_protect, require_user, validate_uploads())
    ],
)
async def upload_asset(request: Request):
    """
    Sube el asset validado a S3.

    El endpoint no declara parametros de formulario: si lo hiciera, FastAPI
    leeria todo el multipart ANTES de los guards. El cuerpo se lee recien
    en validate_uploads(), despues del rate limit y la autenticacion.

    Parametros:
        request (Request): Trae en request.state el user_id, los uploads
            validados y la categoria del frontend ("avatar", "nft",
            "banner"...), que define el prefijo de destino.

    Retorna:
        UploadResponse: URL publica, nombre sanitizado, MIME y tamano.

    Raises:
        HTTPException(400): Si la ruta generada no es segura.
        HTTPException(500): Si S3 falla.
    """
    user_id = request.state.user_id
    category = request.state.upload_category
    upload, result = request.state.uploads[0]

    file_path = generate_secure_file_path(user_id, result.sanitized_filename, category)
    is_safe, error = validate_file_path(file_path)
    if not is_safe:
        raise HTTPException(status_code=400, detail=error)

    data = await upload.read()
    try:
        key = s3_service.upload(data, file_path, category, content_type=result.mime_type)
    except Exception as e:
        logger.error("Upload to storage failed for %s", file_path, exc_info=True)
        raise HTTPException(status_code=500, detail=f"File upload failed: {e}")

    return UploadResponse(
        file_path=s3_service.public_url(key),
        filename=result.sanitized_filename,
        file_type=result.mime_type,
        file_size=len(data),
    )
