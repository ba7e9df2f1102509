"""
Cadena de guards de seguridad para las rutas.

Cada ruta declara, en orden, que verificaciones corre antes de su logica:

    @router.post("/api/upload", dependencies=[guard_chain(
        rate_limit(UPLOAD),     # 1. cupo por IP
        csrf_protect,           # 2. token anti-CSRF
        require_user,           # 3. bearer token valido
        validate_uploads(),     # 4. archivos del multipart
    )])

Un guard es una funcion async (request, response) -> None. Si retorna,
la cadena sigue; si lanza una excepcion de marketplace.errors, la cadena
se corta y el handler registrado en main.py arma la respuesta (403, 429,
401 o 400). El `response` es la sub-respuesta de FastAPI: los headers que
un guard escribe ahi (X-RateLimit-*) terminan en la respuesta final.

Los guards guardan lo que descubren en request.state (user_id, uploads)
para que el endpoint no tenga que repetir el trabajo.
"""

import logging
from collections.abc import Awaitable, Callable

from fastapi import Depends, Request, Response
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile

from marketplace import limiter as limiter_module
from marketplace.config import settings
from marketplace.errors import AuthenticationError, RateLimitExceeded, UploadRejected, rate_limit_headers
from marketplace.limiter import RateLimitPolicy, client_ip
from marketplace.security.csrf import csrf_manager
from marketplace.services.supabase_client import supabase_service
from marketplace.services.validator import (
    UploadCandidate,
    UploadPolicy,
    ValidationResult,
    check_content,
    policy_for_category,
    validate_upload,
)

logger = logging.getLogger(__name__)

# Categoria cuando el formulario no trae el campo "category".
DEFAULT_CATEGORY = "general"

Guard = Callable[[Request, Response], Awaitable[None]]


def guard_chain(*guards: Guard):
    """Dependencia de FastAPI que corre los guards en el orden dado."""

    async def run_guards(request: Request, response: Response) -> None:
        for guard in guards:
            await guard(request, response)

    return Depends(run_guards)


def rate_limit(policy: RateLimitPolicy) -> Guard:
    """
    Guard que consume una peticion del cupo de `policy`.

    Las politicas por usuario necesitan que require_user haya corrido
    antes en la cadena; si no hay usuario, se rechaza con 401.
    """

    async def guard(request: Request, response: Response) -> None:
        if policy.per_user:
            identity = getattr(request.state, "user_id", None)
            if not identity:
                raise AuthenticationError()
        else:
            identity = client_ip(request)

        result = limiter_module.rate_limiter.consume(policy, identity)
        if not result.allowed:
            raise RateLimitExceeded(result, policy.name)
        response.headers.update(rate_limit_headers(result))

    guard.__name__ = f"rate_limit_{policy.name}"
    return guard


async def csrf_protect(request: Request, response: Response) -> None:
    csrf_manager.check_request(request)


async def require_user(request: Request, response: Response) -> None:
    authorization = request.headers.get("authorization", "")
    if not authorization.startswith("Bearer "):
        raise AuthenticationError()

    access_token = authorization[len("Bearer "):].strip()
    if not access_token:
        raise AuthenticationError()

    # El cliente de Supabase es sincrono: lo corremos en el threadpool
    # para no bloquear el event loop.
    user_id = await run_in_threadpool(supabase_service.get_user_id, access_token)
    if not user_id:
        logger.warning("Authentication failed on %s %s", request.method, request.url.path)
        raise AuthenticationError()
    request.state.user_id = user_id


async def _declared_size(upload: UploadFile) -> int:
    if upload.size is not None:
        return upload.size
    # Versiones viejas de Starlette no llenan .size: medimos el archivo.
    upload.file.seek(0, 2)
    size = upload.file.tell()
    await upload.seek(0)
    return size


def validate_uploads(policy: UploadPolicy | None = None) -> Guard:
    """
    Guard que valida todas las partes de archivo del multipart.

    Parametros:
        policy (UploadPolicy | None): Politica fija (por ejemplo una custom).
            Si es None, se elige segun el campo "category" del formulario.

    Cada archivo se valida por separado; el primero invalido aborta todo
    el lote con un 400 que lista los resultados hasta ese punto.
    """

    async def guard(request: Request, response: Response) -> None:
        if "multipart/form-data" not in request.headers.get("content-type", ""):
            raise UploadRejected([{"valid": False, "error": "Expected multipart/form-data"}])

        # Primera lectura del cuerpo: los guards anteriores ya corrieron.
        form = await request.form()
        files = [value for _, value in form.multi_items() if isinstance(value, UploadFile)]
        if not files:
            raise UploadRejected([{"valid": False, "error": "No file provided"}])

        category = form.get("category")
        if not isinstance(category, str) or not category.strip():
            category = DEFAULT_CATEGORY
        active_policy = policy or policy_for_category(category)

        details: list[dict] = []
        accepted: list[tuple[UploadFile, ValidationResult]] = []
        for upload in files:
            candidate = UploadCandidate(
                filename=upload.filename or "",
                content_type=upload.content_type or "",
                size=await _declared_size(upload),
            )
            result = validate_upload(candidate, active_policy)

            if result.is_valid:
                head = await upload.read(settings.SNIFF_BYTES)
                await upload.seek(0)
                content_error = check_content(result.mime_type, head)
                if content_error:
                    result = ValidationResult(is_valid=False, error=content_error)

            details.append(result.as_detail())
            if not result.is_valid:
                logger.warning("Upload rejected (%s): %s", candidate.filename, result.error)
                raise UploadRejected(details)
            accepted.append((upload, result))

        request.state.uploads = accepted
        request.state.upload_category = category

    return guard
