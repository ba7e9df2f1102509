"""
Taxonomia de errores de los guards de seguridad.

Cada guard (rate limit, CSRF, autenticacion, validacion de uploads) falla
lanzando una de estas excepciones. main.py registra un handler por clase
que las traduce a la respuesta HTTP correspondiente:

    CsrfError            -> 403  {error, message}
    RateLimitExceeded    -> 429  {error, message, retry_after} + Retry-After
    UploadRejected       -> 400  {error, details}
    AuthenticationError  -> 401  {error}

Ninguna se reintenta en el servidor: cada mensaje le dice al cliente que
hacer (pedir otro token, esperar N segundos, elegir otro archivo).
"""

import math

from fastapi import Request
from fastapi.responses import JSONResponse

CSRF_MISSING = "CSRF token missing"
CSRF_INVALID = "CSRF token invalid"


class CsrfError(Exception):
    """La peticion mutante no trae un token CSRF valido."""

    def __init__(self, error: str, message: str):
        self.error = error
        self.message = message
        super().__init__(message)


class RateLimitExceeded(Exception):
    """El caller excedio el maximo de su ventana actual."""

    def __init__(self, result, policy_name: str = ""):
        # result es un RateLimitResult; no lo importamos para evitar un ciclo.
        self.result = result
        self.policy_name = policy_name
        super().__init__(f"Rate limit exceeded for {policy_name or 'request'}")


class UploadRejected(Exception):
    """Al menos un archivo del lote no paso la validacion."""

    def __init__(self, details: list[dict]):
        self.details = details
        super().__init__("File upload validation failed")


class AuthenticationError(Exception):
    """Falta el bearer token o el servicio de identidad lo rechazo."""


def rate_limit_headers(result) -> dict[str, str]:
    """Headers X-RateLimit-* comunes a respuestas aceptadas y rechazadas."""
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(math.ceil(result.reset_at)),
    }


async def csrf_error_handler(request: Request, exc: CsrfError) -> JSONResponse:
    return JSONResponse(
        status_code=403,
        content={"error": exc.error, "message": exc.message},
    )


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = exc.result.retry_after
    headers = rate_limit_headers(exc.result)
    headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too Many Requests",
            "message": f"Rate limit exceeded. Try again in {retry_after} seconds.",
            "retry_after": retry_after,
        },
        headers=headers,
    )


async def upload_rejected_handler(request: Request, exc: UploadRejected) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "File upload validation failed", "details": exc.details},
    )


async def authentication_error_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "Authentication required"},
        headers={"WWW-Authenticate": "Bearer"},
    )
