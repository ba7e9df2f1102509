"""
Modulo de ruta para emitir tokens CSRF.

GET /api/csrf es lo primero que llama el frontend al cargar. La respuesta
trae el token en tres lugares:
    - body JSON {"csrfToken": "..."}
    - cookie "csrf-token" (legible por JavaScript)
    - header "x-csrf-token"
y ademas fija la cookie httponly "session-id" a la que queda ligado.

Si una peticion mutante recibe 403, el frontend vuelve a llamar a este
endpoint y reintenta UNA vez.
"""

from fastapi import APIRouter, Request, Response

from marketplace.guards import guard_chain, rate_limit
from marketplace.limiter import API
from marketplace.models.schemas import CsrfTokenResponse
from marketplace.security.csrf import csrf_manager

router = APIRouter()


@router.get(
    "/api/csrf",
    response_model=CsrfTokenResponse,
    dependencies=[guard_chain(rate_limit(API))],
)
async def get_csrf_token(request: Request, response: Response):
    token = csrf_manager.issue_for_request(request, response)
    return CsrfTokenResponse(csrf_token=token)
