"""
Punto de entrada principal de la aplicacion FastAPI.

Este es el archivo "raiz" del backend del marketplace. Aqui se:
1. Configura el logging.
2. Crea la instancia de la aplicacion FastAPI.
3. Configura los middlewares (CORS, headers de seguridad).
4. Registra los handlers de errores de seguridad.
5. Registra todas las rutas (csrf, upload, nfts, collections, webhooks).
6. Define los endpoints de health check.

Arquitectura de la aplicacion:
------------------------------
    main.py (punto de entrada)
        |
        +-- routes/         (Controladores: reciben HTTP requests)
        |    +-- csrf.py
        |    +-- upload.py
        |    +-- nfts.py
        |    +-- collections.py
        |    +-- webhooks.py
        |
        +-- guards.py       (Cadena de guards: rate limit, CSRF, auth, uploads)
        +-- security/       (Tokens CSRF y su almacenamiento)
        +-- services/       (Validacion de archivos, S3, Supabase)
        +-- models/         (Schemas de Pydantic)
        +-- config.py       (Configuracion centralizada)
        +-- limiter.py      (Rate limiting por ventana fija)
        +-- errors.py       (Errores de seguridad y sus respuestas HTTP)

El flujo de una peticion HTTP es:
    Cliente -> CORS -> Headers de seguridad -> Router -> Guards -> Endpoint
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from marketplace import limiter as limiter_module
from marketplace.config import settings
from marketplace.errors import (
    AuthenticationError,
    CsrfError,
    RateLimitExceeded,
    UploadRejected,
    authentication_error_handler,
    csrf_error_handler,
    rate_limit_exceeded_handler,
    upload_rejected_handler,
)
from marketplace.routes.collections import router as collections_router
from marketplace.routes.csrf import router as csrf_router
from marketplace.routes.nfts import router as nfts_router
from marketplace.routes.upload import router as upload_router
from marketplace.routes.webhooks import router as webhooks_router
from marketplace.security.csrf import TokenSweeper, csrf_manager

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ---------- Ciclo de vida ----------

# En modo "timer" los tokens CSRF vencidos se barren con una tarea de fondo
# cada CSRF_SWEEP_INTERVAL segundos. En modo "probabilistic" el barrido
# ocurre dentro de issue_token() y no hace falta tarea.
@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if settings.CSRF_SWEEP_MODE == "timer":
        sweeper = TokenSweeper(csrf_manager, settings.CSRF_SWEEP_INTERVAL)
        sweeper.start()
    logger.info("Marketplace backend started (environment=%s)", settings.ENVIRONMENT)
    yield
    if sweeper is not None:
        await sweeper.stop()


app = FastAPI(title="NFT Marketplace API", lifespan=lifespan)


# ---------- Errores de seguridad ----------

# Los guards lanzan excepciones tipadas; estos handlers las convierten en
# la respuesta HTTP correspondiente (403, 429, 400, 401).
app.add_exception_handler(CsrfError, csrf_error_handler)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(UploadRejected, upload_rejected_handler)
app.add_exception_handler(AuthenticationError, authentication_error_handler)


# ---------- Headers de seguridad ----------

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    """Agrega headers de seguridad y de trazabilidad a toda respuesta."""
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers[name] = value
    response.headers["X-Request-ID"] = str(uuid.uuid4())
    response.headers["X-Timestamp"] = str(int(time.time() * 1000))
    return response


# ---------- Configuracion de CORS ----------

# El frontend manda cookies (session-id, csrf-token), por eso
# allow_credentials=True y origenes explicitos. Nunca "*" con credenciales.
# El header x-csrf-token se expone para que el cliente pueda leerlo.
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=[settings.CSRF_HEADER_NAME, "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset"],
)


# ---------- Health Check ----------

@app.get("/api/health")
async def health_check():
    """
    Endpoint de verificacion de salud del servidor.

    Retorna:
        dict: {"status": "ok"} si el servidor esta funcionando correctamente.
    """
    return {"status": "ok"}


@app.get("/api/health/stats")
async def health_stats():
    """Conteo de tokens CSRF y configuracion del rate limiting, para monitoreo."""
    return {
        "csrf": csrf_manager.stats(),
        "rate_limits": limiter_module.rate_limiter.stats(),
    }


# ---------- Registro de rutas ----------

app.include_router(csrf_router)
app.include_router(upload_router)
app.include_router(nfts_router)
app.include_router(collections_router)
app.include_router(webhooks_router)
