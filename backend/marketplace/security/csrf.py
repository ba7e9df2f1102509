"""
Proteccion CSRF con el patron "double submit cookie".

Que es CSRF?
------------
Un sitio de terceros hace que el navegador de la victima envie una
peticion que cambia estado (POST, PUT, DELETE...) a nuestro sitio. El
navegador adjunta las cookies automaticamente, asi que el servidor no
distingue la peticion forjada de una legitima.

Como lo evitamos?
-----------------
1. GET /api/csrf emite un token aleatorio de 32 caracteres, lo guarda en
   el servidor asociado a la sesion (24h de vida) y lo entrega en el body,
   en una cookie legible por JavaScript y en el header x-csrf-token.
2. El frontend copia el token en el header x-csrf-token de cada peticion
   mutante. Un sitio de terceros no puede leer nuestras cookies, asi que
   no puede poner el header correcto.
3. El servidor compara el header con el token GUARDADO para esa sesion
   (no solo con la cookie) usando comparacion en tiempo constante.

La clave de sesion
------------------
derive_session_key() debe dar el MISMO resultado al emitir y al verificar,
si no, la verificacion falla siempre. Orden de precedencia:
    1. cookie session-id
    2. "auth:" + bearer token del header Authorization
    3. "anonymous:" + IP + User-Agent
"""

import asyncio
import hmac
import logging
import random
import secrets
import string
import time
from collections.abc import Callable

from starlette.requests import Request
from starlette.responses import Response

from marketplace.config import settings
from marketplace.errors import CSRF_INVALID, CSRF_MISSING, CsrfError
from marketplace.limiter import client_ip
from marketplace.security.token_store import CsrfRecord, TokenStore, create_token_store

logger = logging.getLogger(__name__)

TOKEN_ALPHABET = string.ascii_letters + string.digits

# Metodos que no cambian estado y nunca se verifican.
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def generate_secure_token(length: int = settings.CSRF_TOKEN_LENGTH) -> str:
    """Token alfanumerico de `length` caracteres usando el CSPRNG del sistema."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def derive_session_key(request: Request) -> str:
    session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if session_id:
        return session_id

    authorization = request.headers.get("authorization", "")
    if authorization:
        token = authorization.removeprefix("Bearer ").strip()
        if token:
            return f"auth:{token}"

    user_agent = request.headers.get("user-agent", "")
    return f"anonymous:{client_ip(request)}:{user_agent}"


class CsrfTokenManager:
    """
    Emite y verifica tokens CSRF ligados a una clave de sesion.

    Parametros:
        store (TokenStore): Donde se guardan los tokens.
        ttl (int): Vida de cada token en segundos.
        sweep_mode (str): "timer" (la limpieza la hace TokenSweeper) o
            "probabilistic" (barrido inline en una fraccion de emisiones).
        sweep_probability (float): Fraccion de emisiones que barren en
            modo probabilistico.
        exempt_prefixes / bearer_exempt_paths: Rutas sin verificacion.
        clock: Funcion que retorna el tiempo actual (inyectable en tests).
    """

    def __init__(
        self,
        store: TokenStore,
        ttl: int = settings.CSRF_TOKEN_TTL,
        sweep_mode: str = settings.CSRF_SWEEP_MODE,
        sweep_probability: float = settings.CSRF_SWEEP_PROBABILITY,
        exempt_prefixes: tuple[str, ...] = settings.CSRF_EXEMPT_PREFIXES,
        bearer_exempt_paths: tuple[str, ...] = settings.CSRF_BEARER_EXEMPT_PATHS,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl = ttl
        self.sweep_mode = sweep_mode
        self.sweep_probability = sweep_probability
        self.exempt_prefixes = exempt_prefixes
        self.bearer_exempt_paths = bearer_exempt_paths
        self.clock = clock

    def issue_token(self, session_key: str) -> str:
        """Genera un token nuevo para la sesion, reemplazando el anterior."""
        token = generate_secure_token()
        record = CsrfRecord(token=token, expires_at=self.clock() + self.ttl)
        self.store.set(session_key, record, self.ttl)

        if self.sweep_mode == "probabilistic" and random.random() < self.sweep_probability:
            self.sweep()
        return token

    def verify_token(self, session_key: str, provided_token: str) -> bool:
        record = self.store.get(session_key)
        if record is None:
            return False

        if record.is_expired(self.clock()):
            # Solo borramos si nadie emitio un token nuevo mientras tanto.
            self.store.compare_and_swap(session_key, record, None)
            return False

        # hmac.compare_digest tarda lo mismo sin importar en que caracter
        # difieren los tokens (evita ataques de timing).
        return hmac.compare_digest(record.token.encode(), provided_token.encode())

    def token_for_session(self, session_key: str) -> str | None:
        """Token vigente de la sesion, o None si no hay o ya expiro."""
        record = self.store.get(session_key)
        if record is None or record.is_expired(self.clock()):
            return None
        return record.token

    def is_exempt(self, path: str) -> bool:
        if path in self.bearer_exempt_paths:
            return True
        return any(path.startswith(prefix) for prefix in self.exempt_prefixes)

    def check_request(self, request: Request) -> None:
        """
        Verifica una peticion entrante. Lanza CsrfError si debe rechazarse.

        Los metodos seguros y las rutas exentas pasan sin mirar el token.
        """
        if request.method.upper() in SAFE_METHODS:
            return
        if self.is_exempt(request.url.path):
            return

        session_key = derive_session_key(request)
        provided = request.headers.get(settings.CSRF_HEADER_NAME)

        if not provided:
            logger.warning("CSRF token missing on %s %s", request.method, request.url.path)
            raise CsrfError(CSRF_MISSING, "CSRF token is required for this request")

        if not self.verify_token(session_key, provided):
            logger.warning("CSRF token rejected on %s %s", request.method, request.url.path)
            raise CsrfError(CSRF_INVALID, "Invalid or expired CSRF token")

    def issue_for_request(self, request: Request, response: Response) -> str:
        """
        Emite un token para el cliente de `request` y lo escribe en `response`.

        Si el cliente no tiene cookie session-id, se genera una nueva. El
        token queda asociado a ese session-id, que es lo primero que mira
        derive_session_key() en las peticiones siguientes.
        """
        session_id = request.cookies.get(settings.SESSION_COOKIE_NAME)
        if not session_id:
            session_id = generate_secure_token(settings.SESSION_ID_LENGTH)

        token = self.issue_token(session_id)
        secure = settings.is_production

        response.set_cookie(
            settings.SESSION_COOKIE_NAME,
            session_id,
            max_age=self.ttl,
            path="/",
            secure=secure,
            httponly=True,
            samesite="strict",
        )
        # Esta cookie NO es httponly: el frontend tiene que poder leerla.
        response.set_cookie(
            settings.CSRF_COOKIE_NAME,
            token,
            max_age=self.ttl,
            path="/",
            secure=secure,
            httponly=False,
            samesite="strict",
        )
        response.headers[settings.CSRF_HEADER_NAME] = token
        return token

    def sweep(self) -> int:
        return self.store.sweep(self.clock())

    def stats(self) -> dict[str, int]:
        return self.store.stats(self.clock())


class TokenSweeper:
    """
    Tarea asyncio que barre los tokens expirados cada `interval` segundos.

    Se arranca y detiene desde el lifespan de la app cuando
    CSRF_SWEEP_MODE es "timer".
    """

    def __init__(self, manager: CsrfTokenManager, interval: float = settings.CSRF_SWEEP_INTERVAL):
        self.manager = manager
        self.interval = interval
        self._task: asyncio.Task | None = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                removed = self.manager.sweep()
            except Exception:
                logger.exception("CSRF token sweep failed")
            else:
                if removed:
                    logger.info("Removed %d expired CSRF tokens", removed)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


csrf_manager = CsrfTokenManager(create_token_store(settings.STORE_URL))
