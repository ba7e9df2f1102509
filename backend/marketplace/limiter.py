"""
Modulo de limitacion de tasa de peticiones (Rate Limiting).

Algoritmo: contador de ventana fija (fixed window)
--------------------------------------------------
Para cada clave (una IP, o "politica:usuario") guardamos un contador y el
instante en que termina su ventana actual:

    1. Si la clave no existe o su ventana ya expiro, empieza una ventana
       nueva que termina en now + window.
    2. Se incrementa el contador.
    3. Si el contador supera el maximo, la peticion se rechaza y se informa
       cuantos segundos faltan para el reinicio (Retry-After).
    4. Si no, se acepta e informamos cuantas peticiones quedan.

La peticion rechazada TAMBIEN cuenta: un cliente que sigue insistiendo no
consigue "colarse" antes de que termine la ventana.

Almacenamiento
--------------
Usamos la capa de storage de la libreria "limits" (la misma que usa SlowAPI
por debajo). Con STORE_URL="memory://" los contadores viven en un dict del
proceso, con un lock por clave y expiracion por timer. Con
STORE_URL="redis://..." el INCR + EXPIRE es atomico en Redis y todas las
replicas comparten los contadores.

Politicas
---------
Cada politica tiene su propio espacio de claves: la clave real es
"{politica}:{identidad}", asi agotar el cupo de uploads no afecta al cupo
general de la API, y un cliente no puede agotar el cupo de otro.
"""

import logging
import math
import time
from dataclasses import dataclass

from limits.storage import Storage, storage_from_string

# get_remote_address extrae la IP del socket (request.client.host).
from slowapi.util import get_remote_address
from starlette.requests import Request

from marketplace.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    """
    Politica de rate limiting con nombre.

    Atributos:
        name (str): Prefijo del espacio de claves ("api", "upload", ...).
        window_seconds (int): Duracion de la ventana fija.
        max_requests (int): Peticiones permitidas por ventana.
        per_user (bool): True si la identidad es el usuario autenticado
            en vez de la IP del cliente.
    """
    name: str
    window_seconds: int
    max_requests: int
    per_user: bool = False

    def key_for(self, identity: str) -> str:
        return f"{self.name}:{identity}"


@dataclass
class RateLimitResult:
    """Resultado de check_and_consume."""
    allowed: bool
    limit: int
    remaining: int
    # Timestamp unix (segundos) en que termina la ventana actual.
    reset_at: float
    # Solo > 0 cuando allowed es False.
    retry_after: int = 0


API = RateLimitPolicy("api", *settings.RATE_LIMIT_API)
AUTH = RateLimitPolicy("auth", *settings.RATE_LIMIT_AUTH)
UPLOAD = RateLimitPolicy("upload", *settings.RATE_LIMIT_UPLOAD)
NFT_CREATE = RateLimitPolicy("nft_create", *settings.RATE_LIMIT_NFT_CREATE, per_user=True)
PAYMENT = RateLimitPolicy("payment", *settings.RATE_LIMIT_PAYMENT, per_user=True)

POLICIES: dict[str, RateLimitPolicy] = {
    policy.name: policy for policy in (API, AUTH, UPLOAD, NFT_CREATE, PAYMENT)
}


def client_ip(request: Request) -> str:
    """
    IP real del cliente.

    Detras de un reverse proxy la IP del socket es la del proxy, asi que
    primero miramos X-Forwarded-For (el primer elemento es el cliente
    original) y X-Real-IP.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return get_remote_address(request) or "127.0.0.1"


class RateLimiter:
    """
    Limitador de ventana fija sobre un storage de "limits".

    Parametros:
        storage: Storage ya construido (tests). Si no se pasa, se crea a
            partir de storage_uri o de settings.STORE_URL.
    """

    def __init__(self, storage: Storage | None = None, storage_uri: str | None = None):
        self.storage = storage or storage_from_string(storage_uri or settings.STORE_URL)
        self.backend = type(self.storage).__name__

    def check_and_consume(self, key: str, window_seconds: int, max_requests: int) -> RateLimitResult:
        # incr crea la clave con expiracion now + window si no existe (o si
        # ya expiro) y devuelve el contador despues de incrementar.
        count = self.storage.incr(key, window_seconds)
        reset_at = float(self.storage.get_expiry(key))
        now = time.time()

        if count > max_requests:
            retry_after = max(1, math.ceil(reset_at - now))
            logger.warning("Rate limit exceeded for %s (%d/%d)", key, count, max_requests)
            return RateLimitResult(
                allowed=False,
                limit=max_requests,
                remaining=0,
                reset_at=reset_at,
                retry_after=retry_after,
            )

        return RateLimitResult(
            allowed=True,
            limit=max_requests,
            remaining=max(0, max_requests - count),
            reset_at=reset_at,
        )

    def consume(self, policy: RateLimitPolicy, identity: str) -> RateLimitResult:
        """Atajo: aplica una politica con nombre a una identidad."""
        return self.check_and_consume(
            policy.key_for(identity), policy.window_seconds, policy.max_requests
        )

    def clear(self, key: str) -> None:
        self.storage.clear(key)

    def reset(self) -> None:
        """Borra todos los contadores (tests y tareas de mantenimiento)."""
        self.storage.reset()

    def usage(self, policy: RateLimitPolicy, identity: str) -> int:
        """Peticiones ya consumidas por `identity` en la ventana actual."""
        return self.storage.get(policy.key_for(identity))

    def stats(self) -> dict:
        """
        Configuracion activa para monitoreo.

        El storage de "limits" no permite listar claves (en Redis viven
        mezcladas con otras), asi que no reportamos cuantas hay: solo el
        backend y las politicas. Para una identidad concreta, usar usage().
        """
        return {
            "backend": self.backend,
            "policies": {
                name: {
                    "window_seconds": policy.window_seconds,
                    "max_requests": policy.max_requests,
                    "per_user": policy.per_user,
                }
                for name, policy in POLICIES.items()
            },
        }


# Instancia global compartida por todos los guards.
rate_limiter = RateLimiter()
