"""
Almacenes clave-valor para los tokens CSRF.

El servidor es la fuente de verdad de los tokens: no basta con que la
cookie exista, el token del header tiene que coincidir con el que
guardamos para esa sesion. Este modulo define DONDE se guardan.

Dos implementaciones con la misma interfaz:

- MemoryTokenStore: un dict protegido por un lock. Sirve para una sola
  instancia (desarrollo, tests). Los tokens no sobreviven a un reinicio y
  no se comparten entre procesos.
- RedisTokenStore: Redis compartido. Cada token se guarda con EX igual a
  su vida restante, asi Redis los borra solo, y compare_and_swap usa
  WATCH/MULTI para ser atomico entre replicas.

create_token_store(url) elige una u otra segun STORE_URL.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass

import redis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CsrfRecord:
    """Token vigente de una sesion y su expiracion absoluta (unix segundos)."""
    token: str
    expires_at: float

    def is_expired(self, now: float | None = None) -> bool:
        return (time.time() if now is None else now) > self.expires_at

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str | bytes) -> "CsrfRecord":
        data = json.loads(raw)
        return cls(token=data["token"], expires_at=float(data["expires_at"]))


class TokenStore(ABC):
    """Interfaz comun de los almacenes de tokens."""

    @abstractmethod
    def get(self, key: str) -> CsrfRecord | None: ...

    @abstractmethod
    def set(self, key: str, record: CsrfRecord, ttl: int) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def compare_and_swap(
        self, key: str, expected: CsrfRecord, new: CsrfRecord | None, ttl: int | None = None
    ) -> bool:
        """
        Reemplaza el registro de `key` por `new` solo si el actual es
        `expected`. Con new=None borra la clave. Retorna True si escribio.
        """

    @abstractmethod
    def sweep(self, now: float | None = None) -> int:
        """Elimina los registros expirados. Retorna cuantos borro."""

    @abstractmethod
    def stats(self, now: float | None = None) -> dict[str, int]: ...

    @abstractmethod
    def clear(self) -> None: ...


class MemoryTokenStore(TokenStore):
    def __init__(self):
        self._records: dict[str, CsrfRecord] = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            return self._records.get(key)

    def set(self, key, record, ttl):
        # ttl no se usa: la expiracion va dentro del registro.
        with self._lock:
            self._records[key] = record

    def delete(self, key):
        with self._lock:
            self._records.pop(key, None)

    def compare_and_swap(self, key, expected, new, ttl=None):
        with self._lock:
            if self._records.get(key) != expected:
                return False
            if new is None:
                del self._records[key]
            else:
                self._records[key] = new
            return True

    def sweep(self, now=None):
        now = time.time() if now is None else now
        with self._lock:
            expired = [key for key, record in self._records.items() if record.is_expired(now)]
            for key in expired:
                del self._records[key]
        if expired:
            logger.debug("Swept %d expired CSRF tokens", len(expired))
        return len(expired)

    def stats(self, now=None):
        now = time.time() if now is None else now
        with self._lock:
            total = len(self._records)
            active = sum(1 for record in self._records.values() if not record.is_expired(now))
        return {"total_tokens": total, "active_tokens": active}

    def clear(self):
        with self._lock:
            self._records.clear()


class RedisTokenStore(TokenStore):
    """
    Parametros:
        client: Cliente de redis-py. En tests se puede pasar un mock.
        prefix (str): Prefijo de las claves en Redis.
    """

    def __init__(self, client: redis.Redis, prefix: str = "csrf:"):
        self.client = client
        self.prefix = prefix

    def _name(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def get(self, key):
        raw = self.client.get(self._name(key))
        return CsrfRecord.from_json(raw) if raw is not None else None

    def set(self, key, record, ttl):
        self.client.set(self._name(key), record.to_json(), ex=max(1, int(ttl)))

    def delete(self, key):
        self.client.delete(self._name(key))

    def compare_and_swap(self, key, expected, new, ttl=None):
        name = self._name(key)
        with self.client.pipeline() as pipe:
            try:
                # WATCH: si otra replica toca la clave antes del EXEC,
                # la transaccion se aborta con WatchError.
                pipe.watch(name)
                raw = pipe.get(name)
                if raw is None or CsrfRecord.from_json(raw) != expected:
                    pipe.unwatch()
                    return False
                pipe.multi()
                if new is None:
                    pipe.delete(name)
                else:
                    remaining = ttl if ttl is not None else new.expires_at - time.time()
                    pipe.set(name, new.to_json(), ex=max(1, int(remaining)))
                pipe.execute()
                return True
            except redis.WatchError:
                return False

    def sweep(self, now=None):
        # Redis expira las claves por su cuenta (EX).
        return 0

    def stats(self, now=None):
        total = sum(1 for _ in self.client.scan_iter(match=f"{self.prefix}*"))
        return {"total_tokens": total, "active_tokens": total}

    def clear(self):
        for name in self.client.scan_iter(match=f"{self.prefix}*"):
            self.client.delete(name)


def create_token_store(url: str) -> TokenStore:
    """Construye el almacen indicado por la URL (memory:// o redis://)."""
    if url.startswith("memory://"):
        return MemoryTokenStore()
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisTokenStore(redis.Redis.from_url(url))
    raise ValueError(f"Unsupported token store URL: {url}")
