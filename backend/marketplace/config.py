"""
Modulo de configuracion centralizada del backend del marketplace.

Todas las constantes que el backend necesita viven aqui: origenes CORS,
el backend de almacenamiento de tokens CSRF y contadores de rate limiting,
las listas de rutas exentas de CSRF, los limites de cada politica y las
credenciales de los servicios externos (Supabase y S3).

Cada valor se lee de una variable de entorno con un valor por defecto
razonable para desarrollo. Asi la misma imagen corre en desarrollo,
staging y produccion sin tocar el codigo.

Patron de diseno: **Singleton implicito**
La instancia `settings` se crea UNA sola vez al importar este modulo y
todos los modulos que hagan `from marketplace.config import settings`
comparten la misma instancia.
"""

import os


def _csv(name: str, default: str) -> tuple[str, ...]:
    """Lee una variable de entorno separada por comas como tupla de strings."""
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


class Settings:
    """
    Configuracion de la aplicacion.

    Es una clase simple (no pydantic-settings) para que en tests podamos
    sobreescribir atributos directamente con monkeypatch.
    """

    # ---------- Entorno ----------

    # "production" activa el flag Secure en las cookies de sesion y CSRF.
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Origenes permitidos por CORS. NUNCA "*" en produccion.
    CORS_ORIGINS: tuple[str, ...] = _csv("CORS_ORIGINS", "http://localhost:3000")

    # ---------- Almacenamiento de estado de seguridad ----------

    # Backend donde guardamos tokens CSRF y contadores de rate limiting.
    #   memory://               -> diccionarios en memoria del proceso (dev/tests)
    #   redis://host:6379/0     -> Redis compartido entre instancias
    # Con "memory://" cada proceso tiene su propio estado: si hay varias
    # replicas detras de un load balancer, cada una cuenta por separado.
    STORE_URL: str = os.getenv("STORE_URL", "memory://")

    # ---------- CSRF ----------

    # Vida de un token CSRF: 24 horas.
    CSRF_TOKEN_TTL: int = int(os.getenv("CSRF_TOKEN_TTL", str(24 * 60 * 60)))
    CSRF_TOKEN_LENGTH: int = 32
    SESSION_ID_LENGTH: int = 24

    CSRF_COOKIE_NAME: str = "csrf-token"
    CSRF_HEADER_NAME: str = "x-csrf-token"
    SESSION_COOKIE_NAME: str = "session-id"

    # Limpieza de tokens expirados:
    #   timer          -> tarea periodica cada CSRF_SWEEP_INTERVAL segundos
    #   probabilistic  -> barrido inline en ~10% de las emisiones
    CSRF_SWEEP_MODE: str = os.getenv("CSRF_SWEEP_MODE", "timer")
    CSRF_SWEEP_INTERVAL: float = float(os.getenv("CSRF_SWEEP_INTERVAL", "3600"))
    CSRF_SWEEP_PROBABILITY: float = float(os.getenv("CSRF_SWEEP_PROBABILITY", "0.1"))

    # Prefijos que nunca pasan por la verificacion CSRF (health checks y
    # webhooks de proveedores externos, que no tienen cookies de navegador).
    CSRF_EXEMPT_PREFIXES: tuple[str, ...] = _csv(
        "CSRF_EXEMPT_PREFIXES", "/api/health,/api/webhooks"
    )

    # Rutas EXACTAS exentas porque se autentican con bearer token.
    # El navegador no adjunta el header Authorization automaticamente, asi
    # que un sitio de terceros no puede forjar estas peticiones.
    # Se mantiene como lista explicita para poder auditar la postura.
    CSRF_BEARER_EXEMPT_PATHS: tuple[str, ...] = _csv(
        "CSRF_BEARER_EXEMPT_PATHS", "/api/upload,/api/nfts,/api/collections"
    )

    # ---------- Rate limiting ----------

    # (ventana en segundos, maximo de peticiones) por politica.
    RATE_LIMIT_API: tuple[int, int] = (15 * 60, 100)
    RATE_LIMIT_AUTH: tuple[int, int] = (15 * 60, 5)
    RATE_LIMIT_UPLOAD: tuple[int, int] = (60 * 60, 10)
    RATE_LIMIT_NFT_CREATE: tuple[int, int] = (60 * 60, 20)
    RATE_LIMIT_PAYMENT: tuple[int, int] = (60 * 60, 5)

    # ---------- Uploads ----------

    # Cuantos bytes leemos para detectar el tipo real con python-magic.
    SNIFF_BYTES: int = 2048

    # ---------- AWS S3 ----------

    S3_BUCKET: str = os.getenv("S3_BUCKET", "marketplace-assets")
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")

    # ---------- Supabase ----------

    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
    SUPABASE_ANON_KEY: str = os.getenv("SUPABASE_ANON_KEY", "")
    # Solo del lado del servidor. Nunca se expone al cliente.
    SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


settings = Settings()
