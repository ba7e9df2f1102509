"""
Modulo de servicio para Supabase (identidad, tablas y RPC).

Supabase es el backend externo del marketplace: valida los JWT de los
usuarios, guarda NFTs, colecciones y recargas, y acredita saldos con la
funcion remota `credit_balance`. Este backend NO reimplementa nada de eso;
solo llama a la API y traduce errores.

Dos clientes:
- `client` usa la anon key. Sirve para verificar tokens de usuario.
- `admin` usa la service role key. Se salta RLS, por eso solo se usa
  despues de que los guards autenticaron al usuario y la ruta verifico
  la propiedad del recurso.

Ambos se crean perezosamente: importar el modulo no requiere credenciales.
"""

import logging

from fastapi import HTTPException
from supabase import AuthError, Client, create_client

from marketplace.config import settings

logger = logging.getLogger(__name__)

# Codigos de error de Postgres que tienen una respuesta HTTP especifica.
POSTGRES_ERROR_STATUS = {
    "23505": (409, "Resource already exists"),
    "23503": (400, "Referenced resource not found"),
    "23514": (400, "Invalid data provided"),
}


def http_error_for(exc: Exception, action: str) -> HTTPException:
    """Traduce un error de la base de datos a una HTTPException."""
    code = getattr(exc, "code", None)
    if code in POSTGRES_ERROR_STATUS:
        status, detail = POSTGRES_ERROR_STATUS[code]
        return HTTPException(status_code=status, detail=detail)
    logger.error("Database error while trying to %s", action, exc_info=exc)
    return HTTPException(status_code=500, detail=f"Failed to {action}")


class SupabaseService:
    def __init__(self, client: Client | None = None, admin: Client | None = None):
        self._client = client
        self._admin = admin

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = create_client(settings.SUPABASE_URL, settings.SUPABASE_ANON_KEY)
        return self._client

    @property
    def admin(self) -> Client:
        if self._admin is None:
            if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
                raise RuntimeError("Supabase service role is not configured")
            self._admin = create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)
        return self._admin

    # ---------- Identidad ----------

    def get_user_id(self, access_token: str) -> str | None:
        """
        Verifica un JWT con Supabase Auth.

        Retorna el id del usuario, o None si el token es invalido o expiro.
        """
        try:
            response = self.client.auth.get_user(access_token)
        except AuthError as exc:
            logger.warning("Rejected access token: %s", exc)
            return None
        user = getattr(response, "user", None)
        return str(user.id) if user else None

    # ---------- Colecciones ----------

    def get_collection(self, collection_id: str) -> dict | None:
        response = (
            self.admin.table("collections")
            .select("id, creator_id")
            .eq("id", collection_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def insert_collection(self, payload: dict) -> dict:
        response = self.admin.table("collections").insert(payload).execute()
        return response.data[0]

    # ---------- NFTs ----------

    def next_token_id(self, collection_id: str) -> int:
        response = (
            self.admin.table("nfts")
            .select("token_id")
            .eq("collection_id", collection_id)
            .order("token_id", desc=True)
            .limit(1)
            .execute()
        )
        return response.data[0]["token_id"] + 1 if response.data else 1

    def insert_nft(self, payload: dict) -> dict:
        response = self.admin.table("nfts").insert(payload).execute()
        return response.data[0]

    def list_nfts_by_creator(self, user_id: str) -> list[dict]:
        response = (
            self.admin.table("nfts")
            .select("*, collection:collections(name, image_url)")
            .eq("creator_id", user_id)
            .order("created_at", desc=True)
            .execute()
        )
        return response.data

    def get_nft(self, nft_id: str) -> dict | None:
        response = (
            self.admin.table("nfts")
            .select("id, owner_id, creator_id")
            .eq("id", nft_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def update_nft(self, nft_id: str, payload: dict) -> None:
        self.admin.table("nfts").update(payload).eq("id", nft_id).execute()

    # ---------- Pagos ----------

    def record_topup(self, payload: dict) -> None:
        self.admin.table("topups").upsert(payload).execute()

    def credit_balance(self, user_id: str, amount: float, reference: str) -> None:
        """Acredita saldo de forma atomica con la funcion remota credit_balance."""
        self.admin.rpc(
            "credit_balance",
            {"p_user": user_id, "p_amount": amount, "p_ref": reference},
        ).execute()


supabase_service = SupabaseService()
