"""
Modulo de esquemas (schemas) de datos de la API.

Define la estructura exacta de lo que entra y sale de cada endpoint con
Pydantic. Si el frontend envia un campo con tipo o rango incorrecto,
FastAPI responde 422 automaticamente con el detalle del error.

Patron de diseno: Data Transfer Objects (DTOs)
----------------------------------------------
Estos schemas solo transportan datos entre capas; no tienen logica de
negocio mas alla de las restricciones de cada campo.
"""

from uuid import UUID

from pydantic import BaseModel, Field, HttpUrl, field_validator

from marketplace.services.sanitizer import sanitize_html, sanitize_text


def _clean_text(value):
    return sanitize_text(value) if isinstance(value, str) else value


def _clean_description(value):
    if isinstance(value, str):
        return sanitize_html(value) or None
    return value


def _blank_url_to_none(value):
    # El frontend manda "" cuando el campo de URL queda vacio.
    if isinstance(value, str) and not value.strip():
        return None
    return value


class CsrfTokenResponse(BaseModel):
    """
    Respuesta de GET /api/csrf.

    El frontend espera la clave "csrfToken" (camelCase), por eso el alias.
    """
    csrf_token: str = Field(serialization_alias="csrfToken")


class UploadResponse(BaseModel):
    """
    Respuesta de POST /api/upload.

    Atributos:
        file_path (str): URL publica del asset en S3.
        filename (str): Nombre sanitizado.
        file_type (str): MIME validado.
        file_size (int): Tamano en bytes.
    """
    file_path: str
    filename: str
    file_type: str
    file_size: int


class NFTCreateRequest(BaseModel):
    """Datos para mintear un NFT dentro de una coleccion propia."""
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    image_url: HttpUrl | None = None
    collection_id: UUID

    # mode="before": se limpia primero y las restricciones de largo aplican
    # sobre el texto ya limpio.
    @field_validator("name", mode="before")
    @classmethod
    def clean_name(cls, value):
        return _clean_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def clean_description(cls, value):
        return _clean_description(value)

    @field_validator("image_url", mode="before")
    @classmethod
    def blank_url(cls, value):
        return _blank_url_to_none(value)


class NFTListingUpdate(BaseModel):
    """Precio y estado de listado de un NFT."""
    price: float = Field(gt=0)
    is_listed: bool = False


class CollectionCreateRequest(BaseModel):
    name: str = Field(min_length=3, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    image_url: HttpUrl | None = None
    banner_url: HttpUrl | None = None
    mint_price: float = Field(default=0, ge=0, le=1000)
    royalty_percentage: float = Field(default=0, ge=0, le=25)

    @field_validator("name", mode="before")
    @classmethod
    def clean_name(cls, value):
        return _clean_text(value)

    @field_validator("description", mode="before")
    @classmethod
    def clean_description(cls, value):
        return _clean_description(value)

    @field_validator("image_url", "banner_url", mode="before")
    @classmethod
    def blank_url(cls, value):
        return _blank_url_to_none(value)


class OnrampWebhook(BaseModel):
    """
    Notificacion del proveedor de on-ramp cuando un pago se completa.

    Atributos:
        user_id (str): Usuario al que se acredita el saldo.
        amount (float): Monto en USD (se acredita 1:1 en USDC).
        provider (str | None): Nombre del proveedor.
        external_id (str | None): Id del pago en el proveedor; se usa como
            referencia idempotente del credito.
    """
    user_id: str = Field(min_length=1)
    amount: float = Field(gt=0)
    currency: str = "USD"
    provider: str | None = None
    external_id: str | None = None


class ErrorResponse(BaseModel):
    """Formato de error de los guards: {error, message}."""
    error: str
    message: str | None = None
