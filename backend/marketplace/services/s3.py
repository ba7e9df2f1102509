"""
Modulo de servicio para Amazon S3 (almacenamiento de assets).

Toda la comunicacion con S3 pasa por aqui. Ningun otro archivo llama a
boto3 directamente, asi en los tests basta con mockear `s3_service`.

Estructura de keys
------------------
Los assets se agrupan por destino, y dentro por categoria y usuario:

    nfts/nft/{user_id}/{timestamp}-{random}-{nombre}
    banners/banner/{user_id}/...
    collections/avatar/{user_id}/...

El prefijo de destino se elige con bucket_prefix_for(category), la misma
regla que usa el frontend para construir URLs publicas.

Patron de diseno: Servicio + Singleton implicito + Inyeccion de dependencias
---------------------------------------------------------------------------
El constructor acepta un `client` opcional: en produccion se crea el de
boto3, en tests se pasa uno de moto o un MagicMock.
"""

import logging

import boto3

from marketplace.config import settings

logger = logging.getLogger(__name__)


def bucket_prefix_for(category: str) -> str:
    """Destino del asset segun su categoria: banners, nfts o collections."""
    category = (category or "").lower()
    if "banner" in category:
        return "banners"
    if "nft" in category:
        return "nfts"
    return "collections"


class S3Service:
    """
    Servicio que encapsula las operaciones con S3.

    Atributos:
        client: Cliente de boto3 para S3.
        bucket (str): Bucket donde se guardan los assets.
    """

    def __init__(self, client=None):
        self.client = client or boto3.client("s3", region_name=settings.AWS_REGION)
        self.bucket = settings.S3_BUCKET

    def upload(self, data: bytes, file_path: str, category: str, content_type: str = "") -> str:
        """
        Sube un asset ya validado.

        Parametros:
            data (bytes): Contenido del archivo.
            file_path (str): Ruta generada por generate_secure_file_path().
            category (str): Categoria del upload (elige el prefijo).
            content_type (str): MIME validado; se guarda como ContentType
                para que S3 lo sirva con el tipo correcto.

        Retorna:
            str: La key del objeto en S3.
        """
        key = f"{bucket_prefix_for(category)}/{file_path}"
        params = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": data,
            "CacheControl": "max-age=3600",
        }
        if content_type:
            params["ContentType"] = content_type

        self.client.put_object(**params)
        logger.info("Stored asset %s (%d bytes)", key, len(data))
        return key

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{settings.AWS_REGION}.amazonaws.com/{key}"


s3_service = S3Service()
