"""
Modulo de ruta para webhooks de proveedores de pago (on-ramp).

El proveedor llama a POST /api/webhooks/onramp cuando un pago se completa.
No hay navegador ni cookies de por medio, asi que el prefijo
/api/webhooks esta en CSRF_EXEMPT_PREFIXES.

Flujo:
    1. Cupo por IP (politica general de la API).
    2. Cupo por usuario acreditado: maximo 5 pagos por hora.
    3. Se registra la recarga (upsert, idempotente por external_id).
    4. Se acredita el saldo con la funcion remota credit_balance, que es
       atomica del lado de la base de datos.
"""

import logging

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from marketplace import limiter as limiter_module
from marketplace.errors import RateLimitExceeded
from marketplace.guards import csrf_protect, guard_chain, rate_limit
from marketplace.limiter import API, PAYMENT
from marketplace.models.schemas import OnrampWebhook
from marketplace.services.supabase_client import http_error_for, supabase_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/api/webhooks/onramp",
    dependencies=[guard_chain(rate_limit(API), csrf_protect)],
)
async def onramp_webhook(body: OnrampWebhook):
    # El usuario viene en el payload, no en un token: el cupo por usuario
    # se aplica aqui en vez de en la cadena de guards.
    result = limiter_module.rate_limiter.consume(PAYMENT, body.user_id)
    if not result.allowed:
        raise RateLimitExceeded(result, PAYMENT.name)

    provider = body.provider or "onramp"
    reference = body.external_id or provider

    try:
        await run_in_threadpool(
            supabase_service.record_topup,
            {
                "user_id": body.user_id,
                "provider": provider,
                "status": "succeeded",
                "fiat_currency": body.currency,
                "fiat_amount": body.amount,
                "crypto_currency": "USDC",
                "crypto_amount": body.amount,
                "external_id": body.external_id,
            },
        )
        await run_in_threadpool(supabase_service.credit_balance, body.user_id, body.amount, reference)
    except Exception as e:
        raise http_error_for(e, "credit balance")

    logger.info("Credited %.2f to %s via %s", body.amount, body.user_id, provider)
    return {"ok": True}
