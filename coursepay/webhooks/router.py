from functools import partial
from typing import Annotated, Any, Callable

from fastapi import APIRouter, Depends, Header, Request

from coursepay.config import settings
from coursepay.core.cache import invalidate_transaction_caches
from coursepay.core.dependencies import Cache, DbSession, Dispatcher
from coursepay.gateway.stripe import construct_webhook_event
from coursepay.webhooks.service import handle_event

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

EventVerifier = Callable[[bytes, str | None, str], dict[str, Any]]


def get_event_verifier() -> EventVerifier:
    return construct_webhook_event


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: DbSession,
    cache: Cache,
    dispatcher: Dispatcher,
    verify: Annotated[EventVerifier, Depends(get_event_verifier)],
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> dict:
    # Signature is computed over the raw body, so it must be read before any parsing
    payload = await request.body()
    event = verify(payload, stripe_signature, settings.stripe_webhook_secret)
    if await handle_event(db, event):
        await dispatcher.enqueue("invalidate_caches", partial(invalidate_transaction_caches, cache))
    return {"received": True}
