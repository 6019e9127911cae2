"""
Webhook API routes.

- POST /api/webhooks/clerk: Clerk identity + billing events (Svix-signed)
"""
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from tutorhub.api.deps import Services, get_services


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


class WebhookAck(BaseModel):
    received: bool = True
    event_type: str
    handled: bool


@router.post("/clerk", response_model=WebhookAck)
async def clerk_webhook(request: Request, services: Services = Depends(get_services)):
    """
    Verify and apply a Clerk webhook.

    Errors map through the app error handlers:
    501 secret not configured, 400 bad headers/signature/body,
    500 when the event must be redelivered.
    """
    body = await request.body()
    receipt = await run_in_threadpool(services.webhooks.ingest, request.headers, body)
    return WebhookAck(event_type=receipt.event_type, handled=receipt.handled)
