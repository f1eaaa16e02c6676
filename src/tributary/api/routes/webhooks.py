"""Inbound provider webhook endpoints.

Not behind X-User-Id: deliveries authenticate by signature only.
"""

from fastapi import APIRouter, Request

from tributary.dependencies import Receiver
from tributary.models.sync import WebhookResult

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


def _headers(request: Request) -> dict[str, str]:
    return {k.lower(): v for k, v in request.headers.items()}


@router.post("/{provider}", response_model=WebhookResult)
async def receive_provider_webhook(provider: str, request: Request, receiver: Receiver):
    body = await request.body()
    return await receiver.receive(provider, body, _headers(request))


@router.post("/{provider}/{subscription_id}", response_model=WebhookResult)
async def receive_subscription_webhook(
    provider: str,
    subscription_id: str,
    request: Request,
    receiver: Receiver,
):
    body = await request.body()
    return await receiver.receive(provider, body, _headers(request), subscription_id=subscription_id)
