"""Payment provider webhook ingress."""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from ticketsale_api.db.session import get_session
from ticketsale_api.services.webhooks.service import WebhookIntakeResult, WebhookIntakeStatus, WebhookService


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _webhook_service(request: Request, db: AsyncSession) -> WebhookService:
    return WebhookService(
        db,
        queue=request.app.state.webhook_queue,
        session_factory=request.app.state.session_factory,
    )


def _respond(result: WebhookIntakeResult) -> JSONResponse:
    if result.status == WebhookIntakeStatus.REJECTED:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content=result.to_payload())
    if result.status == WebhookIntakeStatus.DUPLICATE:
        return JSONResponse(status_code=status.HTTP_200_OK, content=result.to_payload())
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=result.to_payload())


@router.post("/woocommerce/{webhook_key}")
async def woocommerce_webhook(
    webhook_key: str,
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """Receive a WooCommerce order webhook signed with ``X-WC-Webhook-Signature``."""

    result = await _webhook_service(request, db).handle_woo_webhook(
        webhook_key=webhook_key,
        raw_body=await request.body(),
        signature=request.headers.get("X-WC-Webhook-Signature"),
        topic=request.headers.get("X-WC-Webhook-Topic"),
    )
    return _respond(result)


@router.api_route("/voodoopay/{webhook_key}", methods=["GET", "POST"])
async def voodoopay_callback(
    webhook_key: str,
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """Receive a Voodoo Pay callback; parameters arrive on the query string."""

    result = await _webhook_service(request, db).handle_voodoo_callback(
        webhook_key=webhook_key,
        query=dict(request.query_params),
    )
    return _respond(result)


def _scalar(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


async def _callback_body(request: Request) -> dict[str, str]:
    """Flatten a JSON or form callback body into string parameters."""

    content_type = request.headers.get("content-type", "").lower()
    if "application/json" in content_type:
        try:
            payload = await request.json()
        except ValueError:
            logger.warning("Ignoring unreadable Voodoo Pay callback body", content_type=content_type)
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(key): _scalar(value) for key, value in payload.items() if value is not None}

    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return {
            key: value if isinstance(value, str) else (value.filename or "")
            for key, value in form.multi_items()
        }

    return {}


@router.api_route("/voodoopay/{webhook_key}/{order_session_id}/{cb_token}", methods=["GET", "POST"])
async def voodoopay_path_callback(
    webhook_key: str,
    order_session_id: str,
    cb_token: str,
    request: Request,
    db: AsyncSession = Depends(get_session),
) -> JSONResponse:
    """Receive a Voodoo Pay callback whose order and token live in the URL path.

    Query parameters override body fields; the path only fills in
    ``order_session_id`` and ``cb_token`` when neither carries them.
    """

    params = {**await _callback_body(request), **dict(request.query_params)}
    params.setdefault("order_session_id", order_session_id)
    params.setdefault("cb_token", cb_token)

    result = await _webhook_service(request, db).handle_voodoo_callback(
        webhook_key=webhook_key,
        query=params,
    )
    return _respond(result)
