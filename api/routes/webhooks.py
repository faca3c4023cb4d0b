"""
Inbound platform webhooks
"""

from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from api.dependencies import get_runner
from core.exceptions import ConnectionFailure, RecordError, ValidationError, WebhookSignatureError
from operations.runner import OperationRunner
from schemas.api import WebhookResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/hashnode", response_model=WebhookResponse)
async def hashnode_webhook(
    request: Request,
    x_hashnode_signature: Optional[str] = Header(None),
    runner: OperationRunner = Depends(get_runner)
):
    """
    Receive a signed Hashnode webhook.

    The signature is checked against the raw body before anything is parsed.
    """
    request_id = getattr(request.state, "request_id", "-")
    raw_body = await request.body()

    try:
        result = await runner.sync.handle_inbound_webhook(raw_body, x_hashnode_signature)
    except WebhookSignatureError:
        logger.warning(f"[{request_id}] Webhook rejected: invalid signature")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.summary())
    except RecordError as e:
        raise HTTPException(status_code=409, detail=e.summary())
    except ConnectionFailure as e:
        logger.error(f"[{request_id}] Webhook failed: {e.summary()}")
        raise HTTPException(status_code=503, detail="Content store unavailable")

    logger.info(f"[{request_id}] Webhook {result.event} for {result.external_id}: {result.outcome.value}")
    return WebhookResponse(
        outcome=result.outcome.value,
        detail=result.detail,
        data=result.model_dump(mode="json"),
    )
