"""Clio webhook router - FastAPI endpoints for Clio webhook deliveries"""

import logging
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...database import get_db
from ...services.clio_service import ClioService
from ...services.token_service import ClioTokenService
from ...webhook_security import HOOK_SECRET_HEADER, get_hook_secret, verify_clio_webhook
from .schemas import AutomationResult, ClioWebhookPayload
from .service import AutomationService, WebhookValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/clio", tags=["Clio Webhooks"])


def get_clio_service(db: Session = Depends(get_db)) -> ClioService:
    """Dependency injection for ClioService"""
    return ClioService(token_service=ClioTokenService(db))


def get_automation_service(
    db: Session = Depends(get_db), clio: ClioService = Depends(get_clio_service)
) -> AutomationService:
    """Dependency injection for AutomationService"""
    return AutomationService(db, clio)


async def _process_webhook(
    request: Request,
    name: str,
    handler: Callable[[ClioWebhookPayload], Awaitable[AutomationResult]],
):
    hook_secret = get_hook_secret(request)
    if hook_secret:
        logger.info(f"🤝 Clio {name} webhook activation handshake")
        return JSONResponse({"success": True}, headers={HOOK_SECRET_HEADER: hook_secret})

    _, body = await verify_clio_webhook(request)

    try:
        payload = ClioWebhookPayload.model_validate_json(body)
    except ValidationError as e:
        logger.error(f"❌ Invalid Clio {name} webhook payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid webhook payload") from None

    logger.info(f"📥 Clio {name} webhook received for {payload.data.id}")

    try:
        return await handler(payload)
    except WebhookValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
    except Exception as e:
        logger.error(f"❌ Clio {name} webhook processing error: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Webhook processing failed") from e


@router.post("/matters", response_model=AutomationResult)
async def matter_webhook(request: Request, service: AutomationService = Depends(get_automation_service)):
    """Matter updated - generates tasks when a matter enters a new stage"""
    return await _process_webhook(request, "matter", service.handle_matter_updated)


@router.post("/calendar", response_model=AutomationResult)
async def calendar_webhook(request: Request, service: AutomationService = Depends(get_automation_service)):
    """Calendar entry created/updated - generates and patches meeting-relative tasks"""
    return await _process_webhook(request, "calendar", service.handle_calendar_entry)


@router.post("/tasks", response_model=AutomationResult)
async def task_webhook(request: Request, service: AutomationService = Depends(get_automation_service)):
    """Task updated - completion follow-ups, reopen and deletion detection"""
    return await _process_webhook(request, "task", service.handle_task_updated)


@router.post("/tasks/deleted", response_model=AutomationResult)
async def task_deleted_webhook(request: Request, service: AutomationService = Depends(get_automation_service)):
    """Task deleted - marks the local record as deleted"""
    return await _process_webhook(request, "task deletion", service.handle_task_deleted)
