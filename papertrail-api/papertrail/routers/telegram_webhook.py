import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from papertrail.config import settings
from papertrail.dependencies import get_engine
from papertrail.logging_config import get_logger
from papertrail.schemas.telegram import TelegramUpdate, TelegramWebhookResponse
from papertrail.services.engine import Engine
from papertrail.services.errors import StorageUnavailable
from papertrail.services.event_classifier import classify_update

logger = get_logger("telegram_webhook")

router = APIRouter()


async def parse_telegram_update(request: Request) -> Optional[dict]:
    """
    Parse Telegram update with tolerant decoding to avoid utf-8 crashes.
    Returns dict or None.
    """
    try:
        return await request.json()
    except Exception as e:
        logger.warning(f"Standard request.json() failed: {e}, fallback decoding")

    raw = await request.body()
    for enc in ("utf-8", "latin-1"):
        try:
            return json.loads(raw.decode(enc, errors="replace"))
        except ValueError:
            continue

    logger.error("Failed to decode Telegram webhook payload after fallbacks")
    return None


def _check_secret(provided: Optional[str]) -> None:
    expected = settings.telegram_webhook_secret
    if expected and provided != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.post("/telegram-webhook", response_model=TelegramWebhookResponse)
async def handle_telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: Optional[str] = Header(default=None, alias="X-Telegram-Bot-Api-Secret-Token"),
    engine: Engine = Depends(get_engine),
):
    """
    Handle Telegram webhook updates:
    - /invoice, /report, /onboard -> start a flow
    - free text and photos -> continue the live flow that expects them
    - button clicks -> continue the flow named in the callback data
    """
    _check_secret(x_telegram_bot_api_secret_token)

    body = await parse_telegram_update(request)
    if body is None:
        return TelegramWebhookResponse(success=False, message="Invalid telegram payload")

    try:
        update = TelegramUpdate(**body)
    except ValueError as e:
        logger.warning(f"Unparseable Telegram update: {e}")
        return TelegramWebhookResponse(success=False, message="Invalid telegram payload")

    event = classify_update(update, settings.telegram_bot_username)
    if event is None:
        return TelegramWebhookResponse(success=True, message="No actionable content")

    try:
        outcome = await run_in_threadpool(engine.dispatcher.dispatch, event)
    except StorageUnavailable as e:
        logger.error(
            "Storage unavailable, asking Telegram to retry",
            extra={"context": {"update_id": update.update_id, "error": e.message}},
        )
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage unavailable")
    except Exception as e:
        logger.error(f"Telegram webhook error: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error")

    if outcome is None:
        return TelegramWebhookResponse(success=True, message="No live flow for message")
    return TelegramWebhookResponse(
        success=True,
        outcome=outcome.value,
        flow=event.flow_kind.value if event.flow_kind else None,
    )
