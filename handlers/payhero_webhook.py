"""
PayHero Payment Endpoint

Single endpoint routed by the `action` query parameter:
- process  (POST): initiate a deposit (STK push) or withdrawal (B2C)
- callback (POST): asynchronous PayHero result; always acknowledged with 200
- status   (GET):  client status poll
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from caching.simple_cache import SimpleCache
from config import Config
from services.payhero_service import PayHeroService
from services.payment_processor import PaymentProcessor
from services.payment_settlement import PaymentSettlement
from services.payment_status_poller import PaymentStatusPoller
from utils.debug_log import get_request_log
from utils.exception_handler import PaymentNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter()

# Process-wide caches and services shared by every request
status_cache = SimpleCache(default_ttl=Config.STATUS_CACHE_TTL_SECONDS, name="payment_status")
payhero_service = PayHeroService()
payment_processor = PaymentProcessor(payhero_service)
payment_settlement = PaymentSettlement(status_cache)
status_poller = PaymentStatusPoller(payhero_service, status_cache)


def _respond(body: Dict[str, Any], status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        content={**body, "debug_logs": get_request_log()},
        status_code=status_code,
    )


async def _read_json(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@router.api_route(Config.PAYMENT_ENDPOINT_PATH, methods=["GET", "POST"])
async def payment_endpoint(request: Request, action: Optional[str] = "status"):
    """Route a payment request by action"""
    logger.info(f"MAIN: Handling {request.method} request to {request.url.path}")

    if not Config.payhero_configured():
        logger.error("MAIN: Missing PayHero credentials")
        return _respond(
            {"success": False, "error": "Payment provider credentials not configured"},
            status_code=500,
        )

    action = action or "status"
    logger.info(f"MAIN: Processing action: {action}")

    if action == "process":
        return await process_payment(request)
    if action == "callback":
        return await handle_callback(request)
    if action == "status":
        return await check_status(request)

    logger.warning(f"MAIN: Invalid action requested: {action}")
    return _respond({"success": False, "error": "Invalid action"}, status_code=400)


async def process_payment(request: Request) -> JSONResponse:
    try:
        body = await _read_json(request)
        initiation = await payment_processor.process_payment(
            user_id=body.get("uuid"),
            amount=body.get("amount"),
            phone_number=body.get("phone_number"),
            payment_type=body.get("type"),
        )
        return _respond(initiation.to_dict())
    except Exception as e:
        logger.error(f"❌ PROCESS: {e}")
        return _respond({"success": False, "error": str(e) or "Unknown error"}, status_code=500)


async def handle_callback(request: Request) -> JSONResponse:
    """Acknowledge every callback with 200 so PayHero never retries"""
    reference = request.query_params.get("reference")
    try:
        if not reference:
            raise ValueError("Missing reference in callback")
        payload = await _read_json(request)
        result = await payment_settlement.handle_callback(reference, payload)
        return _respond(result.to_dict())
    except Exception as e:
        logger.error(f"❌ CALLBACK: {e}", exc_info=True)
        return _respond({
            "success": True,
            "reference": reference,
            "error": str(e) or "Unknown error",
            "processed_at": datetime.now(timezone.utc).isoformat(),
        })


async def check_status(request: Request) -> JSONResponse:
    reference = request.query_params.get("reference")
    try:
        return _respond(await status_poller.check_status(reference))
    except PaymentNotFoundError as e:
        logger.warning(f"STATUS: {e}")
        return _respond(
            {"success": False, "reference": reference, "status": None, "error": str(e)},
            status_code=404,
        )
    except Exception as e:
        logger.error(f"❌ STATUS: {e}")
        return _respond(
            {"success": False, "reference": reference, "status": "pending", "error": str(e) or "Unknown error"},
            status_code=500,
        )
