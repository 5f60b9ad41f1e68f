#!/usr/bin/env python3
"""
PayHero Payment Service for KES mobile-money payments
Handles M-Pesa STK push deposits, B2C withdrawals and transaction status lookups
"""

import base64
import logging
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from caching.simple_cache import SimpleCache
from config import Config
from services.api_adapter_retry import APIAdapterRetry
from utils.exception_handler import ProviderCredentialsError
from utils.phone import normalize_phone_number

logger = logging.getLogger(__name__)

AUTH_TOKEN_CACHE_KEY = "payhero:auth_token"


def _json_amount(amount: Decimal):
    """PayHero expects a JSON number; whole shillings go out as integers"""
    amount = Decimal(amount)
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


class PayHeroService(APIAdapterRetry):
    """Service for PayHero deposits and withdrawals with bounded retry"""

    def __init__(self, token_cache: Optional[SimpleCache] = None):
        super().__init__(
            service_name="payhero",
            timeout=Config.PAYHERO_TIMEOUT_SECONDS,
            max_retries=Config.PAYHERO_MAX_RETRIES,
            backoff_base=Config.PAYHERO_BACKOFF_BASE_SECONDS,
            backoff_cap=Config.PAYHERO_BACKOFF_MAX_SECONDS,
        )
        self.base_url = Config.PAYHERO_BASE_URL
        self.token_cache = token_cache or SimpleCache(
            default_ttl=Config.AUTH_TOKEN_TTL_SECONDS, name="payhero_auth"
        )

    def is_available(self) -> bool:
        return Config.payhero_configured()

    def get_auth_token(self) -> str:
        """Basic-Auth header value, reused until its fixed expiry"""
        cached = self.token_cache.get(AUTH_TOKEN_CACHE_KEY)
        if cached:
            logger.debug("PAYHERO_AUTH: Using cached token")
            return cached

        username = Config.PAYHERO_API_USERNAME
        password = Config.PAYHERO_API_PASSWORD
        if not username or not password:
            raise ProviderCredentialsError("Missing PayHero credentials")

        encoded = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        token = f"Basic {encoded}"
        self.token_cache.set(AUTH_TOKEN_CACHE_KEY, token, ttl=Config.AUTH_TOKEN_TTL_SECONDS)
        logger.info("✅ PAYHERO_AUTH: Generated new token")
        return token

    def _headers(self, with_body: bool) -> Dict[str, str]:
        headers = {
            "Authorization": self.get_auth_token(),
            "Accept": "application/json",
        }
        if with_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _make_request(
        self, method: str, endpoint: str, data: Optional[Dict[str, Any]] = None
    ) -> Any:
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        if data is not None:
            logger.debug(f"PAYHERO_PAYLOAD: {data}")
        return await self.request_with_retry(
            method, url, headers=self._headers(data is not None), payload=data
        )

    async def initiate_deposit(
        self,
        amount: Decimal,
        phone_number: str,
        reference: str,
        callback_url: str,
        channel_id: Optional[int] = None,
    ) -> Any:
        """Initiate an M-Pesa STK push to the customer's phone"""
        formatted_phone = normalize_phone_number(phone_number)
        request_data = {
            "amount": _json_amount(amount),
            "phone_number": formatted_phone,
            "channel_id": channel_id or Config.PAYHERO_DEPOSIT_CHANNEL_ID,
            "provider": Config.PAYHERO_PROVIDER,
            "external_reference": reference,
            "customer_name": Config.PAYHERO_CUSTOMER_NAME,
            "callback_url": callback_url,
        }
        logger.info(f"💰 PAYHERO_DEPOSIT: Initiating deposit for {amount} to {formatted_phone}")
        return await self._make_request("POST", "payments", request_data)

    async def initiate_withdrawal(
        self,
        amount: Decimal,
        phone_number: str,
        reference: str,
        callback_url: str,
        network_code: Optional[str] = None,
        channel_id: Optional[int] = None,
    ) -> Any:
        """Initiate a B2C payout to the customer's mobile wallet"""
        formatted_phone = normalize_phone_number(phone_number)
        request_data = {
            "external_reference": reference,
            "amount": _json_amount(amount),
            "phone_number": formatted_phone,
            "network_code": network_code or Config.PAYHERO_NETWORK_CODE,
            "callback_url": callback_url,
            "channel": "mobile",
            "channel_id": channel_id or Config.PAYHERO_WITHDRAWAL_CHANNEL_ID,
            "payment_service": "b2c",
        }
        logger.info(f"💸 PAYHERO_WITHDRAWAL: Initiating withdrawal for {amount} to {formatted_phone}")
        return await self._make_request("POST", "withdraw", request_data)

    async def check_transaction_status(self, reference: str) -> Any:
        logger.info(f"🔍 PAYHERO_STATUS: Checking transaction status for {reference}")
        return await self._make_request(
            "GET", f"transaction-status?{urlencode({'reference': reference})}"
        )
