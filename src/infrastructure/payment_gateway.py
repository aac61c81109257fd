"""
M-Pesa (Daraja) STK-push client.

Flow
----
1. ``GET /oauth/v1/generate`` with HTTP basic auth -> bearer token.
2. ``POST /mpesa/stkpush/v1/processrequest`` with a password of
   ``base64(shortcode + passkey + timestamp)``.
3. The customer approves on their phone; Safaricom later POSTs the
   outcome to ``mpesa_callback_url`` (see :func:`parse_stk_callback`).

Timeouts, transport errors, non-2xx responses and non-zero
``ResponseCode`` values all surface as ``UpstreamFailure``.
"""

from __future__ import annotations

import base64
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Protocol

import httpx

from src.config import Settings, settings as default_settings
from src.domain.errors import UpstreamFailure

logger = logging.getLogger(__name__)

_MSISDN_RE = re.compile(r"^254[17]\d{8}$")


def normalize_msisdn(phone: str) -> str:
    """``0712 345 678`` / ``+254712345678`` / ``712345678`` -> ``254712345678``."""
    digits = re.sub(r"[\s\-]", "", phone or "").lstrip("+")
    if digits.startswith("0"):
        digits = "254" + digits[1:]
    elif not digits.startswith("254"):
        digits = "254" + digits
    if not _MSISDN_RE.match(digits):
        raise ValueError(f"Invalid M-Pesa phone number: {phone!r}")
    return digits


@dataclass(frozen=True)
class StkPushResult:
    checkout_request_id: str
    merchant_request_id: Optional[str] = None
    customer_message: Optional[str] = None


@dataclass(frozen=True)
class PaymentOutcome:
    checkout_request_id: str
    success: bool
    result_description: str = ""
    details: dict[str, Any] = field(default_factory=dict)


class PaymentGateway(Protocol):
    async def initiate(
        self, phone_number: str, amount: Decimal, reference: str
    ) -> StkPushResult: ...

    async def close(self) -> None: ...


class MpesaGateway:
    def __init__(
        self,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or default_settings
        self.client = httpx.AsyncClient(
            base_url=self.config.mpesa_base_url,
            timeout=self.config.mpesa_timeout_seconds,
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def _access_token(self) -> str:
        response = await self.client.get(
            "/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            auth=(self.config.mpesa_consumer_key, self.config.mpesa_consumer_secret),
        )
        response.raise_for_status()
        return response.json()["access_token"]

    def _password(self, timestamp: str) -> str:
        raw = f"{self.config.mpesa_shortcode}{self.config.mpesa_passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    async def initiate(
        self, phone_number: str, amount: Decimal, reference: str
    ) -> StkPushResult:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        msisdn = normalize_msisdn(phone_number)
        body = {
            "BusinessShortCode": self.config.mpesa_shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            # Daraja only takes whole shillings
            "Amount": int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
            "PartyA": msisdn,
            "PartyB": self.config.mpesa_shortcode,
            "PhoneNumber": msisdn,
            "CallBackURL": self.config.mpesa_callback_url,
            "AccountReference": reference,
            "TransactionDesc": "Payment for ride booking",
        }
        try:
            token = await self._access_token()
            response = await self.client.post(
                "/mpesa/stkpush/v1/processrequest",
                json=body,
                headers={"Authorization": f"Bearer {token}"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as exc:
            raise UpstreamFailure("M-Pesa request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise UpstreamFailure(
                f"M-Pesa returned HTTP {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise UpstreamFailure(f"M-Pesa request failed: {exc}") from exc

        if str(data.get("ResponseCode")) != "0":
            raise UpstreamFailure(
                data.get("errorMessage")
                or data.get("ResponseDescription")
                or "STK push rejected"
            )

        logger.info(
            "STK push accepted reference=%s checkout=%s",
            reference,
            data.get("CheckoutRequestID"),
        )
        return StkPushResult(
            checkout_request_id=data["CheckoutRequestID"],
            merchant_request_id=data.get("MerchantRequestID"),
            customer_message=data.get("CustomerMessage"),
        )


def parse_stk_callback(payload: dict[str, Any]) -> PaymentOutcome:
    """Turn Safaricom's ``Body.stkCallback`` document into an outcome."""
    try:
        callback = payload["Body"]["stkCallback"]
        checkout_id = callback["CheckoutRequestID"]
        result_code = int(callback["ResultCode"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError("Malformed STK callback payload") from exc

    items = callback.get("CallbackMetadata", {}).get("Item", [])
    details = {item["Name"]: item.get("Value") for item in items if "Name" in item}
    return PaymentOutcome(
        checkout_request_id=checkout_id,
        success=result_code == 0,
        result_description=callback.get("ResultDesc", ""),
        details=details,
    )
