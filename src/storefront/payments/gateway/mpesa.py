"""M-Pesa (Daraja) adapter — mobile-money push payments.

The customer receives an STK push on their phone and approves it there; the
outcome arrives later as a callback keyed by ``CheckoutRequestID``.
"""

import base64
import hashlib
import os
import re
from datetime import UTC, datetime

import httpx
import structlog

from storefront.errors import ProviderError, ValidationError
from storefront.payments.gateway.port import (
    CallbackOutcome,
    CallbackStatus,
    ProviderAdapter,
    ProviderName,
    ProviderRef,
    RefundOutcome,
)
from storefront.payments.gateway.transport import ProviderHttp, parse_body, verify_signature

logger = structlog.get_logger(__name__)

SANDBOX_URL = "https://sandbox.safaricom.co.ke"
PRODUCTION_URL = "https://api.safaricom.co.ke"

PHONE_PATTERN = re.compile(r"^254[0-9]{9}$")

# Daraja result codes worth explaining to the customer
RESULT_MESSAGES = {
    1: "Insufficient funds",
    2: "Less than minimum transaction value",
    3: "More than maximum transaction value",
    4: "Would exceed daily transfer limit",
    1001: "Request cancelled by user",
    1032: "Request cancelled by user",
    1037: "Phone could not be reached",
    2001: "Wrong PIN entered",
}


class MpesaAdapter(ProviderAdapter):
    name = ProviderName.MPESA
    signature_header = "X-Mpesa-Signature"
    refund_key = "mpesaReceiptNumber"

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        shortcode: str,
        passkey: str,
        callback_url: str,
        base_url: str = SANDBOX_URL,
        initiator: str = "",
        security_credential: str = "",
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.shortcode = shortcode
        self.passkey = passkey
        self.callback_url = callback_url
        self.initiator = initiator
        self.security_credential = security_credential
        self.http = ProviderHttp(self.name.value, base_url, timeout=timeout, client=client)

    @classmethod
    def from_env(cls, timeout: float = 10.0, client: httpx.Client | None = None) -> "MpesaAdapter":
        env = os.environ.get("MPESA_ENV", "sandbox")
        return cls(
            consumer_key=os.environ.get("MPESA_CONSUMER_KEY", ""),
            consumer_secret=os.environ.get("MPESA_CONSUMER_SECRET", ""),
            shortcode=os.environ.get("MPESA_SHORTCODE", ""),
            passkey=os.environ.get("MPESA_PASSKEY", ""),
            callback_url=os.environ.get("MPESA_CALLBACK_URL", ""),
            base_url=PRODUCTION_URL if env == "production" else SANDBOX_URL,
            initiator=os.environ.get("MPESA_INITIATOR", ""),
            security_credential=os.environ.get("MPESA_SECURITY_CREDENTIAL", ""),
            timeout=timeout,
            client=client,
        )

    def _access_token(self) -> str:
        credentials = base64.b64encode(f"{self.consumer_key}:{self.consumer_secret}".encode()).decode()
        body = self.http.request(
            "GET",
            "/oauth/v1/generate",
            params={"grant_type": "client_credentials"},
            headers={"Authorization": f"Basic {credentials}"},
        )
        return body["access_token"]

    def _password(self, timestamp: str) -> str:
        return base64.b64encode(f"{self.shortcode}{self.passkey}{timestamp}".encode()).decode()

    def validate_details(self, method_details: dict) -> None:
        phone = str(method_details.get("phone_number") or "").strip()
        if not PHONE_PATTERN.match(phone):
            raise ValidationError(
                "Invalid phone number format. Must start with 254 followed by 9 digits",
                {"phone_number": phone},
            )

    def initiate(self, amount: float, reference: str, method_details: dict) -> ProviderRef:
        self.validate_details(method_details)
        phone = str(method_details["phone_number"]).strip()
        if amount <= 0:
            raise ValidationError("Amount must be greater than 0", {"amount": amount})

        timestamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
        token = self._access_token()
        body = self.http.request(
            "POST",
            "/mpesa/stkpush/v1/processrequest",
            headers={"Authorization": f"Bearer {token}"},
            json={
                "BusinessShortCode": self.shortcode,
                "Password": self._password(timestamp),
                "Timestamp": timestamp,
                "TransactionType": "CustomerPayBillOnline",
                "Amount": round(amount),
                "PartyA": phone,
                "PartyB": self.shortcode,
                "PhoneNumber": phone,
                "CallBackURL": self.callback_url,
                "AccountReference": reference,
                "TransactionDesc": f"Payment {reference}",
            },
        )

        if str(body.get("ResponseCode")) != "0":
            raise ProviderError(
                self.name.value,
                f"M-Pesa error: {body.get('ResponseDescription') or 'request not accepted'}",
                retryable=False,
            )

        logger.info(
            "M-Pesa STK push accepted",
            checkout_request_id=body.get("CheckoutRequestID"),
            reference=reference,
        )
        return ProviderRef(
            reference=body["CheckoutRequestID"],
            metadata={
                "checkoutRequestId": body["CheckoutRequestID"],
                "merchantRequestId": str(body.get("MerchantRequestID") or ""),
                "phoneNumber": phone,
            },
        )

    def verify_callback(self, raw_body: bytes, signature: str | None) -> CallbackOutcome:
        verify_signature(self.name.value, self.passkey, raw_body, signature, hashlib.sha256)
        payload = parse_body(self.name.value, raw_body)

        callback = (payload.get("Body") or {}).get("stkCallback")
        if not callback or not callback.get("CheckoutRequestID"):
            raise ValidationError("M-Pesa callback has no stkCallback", {"provider": self.name.value})

        items = {
            item.get("Name"): item.get("Value")
            for item in (callback.get("CallbackMetadata") or {}).get("Item", [])
            if item.get("Name")
        }
        result_code = int(callback.get("ResultCode", -1))

        if result_code == 0:
            receipt = str(items.get("MpesaReceiptNumber") or "")
            metadata = {"mpesaReceiptNumber": receipt}
            if items.get("PhoneNumber"):
                metadata["phoneNumber"] = str(items["PhoneNumber"])
            if items.get("TransactionDate"):
                metadata["transactionDate"] = str(items["TransactionDate"])
            return CallbackOutcome(
                reference=callback["CheckoutRequestID"],
                status=CallbackStatus.PAID,
                provider_transaction_id=receipt or None,
                metadata=metadata,
                raw=payload,
            )

        reason = RESULT_MESSAGES.get(result_code) or callback.get("ResultDesc") or "Transaction failed"
        return CallbackOutcome(
            reference=callback["CheckoutRequestID"],
            status=CallbackStatus.FAILED,
            failure_reason=reason,
            metadata={"resultCode": str(result_code)},
            raw=payload,
        )

    def query_status(self, reference: str) -> CallbackOutcome:
        timestamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
        token = self._access_token()
        body = self.http.request(
            "POST",
            "/mpesa/stkpushquery/v1/query",
            headers={"Authorization": f"Bearer {token}"},
            json={
                "BusinessShortCode": self.shortcode,
                "Password": self._password(timestamp),
                "Timestamp": timestamp,
                "CheckoutRequestID": reference,
            },
        )

        if body.get("ResultCode") in (None, ""):
            return CallbackOutcome(reference=reference, status=CallbackStatus.PENDING, raw=body)

        result_code = int(body["ResultCode"])
        if result_code == 0:
            # The query carries no receipt number; the callback is the only source of one
            return CallbackOutcome(reference=reference, status=CallbackStatus.PAID, raw=body)
        return CallbackOutcome(
            reference=reference,
            status=CallbackStatus.FAILED,
            failure_reason=RESULT_MESSAGES.get(result_code) or body.get("ResultDesc") or "Transaction failed",
            metadata={"resultCode": str(result_code)},
            raw=body,
        )

    def refund(self, provider_transaction_id: str, amount: float, reason: str) -> RefundOutcome:
        token = self._access_token()
        body = self.http.request(
            "POST",
            "/mpesa/reversal/v1/request",
            headers={"Authorization": f"Bearer {token}"},
            json={
                "Initiator": self.initiator,
                "SecurityCredential": self.security_credential,
                "CommandID": "TransactionReversal",
                "TransactionID": provider_transaction_id,
                "Amount": round(amount),
                "ReceiverParty": self.shortcode,
                "RecieverIdentifierType": "11",
                "ResultURL": self.callback_url,
                "QueueTimeOutURL": self.callback_url,
                "Remarks": (reason or "Refund")[:100],
                "Occasion": "Refund",
            },
        )
        if str(body.get("ResponseCode")) != "0":
            return RefundOutcome(
                success=False,
                status="rejected",
                failure_reason=body.get("ResponseDescription") or "Reversal rejected",
            )
        return RefundOutcome(
            success=True,
            provider_refund_id=body.get("ConversationID"),
            status="pending",
        )
