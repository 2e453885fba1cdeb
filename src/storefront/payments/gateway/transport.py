"""HTTP and signing helpers shared by the provider adapters."""

import hashlib
import hmac
import json

import httpx
import structlog

from storefront.errors import ProviderError, ProviderTimeout, SignatureError, ValidationError

logger = structlog.get_logger(__name__)


class ProviderHttp:
    """Thin wrapper over ``httpx.Client`` that speaks in storefront errors.

    Timeouts become ``ProviderTimeout``; connection failures, 4xx/5xx answers
    and non-JSON bodies become ``ProviderError``.
    """

    def __init__(self, provider: str, base_url: str, timeout: float = 10.0, client: httpx.Client | None = None):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def request(self, method: str, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("Provider request timed out", provider=self.provider, path=path)
            raise ProviderTimeout(self.provider) from exc
        except httpx.HTTPError as exc:
            logger.error("Provider unreachable", provider=self.provider, path=path, error=str(exc))
            raise ProviderError(self.provider, f"{self.provider} is unreachable: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            logger.error(
                "Provider rejected request",
                provider=self.provider,
                path=path,
                status_code=response.status_code,
                error=message,
            )
            raise ProviderError(
                self.provider,
                f"{self.provider} rejected the request ({response.status_code}): {message}",
                retryable=response.status_code >= 500,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(self.provider, f"{self.provider} returned a non-JSON response") from exc


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("errorMessage", "message", "error_description", "ResponseDescription", "error"):
            if body.get(key):
                return str(body[key])
    return response.reason_phrase


def sign(secret: str, raw_body: bytes, digestmod=hashlib.sha256) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body or b"", digestmod).hexdigest()


def verify_signature(provider: str, secret: str, raw_body: bytes, signature: str | None, digestmod=hashlib.sha256):
    """Raise ``SignatureError`` unless ``signature`` is the hex HMAC of the body."""
    if not signature or not secret:
        raise SignatureError(provider)
    expected = sign(secret, raw_body, digestmod)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        logger.warning("Callback signature mismatch", provider=provider)
        raise SignatureError(provider)


def parse_body(provider: str, raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body or b"")
    except ValueError:
        raise ValidationError(f"{provider} callback body is not valid JSON", {"provider": provider})
    if not isinstance(payload, dict):
        raise ValidationError(f"{provider} callback body must be a JSON object", {"provider": provider})
    return payload
