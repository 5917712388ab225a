"""
WhatsApp Cloud API Client
Low-level wrapper for sending messages through the Meta Graph API.

API Documentation: https://developers.facebook.com/docs/whatsapp/cloud-api/reference/messages

Handles:
- Authentication via Bearer token
- Send text messages (with retry)
- Send template messages (with retry)

Retry Strategy:
- Max 3 attempts with exponential backoff (2s, 4s, 8s)
- Only retries on: Timeout, Connection errors, 5xx server errors and 429
- Does NOT retry on: other 4xx client errors (bad number, unknown template, etc.)

Errors are raised as WhatsAppSendError. Explicit API flows let it propagate;
the autonomous AI pipeline catches and logs it.
"""
import logging
import httpx
from typing import Dict, Any, Optional, List

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
    RetryError
)

from app.shared.core.config import settings
from app.shared.core.constants import (
    TIMEOUT_WHATSAPP_MESSAGE,
    MAX_RETRY_ATTEMPTS,
    RETRY_MIN_WAIT_SECONDS,
    RETRY_MAX_WAIT_SECONDS,
)
from app.shared.utils.http_client import http_client_manager

logger = logging.getLogger("whatsapp_client")


# ============================================
# EXCEPTIONS
# ============================================

class WhatsAppSendError(Exception):
    """A message could not be sent. `retryable` tells whether retrying might help."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        self.details = details
        super().__init__(message)


class WhatsAppRetryableError(WhatsAppSendError):
    """Server-side or throttling failure; the request should be retried."""

    def __init__(self, message: str, status_code: Optional[int] = None, details: Any = None):
        super().__init__(message, status_code=status_code, retryable=True, details=details)


class WhatsAppNonRetryableError(WhatsAppSendError):
    """Client error reported by the Graph API; retrying will not help."""


# ============================================
# RETRY DECORATOR
# ============================================

def whatsapp_retry():
    """
    Retry decorator for Graph API calls.

    Retries on WhatsAppRetryableError, httpx timeouts and connection errors.
    """
    return retry(
        stop=stop_after_attempt(MAX_RETRY_ATTEMPTS),
        wait=wait_exponential(
            multiplier=1,
            min=RETRY_MIN_WAIT_SECONDS,
            max=RETRY_MAX_WAIT_SECONDS
        ),
        retry=retry_if_exception_type((
            WhatsAppRetryableError,
            httpx.TimeoutException,
            httpx.ConnectError,
        )),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True
    )


def _graph_error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error", {})
        return error.get("message") or response.text
    except ValueError:
        return response.text


class WhatsAppCloudClient:
    """
    Graph API client for the business phone number.

    Both send methods return the Graph response:
        {"messaging_product": "whatsapp", "contacts": [...], "messages": [{"id": "wamid..."}]}
    """

    def __init__(self):
        self.token = settings.WHATSAPP_TOKEN
        self.phone_number_id = settings.WHATSAPP_PHONE_NUMBER_ID
        self.api_version = settings.WHATSAPP_API_VERSION
        self.base_url = settings.WHATSAPP_GRAPH_URL.rstrip('/')

        if not self.token:
            logger.warning("⚠️ WHATSAPP_TOKEN not configured in .env")

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/{self.api_version}/{self.phone_number_id}/messages"

    def _get_headers(self) -> Dict[str, str]:
        token = self.token
        auth_value = token if token and token.startswith("Bearer ") else f"Bearer {token}"
        return {
            "Authorization": auth_value,
            "Content-Type": "application/json",
        }

    def is_configured(self) -> bool:
        """Check if the Cloud API credentials are set."""
        return bool(self.token and self.phone_number_id)

    # ============================================
    # MESSAGE OPERATIONS (with retry)
    # ============================================

    async def send_text(self, to: str, body: str) -> Dict[str, Any]:
        """
        Send a free-form text message (only allowed inside the 24h session window).

        Raises:
            WhatsAppSendError: on any failure, after retries where applicable
        """
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": False, "body": body},
        }
        return await self._send(payload, description=f"text to {to}")

    async def send_template(
        self,
        to: str,
        template_name: str,
        language_code: str,
        parameters: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """
        Send an approved template message.

        Args:
            to: Recipient WhatsApp number, digits only
            template_name: Approved template name
            language_code: Template language, e.g. "es" or "en_US"
            parameters: Optional template components (header/body parameters)

        Raises:
            WhatsAppSendError: on any failure, after retries where applicable
        """
        template: Dict[str, Any] = {
            "name": template_name,
            "language": {"code": language_code},
        }
        if parameters:
            template["components"] = parameters

        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "template",
            "template": template,
        }
        return await self._send(payload, description=f"template '{template_name}' to {to}")

    async def _send(self, payload: Dict[str, Any], description: str) -> Dict[str, Any]:
        if not self.is_configured():
            raise WhatsAppNonRetryableError("WhatsApp Cloud API is not configured")

        try:
            return await self._post_with_retry(payload, description)
        except WhatsAppSendError:
            raise
        except RetryError as e:
            logger.error(f"All retries exhausted sending {description}: {e}")
            raise WhatsAppSendError(
                f"Failed after {MAX_RETRY_ATTEMPTS} attempts",
                retryable=True
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Transport error sending {description}: {e}")
            raise WhatsAppSendError(f"Transport error: {e}", retryable=True) from e

    @whatsapp_retry()
    async def _post_with_retry(self, payload: Dict[str, Any], description: str) -> Dict[str, Any]:
        """Internal method with retry decorator. Raises so the retry logic can work."""
        client = http_client_manager.get_client()
        response = await client.post(
            self.messages_url,
            headers=self._get_headers(),
            json=payload,
            timeout=TIMEOUT_WHATSAPP_MESSAGE
        )

        if response.status_code in (200, 201):
            data = response.json()
            if not data.get("messages"):
                raise WhatsAppNonRetryableError("Graph API response has no message id", details=data)
            logger.info(f"Sent {description}: {data['messages'][0].get('id')}")
            return data

        error_message = _graph_error_message(response)

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning(f"Graph API error {response.status_code} sending {description}, will retry...")
            raise WhatsAppRetryableError(error_message, status_code=response.status_code)

        logger.error(f"Graph API error {response.status_code} sending {description}: {error_message}")
        raise WhatsAppNonRetryableError(error_message, status_code=response.status_code)


def extract_provider_message_id(response: Dict[str, Any]) -> Optional[str]:
    """The wamid from a Graph send response."""
    messages = response.get("messages") or []
    if messages and isinstance(messages[0], dict):
        return messages[0].get("id")
    return None


# Singleton instance
whatsapp_client = WhatsAppCloudClient()
