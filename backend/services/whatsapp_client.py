"""WhatsApp Cloud API client for outbound text messages."""
import logging
import time
from typing import Any, Dict, Optional

import httpx

from config import WHATSAPP_TOKEN, PHONE_NUMBER_ID, WHATSAPP_API_URL

logger = logging.getLogger(__name__)


class WhatsAppError(RuntimeError):
    """Sending a WhatsApp message failed."""


class WhatsAppClient:
    """Sends text messages through the WhatsApp Cloud (Graph) API."""

    def __init__(
        self,
        token: Optional[str] = WHATSAPP_TOKEN,
        phone_number_id: Optional[str] = PHONE_NUMBER_ID,
        api_url: str = WHATSAPP_API_URL,
        timeout: float = 15.0
    ):
        if not token or not phone_number_id:
            raise ValueError("WHATSAPP_TOKEN and PHONE_NUMBER_ID must be set in environment variables")

        self.token = token
        self.phone_number_id = phone_number_id
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    @property
    def messages_url(self) -> str:
        return f"{self.api_url}/{self.phone_number_id}/messages"

    def send_text(self, to: str, body: str) -> Dict[str, Any]:
        """
        Send a text message.

        Args:
            to: Recipient phone number (WhatsApp id)
            body: Message text

        Returns:
            Parsed Graph API response

        Raises:
            WhatsAppError: On network errors or a non-2xx response
        """
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": False, "body": body}
        }
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json"
        }

        start_time = time.time()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(self.messages_url, headers=headers, json=payload)
        except httpx.TimeoutException as e:
            raise WhatsAppError(f"WhatsApp request timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            raise WhatsAppError(f"Network error sending WhatsApp message: {e}") from e

        elapsed_ms = int((time.time() - start_time) * 1000)
        if response.status_code >= 300:
            error_msg = f"WhatsApp API returned {response.status_code}: {response.text}"
            logger.error(error_msg)
            raise WhatsAppError(error_msg)

        logger.info(f"Sent WhatsApp message to {to} ({len(body)} chars) in {elapsed_ms}ms")
        return response.json() if response.content else {}
