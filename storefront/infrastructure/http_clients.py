import httpx
import logging
from typing import List, Optional

from storefront.application.interfaces import EmailService
from storefront.domain.exceptions import ConfigurationError, NotificationError

logger = logging.getLogger(__name__)


class HTTPEmailClient(EmailService):
    """Клиент email-провайдера (Resend API, авторизация Bearer)"""

    def __init__(self, api_url: str, api_key: str, sender: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._api_url = api_url
        self._api_key = api_key
        self._sender = sender
        self._timeout = timeout
        self._transport = transport

    async def send(self, to: List[str], subject: str, html: str, text: str) -> str:
        if not self._api_key:
            raise ConfigurationError("RESEND_API_KEY is not configured")

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self._timeout) as client:
                response = await client.post(
                    self._api_url,
                    json={
                        "from": self._sender,
                        "to": to,
                        "subject": subject,
                        "html": html,
                        "text": text
                    },
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json"
                    }
                )
        except httpx.RequestError as e:
            logger.error(f"Email provider ошибка подключения: {e}")
            raise NotificationError(f"Email provider не доступен: {str(e)}")

        if response.status_code not in (200, 201, 202):
            try:
                message = response.json().get("message") or response.reason_phrase
            except ValueError:
                message = response.reason_phrase
            raise NotificationError(f"Email provider ошибка {response.status_code}: {message}")

        try:
            email_id = response.json().get("id", "")
        except ValueError:
            email_id = ""
        logger.info(f"Письмо '{subject}' отправлено, id={email_id}")
        return email_id
