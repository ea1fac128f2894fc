"""
Email Notifications - transactional email through the SendGrid v3 API.
"""

import httpx
from structlog import get_logger

from storefront.exceptions import NotificationError

logger = get_logger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


class EmailNotifier:
    """Sends transactional email. A notifier without an API key only logs."""

    def __init__(
        self,
        api_key: str,
        from_address: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key
        self.from_address = from_address
        self._http_client = http_client

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    async def send_templated(self, to: str, subject: str, html: str, text: str = "") -> bool:
        """
        Send one email.

        Returns:
            False when email is not configured, True when SendGrid accepted it

        Raises:
            NotificationError: SendGrid rejected the message or was unreachable
        """
        if not self.enabled:
            logger.info("email_disabled", subject=subject)
            return False

        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.from_address},
            "subject": subject,
            "content": [
                {"type": "text/plain", "value": text or subject},
                {"type": "text/html", "value": html},
            ],
        }
        try:
            response = await self.http_client.post(
                SENDGRID_SEND_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "email_send_rejected",
                status=exc.response.status_code,
                text=exc.response.text[:200],
            )
            raise NotificationError(f"SendGrid returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.error("email_send_failed", error=str(exc))
            raise NotificationError(f"SendGrid unreachable: {exc}") from exc

        logger.info("email_sent", subject=subject)
        return True

    async def send_password_reset(self, to: str, reset_url: str) -> bool:
        """Email a password reset link."""
        html = (
            "<p>Recibimos una solicitud para restablecer tu contraseña de Ministerio AI.</p>"
            f'<p><a href="{reset_url}">Restablecer contraseña</a></p>'
            "<p>El enlace vence en una hora. Si no lo solicitaste, ignora este mensaje.</p>"
        )
        return await self.send_templated(
            to=to,
            subject="Restablece tu contraseña",
            html=html,
            text=f"Restablece tu contraseña: {reset_url}",
        )

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
