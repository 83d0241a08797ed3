# salesdesk/services/messaging.py
from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, Sequence

import requests

from salesdesk.errors import ExternalServiceError, ValidationError
from salesdesk.models import CommunicationStatus
from salesdesk.utils.phone import is_valid_indonesian_mobile, to_international

logger = logging.getLogger(__name__)

_PROVIDER_STATUS = {
    "sent": CommunicationStatus.SENT,
    "delivered": CommunicationStatus.DELIVERED,
    "read": CommunicationStatus.READ,
    "failed": CommunicationStatus.FAILED,
}


def map_provider_status(value: str | None) -> CommunicationStatus:
    """WhatsApp delivery status -> CommunicationStatus. Unknown values count as SENT."""
    return _PROVIDER_STATUS.get((value or "").strip().lower(), CommunicationStatus.SENT)


class MessagingClient(Protocol):
    def send_template(self, phone: str, template_name: str, params: Mapping[str, str] | Sequence[str] | None = None) -> str:
        ...

    def send_text(self, phone: str, body: str) -> str:
        ...


class WhatsAppClient:
    """
    WhatsApp Business Cloud API, messages endpoint only.

    One POST per message, no retries; the configured timeout bounds each call.
    Every failure (transport, HTTP status, malformed body) is raised as
    ExternalServiceError so callers can record the attempt as FAILED.
    """

    def __init__(
        self,
        *,
        phone_number_id: str,
        access_token: str,
        verify_token: str = "",
        api_version: str = "v18.0",
        base_url: str = "https://graph.facebook.com",
        language: str = "id",
        timeout: int = 15,
        http: requests.Session | None = None,
    ):
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.verify_token = verify_token
        self.api_version = api_version
        self.base_url = base_url.rstrip("/")
        self.language = language
        self.timeout = timeout
        self.http = http or requests.Session()

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "WhatsAppClient":
        return cls(
            phone_number_id=config.get("WHATSAPP_PHONE_NUMBER_ID", ""),
            access_token=config.get("WHATSAPP_ACCESS_TOKEN", ""),
            verify_token=config.get("WHATSAPP_WEBHOOK_VERIFY_TOKEN", ""),
            api_version=config.get("WHATSAPP_API_VERSION", "v18.0"),
            base_url=config.get("WHATSAPP_API_BASE_URL", "https://graph.facebook.com"),
            language=config.get("WHATSAPP_TEMPLATE_LANGUAGE", "id"),
            timeout=config.get("WHATSAPP_TIMEOUT_SECONDS", 15),
        )

    @property
    def messages_url(self) -> str:
        return f"{self.base_url}/{self.api_version}/{self.phone_number_id}/messages"

    # ======================
    # Sending
    # ======================
    def send_template(self, phone: str, template_name: str, params: Mapping[str, str] | Sequence[str] | None = None) -> str:
        if not (template_name or "").strip():
            raise ValidationError("Template name is required", field="template_name")

        values = list(params.values()) if isinstance(params, Mapping) else list(params or [])
        template: dict[str, Any] = {
            "name": template_name.strip(),
            "language": {"code": self.language},
        }
        if values:
            template["components"] = [
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": str(v)} for v in values],
                }
            ]

        return self._post({
            "messaging_product": "whatsapp",
            "to": self._recipient(phone),
            "type": "template",
            "template": template,
        })

    def send_text(self, phone: str, body: str) -> str:
        if not (body or "").strip():
            raise ValidationError("Message body is required", field="body")

        return self._post({
            "messaging_product": "whatsapp",
            "to": self._recipient(phone),
            "type": "text",
            "text": {"body": body},
        })

    def _recipient(self, phone: str) -> str:
        if not is_valid_indonesian_mobile(phone):
            raise ValidationError(f"Invalid Indonesian phone number: {phone}", field="phone")
        # API wants digits only, no leading +
        return to_international(phone)[1:]

    def _post(self, payload: dict) -> str:
        if not self.phone_number_id or not self.access_token:
            raise ExternalServiceError("WhatsApp is not configured")

        try:
            r = self.http.post(
                self.messages_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("WhatsApp request failed: %s", exc)
            raise ExternalServiceError("WhatsApp request failed", reason=str(exc)) from exc

        if r.status_code >= 400:
            try:
                error = (r.json() or {}).get("error", {})
                reason = error.get("message") if isinstance(error, dict) else str(error)
            except ValueError:
                reason = (r.text or "")[:200]
            logger.warning("WhatsApp API returned %s: %s", r.status_code, reason)
            raise ExternalServiceError(
                f"WhatsApp API returned HTTP {r.status_code}",
                status=r.status_code,
                reason=reason,
            )

        try:
            return r.json()["messages"][0]["id"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ExternalServiceError("WhatsApp response did not include a message id") from exc

    # ======================
    # Webhook
    # ======================
    def verify_webhook(self, mode: str | None, token: str | None, challenge: str | None) -> str | None:
        if mode == "subscribe" and self.verify_token and token == self.verify_token:
            return challenge
        return None
