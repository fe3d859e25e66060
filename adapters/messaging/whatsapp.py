from __future__ import annotations

from typing import Any

import requests

from core.config import WhatsAppConfig
from core.logging.audit import audit_event, user_hash


class GatewayError(Exception):
    """WhatsApp Cloud API call failed. Callers decide whether to retry."""


class WhatsAppGateway:
    """Thin client over the WhatsApp Cloud API (Graph API)."""

    def __init__(self, config: WhatsAppConfig, session: requests.Session | None = None) -> None:
        self._config = config
        self._http = session or requests.Session()

    @property
    def _messages_url(self) -> str:
        return f"{self._config.base_url}/{self._config.phone_number_id}/messages"

    def _headers(self) -> dict[str, str]:
        if not self._config.access_token or not self._config.phone_number_id:
            raise GatewayError("WhatsApp is not configured.")
        return {"Authorization": f"Bearer {self._config.access_token}"}

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        try:
            response = self._http.request(
                method, url, headers=headers, timeout=self._config.timeout_seconds, **kwargs
            )
        except requests.RequestException as exc:
            raise GatewayError(f"WhatsApp request failed: {exc}") from exc
        if response.status_code >= 400:
            raise GatewayError(f"WhatsApp returned HTTP {response.status_code}")
        return response

    def _post_message(self, to: str, payload: dict[str, Any]) -> None:
        body = {"messaging_product": "whatsapp", "to": to, **payload}
        self._request("POST", self._messages_url, json=body)

    def send_text(self, user_id: str, text: str) -> None:
        self._post_message(user_id, {"type": "text", "text": {"body": text}})
        audit_event("gateway.text_sent", user=user_hash(user_id), chars=len(text))

    def send_document(self, user_id: str, content: bytes, filename: str, caption: str | None = None) -> None:
        upload = self._request(
            "POST",
            f"{self._config.base_url}/{self._config.phone_number_id}/media",
            data={"messaging_product": "whatsapp", "type": "text/plain"},
            files={"file": (filename, content, "text/plain")},
        )
        media_id = upload.json().get("id")
        if not media_id:
            raise GatewayError("WhatsApp media upload returned no id")
        document: dict[str, Any] = {"id": media_id, "filename": filename}
        if caption:
            document["caption"] = caption
        self._post_message(user_id, {"type": "document", "document": document})
        audit_event("gateway.document_sent", user=user_hash(user_id), bytes=len(content))

    def mark_as_read(self, message_id: str) -> None:
        self._request(
            "POST",
            self._messages_url,
            json={"messaging_product": "whatsapp", "status": "read", "message_id": message_id},
        )

    def download_media(self, media_id: str) -> bytes:
        meta = self._request("GET", f"{self._config.base_url}/{media_id}")
        url = meta.json().get("url")
        if not url:
            raise GatewayError("WhatsApp media lookup returned no url")
        media = self._request("GET", url)
        audit_event("gateway.media_downloaded", bytes=len(media.content))
        return media.content
