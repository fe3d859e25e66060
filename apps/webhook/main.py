from __future__ import annotations

import logging
import secrets
from typing import Any, Optional, Protocol

from dotenv import load_dotenv
from fastapi import BackgroundTasks, Body, FastAPI, Header, HTTPException, Query, status
from fastapi.responses import PlainTextResponse

from adapters.llm.pricing import build_price_oracle
from adapters.llm.provider import build_classifier
from adapters.llm.transcription import OpenAITranscriber, TranscriptionError
from adapters.messaging.whatsapp import GatewayError, WhatsAppGateway
from adapters.render.document import TextBudgetRenderer
from core.accounts.directory import AccountDirectory
from core.config import AppConfig, ensure_directories, get_app_config
from core.ledger.store import SqliteLedgerStore
from core.logging.audit import audit_event, safe_excerpt, user_hash
from core.logging.logger import get_logger
from core.orchestrator.router import DialogOrchestrator
from core.pricing.resolver import PriceResolver
from core.sessions.store import SessionStore

AUDIO_FAILURE = "😕 I couldn't understand the audio. Could you send it again or type your message?"
UNSUPPORTED_MEDIA = "📝 I can only read text or voice messages. Please write or record what you need."
WHATSAPP_OBJECT = "whatsapp_business_account"
_MEDIA_TYPES = {"image", "document", "video", "sticker"}


class Transcriber(Protocol):
    def transcribe(self, audio: bytes, filename: str = "audio.ogg") -> str:
        ...


def build_orchestrator(config: AppConfig, gateway: WhatsAppGateway) -> tuple[DialogOrchestrator, AccountDirectory]:
    db_path = config.paths.db_path
    ledger = SqliteLedgerStore(db_path)
    accounts = AccountDirectory(config.paths.accounts_file)
    prices = PriceResolver(
        build_price_oracle(config.openai),
        freshness_seconds=config.pricing.cache_hours * 3600,
        fallback_price=config.pricing.default_price,
    )
    orchestrator = DialogOrchestrator(
        classifier=build_classifier(config.openai),
        sessions=SessionStore(db_path),
        ledger=ledger,
        prices=prices,
        accounts=accounts,
        gateway=gateway,
        renderer=TextBudgetRenderer(ledger),
        config=config.orchestrator,
    )
    return orchestrator, accounts


def iter_messages(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Flatten ``entry[].changes[].value.messages[]`` from a Cloud API webhook."""
    found: list[dict[str, Any]] = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            for message in value.get("messages") or []:
                if isinstance(message, dict) and message.get("from"):
                    found.append(message)
    return found


class InboundProcessor:
    """Turns one Cloud API message into orchestrator input."""

    def __init__(
        self,
        orchestrator: DialogOrchestrator,
        gateway: WhatsAppGateway,
        transcriber: Optional[Transcriber] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.gateway = gateway
        self.transcriber = transcriber

    def extract_text(self, message: dict[str, Any]) -> Optional[str]:
        user_id = message["from"]
        kind = message.get("type")
        if kind == "text":
            return (message.get("text") or {}).get("body")
        if kind == "button":
            return (message.get("button") or {}).get("text")
        if kind == "interactive":
            interactive = message.get("interactive") or {}
            reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
            return reply.get("title")
        if kind == "audio":
            return self._transcribe(user_id, (message.get("audio") or {}).get("id"))
        if kind in _MEDIA_TYPES:
            self.gateway.send_text(user_id, UNSUPPORTED_MEDIA)
            return None
        audit_event("webhook.message_ignored", type=kind)
        return None

    def _transcribe(self, user_id: str, media_id: Optional[str]) -> Optional[str]:
        if not media_id or self.transcriber is None:
            self.gateway.send_text(user_id, AUDIO_FAILURE)
            return None
        try:
            audio = self.gateway.download_media(media_id)
            return self.transcriber.transcribe(audio)
        except (GatewayError, TranscriptionError):
            audit_event("webhook.audio_failed", level=logging.WARNING, exc_info=True, user=user_hash(user_id))
            self.gateway.send_text(user_id, AUDIO_FAILURE)
            return None

    def handle(self, message: dict[str, Any]) -> Optional[str]:
        user_id = message["from"]
        message_id = message.get("id")
        if message_id:
            try:
                self.gateway.mark_as_read(message_id)
            except GatewayError:
                audit_event("webhook.mark_read_failed", level=logging.WARNING, user=user_hash(user_id))
        try:
            text = self.extract_text(message)
        except GatewayError:
            audit_event("webhook.reply_failed", level=logging.ERROR, exc_info=True, user=user_hash(user_id))
            return None
        if not text or not text.strip():
            return None
        return self.orchestrator.process(user_id, text.strip())


def create_app(
    config: AppConfig | None = None,
    *,
    processor: InboundProcessor | None = None,
    accounts: AccountDirectory | None = None,
) -> FastAPI:
    load_dotenv()
    config = config or get_app_config()
    get_logger()
    if processor is None:
        ensure_directories()
        gateway = WhatsAppGateway(config.whatsapp)
        orchestrator, accounts = build_orchestrator(config, gateway)
        transcriber = OpenAITranscriber(config.openai) if config.openai.enabled else None
        processor = InboundProcessor(orchestrator, gateway, transcriber)
    app = FastAPI(title="BudgetBot WhatsApp")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/webhook", response_class=PlainTextResponse)
    def verify(
        mode: str | None = Query(default=None, alias="hub.mode"),
        token: str | None = Query(default=None, alias="hub.verify_token"),
        challenge: str | None = Query(default=None, alias="hub.challenge"),
    ) -> str:
        expected = config.whatsapp.verify_token
        if mode == "subscribe" and expected and token and secrets.compare_digest(token, expected):
            audit_event("webhook.verified")
            return challenge or ""
        audit_event("webhook.verification_failed", mode=mode)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="verification failed")

    @app.post("/webhook")
    def receive(background_tasks: BackgroundTasks, payload: dict[str, Any] = Body(...)) -> dict[str, Any]:
        if payload.get("object") != WHATSAPP_OBJECT:
            audit_event(
                "webhook.ignored_object",
                level=logging.WARNING,
                object=safe_excerpt(str(payload.get("object")), max_len=40),
            )
            return {"status": "ignored", "queued": 0}
        messages = iter_messages(payload)
        for message in messages:
            background_tasks.add_task(processor.handle, message)
        audit_event("webhook.received", messages=len(messages))
        return {"status": "ok", "queued": len(messages)}

    @app.post("/admin/accounts/reload")
    def reload_accounts(x_admin_token: str | None = Header(default=None)) -> dict[str, int]:
        if not config.admin_token or accounts is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
        if not x_admin_token or not secrets.compare_digest(x_admin_token, config.admin_token):
            audit_event("webhook.admin_denied")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
        return {"accounts": accounts.reload()}

    return app
