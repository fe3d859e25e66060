from __future__ import annotations

import logging
import re
import time
from typing import Callable, Optional, Protocol

from core.accounts.directory import AccountConfigError, AccountDirectory
from core.config import OrchestratorConfig, get_orchestrator_config
from core.ledger.errors import BudgetExistsError, BudgetNotFoundError, PartialIngestionError
from core.ledger.models import LineItem, summarize
from core.ledger.store import LedgerStore
from core.logging.audit import audit_event, safe_excerpt, text_hash, user_hash
from core.orchestrator import messages
from core.orchestrator.entities import ItemRequest, build_item_requests, item_names, quantities
from core.orchestrator.matching import BudgetMatcher, build_matcher, pick_by_index
from core.orchestrator.policy import ACTIVE_BUDGET_INTENTS, validate_utterance
from core.orchestrator.schemas import ActionReply, ClassifiedUtterance, Entities
from core.pricing.resolver import PriceResolver, PriceSource
from core.sessions.models import PendingConfirmation, Session
from core.sessions.store import SessionStore

PURGE_INTERVAL_SECONDS = 3600.0
DELETE_BUDGET = "delete_budget"


class IntentClassifier(Protocol):
    def classify(self, text: str, session: Session | None = None) -> ClassifiedUtterance:
        ...


class MessageGateway(Protocol):
    def send_text(self, user_id: str, text: str) -> None:
        ...

    def send_document(self, user_id: str, content: bytes, filename: str, caption: str | None = None) -> None:
        ...


class DocumentRenderer(Protocol):
    def render(self, ledger_handle: str, budget_name: str) -> bytes:
        ...


def document_filename(budget_name: str) -> str:
    slug = re.sub(r"\s+", "_", budget_name.strip())
    return f"Budget_{slug}.txt"


class DialogOrchestrator:
    """Turns one inbound chat message into exactly one budget action and a reply.

    Collaborators are passed in; nothing here talks to the network or the
    database directly. ``process`` never raises.
    """

    def __init__(
        self,
        *,
        classifier: IntentClassifier,
        sessions: SessionStore,
        ledger: LedgerStore,
        prices: PriceResolver,
        accounts: AccountDirectory,
        gateway: MessageGateway,
        renderer: DocumentRenderer,
        matcher: BudgetMatcher | None = None,
        config: OrchestratorConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._classifier = classifier
        self._sessions = sessions
        self._ledger = ledger
        self._prices = prices
        self._accounts = accounts
        self._gateway = gateway
        self._renderer = renderer
        self._config = config or get_orchestrator_config()
        self._matcher = matcher or build_matcher(self._config.matcher)
        self._clock = clock
        self._last_purge: float | None = None
        self._handlers: dict[str, Callable[[Session, Entities], ActionReply]] = {
            "greeting": self._greeting,
            "create_budget": self._create_budget,
            "add_item": self._add_items,
            "edit_item": self._edit_item,
            "delete_item": self._delete_item,
            "delete_budget": self._delete_budget,
            "confirm_delete": self._confirm_delete,
            "cancel": self._cancel,
            "list_budgets": self._list_budgets,
            "change_budget": self._change_budget,
            "download_budget": self._download_budget,
            "view_items": self._view_items,
            "view_total": self._view_total,
            "general_query": self._general_query,
        }

    def process(self, user_id: str, raw_text: str) -> str:
        try:
            reply = self._run_turn(user_id, raw_text)
        except Exception:
            audit_event("orchestrator.turn_failed", level=logging.ERROR, exc_info=True, user=user_hash(user_id))
            try:
                self._gateway.send_text(user_id, messages.GENERIC_FAILURE)
            except Exception:
                audit_event("orchestrator.failure_notice_undelivered", level=logging.ERROR, user=user_hash(user_id))
            return messages.GENERIC_FAILURE
        self._maintain(user_id)
        return reply

    def _run_turn(self, user_id: str, raw_text: str) -> str:
        self._sessions.append_turn(user_id, "user", raw_text)
        session = self._sessions.get_session(user_id, history_limit=self._config.history_limit)
        utterance = self._classify(raw_text, session)
        audit_event(
            "orchestrator.turn",
            user=user_hash(user_id),
            intent=utterance.intent,
            confidence=utterance.confidence,
            text_hash=text_hash(raw_text),
            text_excerpt=safe_excerpt(raw_text, max_len=40),
        )
        reply = self.handle(session, utterance)
        entities = utterance.entities.to_log()
        self._sessions.append_turn(user_id, "agent", reply.text, intent=utterance.intent, entities=entities or None)
        self._gateway.send_text(user_id, reply.text)
        return reply.text

    def _classify(self, text: str, session: Session) -> ClassifiedUtterance:
        try:
            utterance = self._classifier.classify(text, session)
        except Exception:
            audit_event("orchestrator.classifier_failed", level=logging.WARNING, exc_info=True)
            utterance = ClassifiedUtterance.degraded()
        return validate_utterance(utterance, self._config.min_confidence)

    def handle(self, session: Session, utterance: ClassifiedUtterance) -> ActionReply:
        """Run the single action selected by ``utterance.intent`` against ``session``."""
        intent = utterance.intent
        if intent in ACTIVE_BUDGET_INTENTS and not (session.active_budget and session.ledger_handle):
            return ActionReply(messages.select_budget_first())
        handler = self._handlers.get(intent)
        if handler is None:
            return ActionReply(messages.help_text(session.active_budget))
        try:
            return handler(session, utterance.entities)
        except (AccountConfigError, BudgetExistsError) as exc:
            return ActionReply(str(exc))
        except BudgetNotFoundError as exc:
            if session.active_budget and session.active_budget.casefold() == exc.name.casefold():
                self._set_active(session, None)
            return ActionReply(messages.select_budget_first())
        except Exception:
            audit_event(
                "orchestrator.action_failed",
                level=logging.ERROR,
                exc_info=True,
                user=user_hash(session.user_id),
                intent=intent,
            )
            return ActionReply(messages.ACTION_FAILURE)

    def _maintain(self, user_id: str) -> None:
        try:
            self._sessions.trim_history(user_id, keep=self._config.history_keep)
        except Exception:
            audit_event("orchestrator.maintenance_failed", level=logging.WARNING, exc_info=True, task="trim_history")
        now = self._clock()
        if self._last_purge is not None and now - self._last_purge < PURGE_INTERVAL_SECONDS:
            return
        self._last_purge = now
        try:
            self._prices.purge_stale()
        except Exception:
            audit_event("orchestrator.maintenance_failed", level=logging.WARNING, exc_info=True, task="purge_prices")

    def _set_active(self, session: Session, name: str | None) -> None:
        self._sessions.set_active_budget(session.user_id, name)
        session.active_budget = name

    def _resolve_budget(self, entities: Entities, budgets: list[str]) -> tuple[Optional[str], Optional[str]]:
        """Match a budget by name or 1-based index.

        Returns ``(name, None)`` on a hit, ``(None, reply)`` when the user asked
        for something that doesn't exist, and ``(None, None)`` when nothing was
        asked for at all.
        """
        if entities.budget_name:
            match = self._matcher.match(entities.budget_name, budgets)
            if match is None:
                return None, messages.budget_not_found(entities.budget_name, budgets)
            return match, None
        if entities.selection_index is not None:
            match = pick_by_index(entities.selection_index, budgets)
            if match is None:
                return None, messages.pick_budget(budgets)
            return match, None
        return None, None

    def _greeting(self, session: Session, entities: Entities) -> ActionReply:
        return ActionReply(messages.greeting(session.active_budget))

    def _general_query(self, session: Session, entities: Entities) -> ActionReply:
        return ActionReply(messages.commands_for(session.active_budget))

    def _edit_item(self, session: Session, entities: Entities) -> ActionReply:
        return ActionReply(messages.edit_unsupported())

    def _create_budget(self, session: Session, entities: Entities) -> ActionReply:
        name = " ".join((entities.budget_name or "").split())
        if not name:
            return ActionReply(messages.ask_budget_name())
        handle = session.ledger_handle
        if not handle:
            handle = self._accounts.require_ledger(session.user_id)
            self._sessions.set_ledger_handle(session.user_id, handle)
            session.ledger_handle = handle
        self._ledger.create_budget(handle, name)
        self._set_active(session, name)
        return ActionReply(messages.budget_created(name))

    def _list_budgets(self, session: Session, entities: Entities) -> ActionReply:
        if not session.ledger_handle:
            return ActionReply(messages.no_budgets())
        budgets = self._ledger.list_budgets(session.ledger_handle)
        if not budgets:
            return ActionReply(messages.no_budgets())
        return ActionReply(messages.budget_list(budgets, session.active_budget))

    def _change_budget(self, session: Session, entities: Entities) -> ActionReply:
        if not session.ledger_handle:
            return ActionReply(messages.no_budgets())
        budgets = self._ledger.list_budgets(session.ledger_handle)
        if not budgets:
            return ActionReply(messages.no_budgets())
        name, reply = self._resolve_budget(entities, budgets)
        if name is not None:
            self._set_active(session, name)
            return ActionReply(messages.budget_selected(name))
        return ActionReply(reply or messages.budget_list(budgets, session.active_budget))

    def _add_items(self, session: Session, entities: Entities) -> ActionReply:
        handle = session.ledger_handle
        if not handle:
            return ActionReply(messages.no_budgets())

        if entities.budget_name:
            budgets = self._ledger.list_budgets(handle)
            if not budgets:
                return ActionReply(messages.no_budgets())
            name, reply = self._resolve_budget(entities, budgets)
            if name is None:
                return ActionReply(reply or messages.pick_budget(budgets))
            if name != session.active_budget:
                self._set_active(session, name)

        if not session.active_budget:
            budgets = self._ledger.list_budgets(handle)
            if not budgets:
                return ActionReply(messages.no_budgets())
            if len(budgets) == 1:
                self._set_active(session, budgets[0])
            else:
                picked = pick_by_index(entities.selection_index, budgets)
                if picked is None:
                    return ActionReply(messages.pick_budget(budgets))
                self._set_active(session, picked)

        missing = []
        if not item_names(entities):
            missing.append("item")
        if not quantities(entities):
            missing.append("quantity")
        if missing:
            return ActionReply(messages.missing_item_fields(missing))

        budget = session.active_budget
        requests = build_item_requests(entities)
        try:
            rows = self._persist_items(session.user_id, handle, budget, requests)
        except PartialIngestionError as exc:
            audit_event(
                "orchestrator.action_failed",
                level=logging.ERROR,
                exc_info=True,
                user=user_hash(session.user_id),
                intent="add_item",
                committed=len(exc.committed),
                requested=len(requests),
            )
            return ActionReply(messages.partial_ingestion(budget, len(exc.committed), len(requests)))
        return ActionReply(messages.items_added(budget, rows))

    def _persist_items(
        self, user_id: str, handle: str, budget: str, requests: list[ItemRequest]
    ) -> list[tuple[LineItem, PriceSource | None]]:
        if any(request.unit_price is None for request in requests):
            self._gateway.send_text(user_id, messages.LOOKING_UP_PRICES)
        # One write per item, in order. Earlier writes stay committed if a later one fails.
        rows: list[tuple[LineItem, PriceSource | None]] = []
        for request in requests:
            source: PriceSource | None = None
            price = request.unit_price
            if price is None:
                quote = self._prices.get_price(request.name)
                price, source = quote.price, quote.source
            item = LineItem(name=request.name, quantity=request.quantity, unit_price=price)
            try:
                self._ledger.add_item(handle, budget, item)
            except Exception as exc:
                if not rows:
                    raise
                raise PartialIngestionError([row[0] for row in rows], item, exc) from exc
            rows.append((item, source))
        return rows

    def _view_items(self, session: Session, entities: Entities) -> ActionReply:
        items = self._ledger.get_items(session.ledger_handle, session.active_budget)
        if not items:
            return ActionReply(messages.empty_budget(session.active_budget))
        return ActionReply(messages.item_list(session.active_budget, items))

    def _view_total(self, session: Session, entities: Entities) -> ActionReply:
        items = self._ledger.get_items(session.ledger_handle, session.active_budget)
        return ActionReply(messages.total_summary(session.active_budget, summarize(items)))

    def _delete_item(self, session: Session, entities: Entities) -> ActionReply:
        budget = session.active_budget
        items = self._ledger.get_items(session.ledger_handle, budget)
        if not items:
            return ActionReply(messages.empty_budget(budget))
        position = entities.selection_index
        if position is None or not 1 <= position <= len(items):
            return ActionReply(messages.pick_item(budget, items))
        removed = self._ledger.delete_item(session.ledger_handle, budget, position)
        return ActionReply(messages.item_deleted(budget, removed))

    def _delete_budget(self, session: Session, entities: Entities) -> ActionReply:
        if not session.ledger_handle:
            return ActionReply(messages.no_budgets())
        budgets = self._ledger.list_budgets(session.ledger_handle)
        if not budgets:
            return ActionReply(messages.no_budgets())
        name, reply = self._resolve_budget(entities, budgets)
        if name is None:
            return ActionReply(reply or messages.pick_budget(budgets))
        summary = summarize(self._ledger.get_items(session.ledger_handle, name))
        pending = PendingConfirmation(
            kind=DELETE_BUDGET,
            target=name,
            expires_at_turn=session.turn_count + self._config.confirmation_turns,
        )
        self._sessions.set_pending_confirmation(session.user_id, pending)
        session.pending_confirmation = pending
        return ActionReply(messages.confirm_budget_delete(name, summary))

    def _confirm_delete(self, session: Session, entities: Entities) -> ActionReply:
        pending = session.live_pending(DELETE_BUDGET)
        if pending is None or not session.ledger_handle:
            if session.pending_confirmation is not None:
                self._sessions.clear_pending_confirmation(session.user_id)
                session.pending_confirmation = None
            return ActionReply(messages.nothing_pending())
        already_gone = False
        try:
            self._ledger.delete_budget(session.ledger_handle, pending.target)
        except BudgetNotFoundError:
            already_gone = True
        self._sessions.clear_pending_confirmation(session.user_id)
        session.pending_confirmation = None
        if session.active_budget and session.active_budget.casefold() == pending.target.casefold():
            self._set_active(session, None)
        if already_gone:
            audit_event("orchestrator.budget_already_gone", user=user_hash(session.user_id))
            return ActionReply(messages.budget_already_gone(pending.target))
        audit_event("orchestrator.budget_deleted", user=user_hash(session.user_id))
        return ActionReply(messages.budget_deleted(pending.target))

    def _cancel(self, session: Session, entities: Entities) -> ActionReply:
        pending = session.pending_confirmation
        if pending is None:
            return ActionReply(messages.nothing_to_cancel())
        self._sessions.clear_pending_confirmation(session.user_id)
        session.pending_confirmation = None
        if not pending.is_live(session.turn_count):
            return ActionReply(messages.nothing_to_cancel())
        return ActionReply(messages.delete_cancelled(pending.target))

    def _download_budget(self, session: Session, entities: Entities) -> ActionReply:
        budget = session.active_budget
        items = self._ledger.get_items(session.ledger_handle, budget)
        if not items:
            return ActionReply(messages.empty_budget(budget))
        self._gateway.send_text(session.user_id, messages.GENERATING_DOCUMENT)
        try:
            content = self._renderer.render(session.ledger_handle, budget)
        except Exception:
            audit_event("orchestrator.render_failed", level=logging.ERROR, exc_info=True, user=user_hash(session.user_id))
            return ActionReply(messages.RENDER_FAILURE)
        filename = document_filename(budget)
        self._gateway.send_document(session.user_id, content, filename, caption=messages.document_sent(budget))
        return ActionReply(messages.document_sent(budget), document=filename)
