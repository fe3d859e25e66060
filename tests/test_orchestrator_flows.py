from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from adapters.messaging.whatsapp import GatewayError
from core.accounts.directory import Account, AccountDirectory
from core.config import OrchestratorConfig
from core.ledger.models import LineItem
from core.ledger.store import SqliteLedgerStore
from core.orchestrator import messages
from core.orchestrator.deterministic import RuleBasedClassifier
from core.orchestrator.router import DialogOrchestrator
from core.orchestrator.schemas import ClassifiedUtterance, Entities
from core.pricing.resolver import PriceResolver
from core.sessions.models import Session
from core.sessions.store import SessionStore


USER = "56911112222"
STRANGER = "56900000000"


class ScriptedClassifier:
    """Rule-based classification unless an utterance was queued for the next turn."""

    def __init__(self) -> None:
        self._rules = RuleBasedClassifier()
        self._queued: list[ClassifiedUtterance] = []
        self.sessions: list[Session | None] = []

    def queue(self, intent: str, confidence: float = 0.9, **entities: Any) -> None:
        self._queued.append(ClassifiedUtterance(intent=intent, entities=Entities(**entities), confidence=confidence))

    def classify(self, text: str, session: Session | None = None) -> ClassifiedUtterance:
        self.sessions.append(session)
        if self._queued:
            return self._queued.pop(0)
        return self._rules.classify(text, session)


class CountingOracle:
    def __init__(self, price: str = "1200") -> None:
        self.price = price
        self.calls: list[str] = []

    def quote(self, item_name: str) -> str:
        self.calls.append(item_name)
        return self.price


@dataclass
class FakeGateway:
    texts: list[tuple[str, str]] = field(default_factory=list)
    documents: list[tuple[str, bytes, str, str | None]] = field(default_factory=list)
    fail: bool = False

    def send_text(self, user_id: str, text: str) -> None:
        if self.fail:
            raise GatewayError("offline")
        self.texts.append((user_id, text))

    def send_document(self, user_id: str, content: bytes, filename: str, caption: str | None = None) -> None:
        self.documents.append((user_id, content, filename, caption))


class FakeRenderer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail

    def render(self, ledger_handle: str, budget_name: str) -> bytes:
        if self.fail:
            raise RuntimeError("renderer crashed")
        return f"{ledger_handle}:{budget_name}".encode("utf-8")


class FlakyLedger(SqliteLedgerStore):
    def __init__(self, db_path: Path, fail_on: str) -> None:
        super().__init__(db_path)
        self.fail_on = fail_on

    def add_item(self, ledger_handle: str, budget_name: str, item: LineItem) -> None:
        if item.name == self.fail_on:
            raise RuntimeError("sheet quota exceeded")
        super().add_item(ledger_handle, budget_name, item)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@dataclass
class Harness:
    orchestrator: DialogOrchestrator
    sessions: SessionStore
    ledger: SqliteLedgerStore
    gateway: FakeGateway
    classifier: ScriptedClassifier
    oracle: CountingOracle
    prices: PriceResolver
    clock: FakeClock

    def say(self, text: str, user: str = USER) -> str:
        return self.orchestrator.process(user, text)

    def session(self) -> Session:
        return self.sessions.get_session(USER)


def _config(**overrides: Any) -> OrchestratorConfig:
    values = dict(history_limit=10, history_keep=50, min_confidence=0.5, confirmation_turns=5, matcher="tiered")
    values.update(overrides)
    return OrchestratorConfig(**values)


def build_harness(
    db_path: Path,
    *,
    ledger: SqliteLedgerStore | None = None,
    sessions: SessionStore | None = None,
    renderer: FakeRenderer | None = None,
    config: OrchestratorConfig | None = None,
) -> Harness:
    ledger = ledger or SqliteLedgerStore(db_path)
    sessions = sessions or SessionStore(db_path)
    gateway = FakeGateway()
    classifier = ScriptedClassifier()
    oracle = CountingOracle()
    prices = PriceResolver(oracle)
    clock = FakeClock()
    accounts = AccountDirectory(
        accounts=[
            Account("ashly", "Ashly", USER, "L1"),
            Account("noledger", "No Ledger", "56933334444", None),
        ]
    )
    orchestrator = DialogOrchestrator(
        classifier=classifier,
        sessions=sessions,
        ledger=ledger,
        prices=prices,
        accounts=accounts,
        gateway=gateway,
        renderer=renderer or FakeRenderer(),
        config=config or _config(),
        clock=clock,
    )
    return Harness(orchestrator, sessions, ledger, gateway, classifier, oracle, prices, clock)


@pytest.fixture
def bot(db_path: Path) -> Harness:
    return build_harness(db_path)


@pytest.mark.parametrize("text", ["items", "total", "delete 1", "pdf"])
def test_active_budget_intents_ask_for_selection_first(bot: Harness, text: str) -> None:
    reply = bot.say(text)
    assert reply == messages.select_budget_first()
    assert bot.ledger.list_budgets("L1") == []
    assert bot.gateway.texts == [(USER, reply)]


def test_create_budget_resolves_ledger_and_activates(bot: Harness) -> None:
    reply = bot.say("create budget Casa Ashly")
    assert reply == messages.budget_created("Casa Ashly")
    session = bot.session()
    assert session.ledger_handle == "L1"
    assert session.active_budget == "Casa Ashly"
    assert bot.ledger.list_budgets("L1") == ["Casa Ashly"]


def test_create_budget_without_name_is_a_no_op(bot: Harness) -> None:
    assert bot.say("create budget") == messages.ask_budget_name()
    assert bot.session().ledger_handle is None


def test_configuration_errors_are_shown_verbatim(bot: Harness) -> None:
    assert "not registered" in bot.say("create budget Casa", user=STRANGER)
    assert "no budget ledger" in bot.say("create budget Casa", user="56933334444")


def test_name_collision_is_reported_not_retried(bot: Harness) -> None:
    bot.say("create budget Casa")
    reply = bot.say("create budget casa")
    assert 'A budget named "casa" already exists' in reply
    assert bot.ledger.list_budgets("L1") == ["Casa"]


def test_add_items_resolves_only_missing_prices(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.classifier.queue("add_item", item=["a", "b"], quantity=[10, 5], unit_price=[8500, None])
    reply = bot.say("10 a at 8500 and 5 b")

    assert bot.oracle.calls == ["b"]
    items = bot.ledger.get_items("L1", "Casa")
    assert items == [LineItem("a", 10, 8500), LineItem("b", 5, 1200)]
    assert [item.subtotal for item in items] == [85000, 6000]
    assert "(Homecenter price)" in reply
    assert reply.count("price)") == 1


def test_scalar_quantity_broadcasts_across_items(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.classifier.queue("add_item", item=["a", "b"], quantity=3)
    bot.say("3 of a and b")
    assert [item.quantity for item in bot.ledger.get_items("L1", "Casa")] == [3, 3]


def test_lone_price_with_several_items_is_looked_up(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.classifier.queue("add_item", item=["a", "b"], quantity=[1, 1], unit_price=500)
    bot.say("a and b at 500")
    assert bot.oracle.calls == ["a", "b"]
    assert [item.unit_price for item in bot.ledger.get_items("L1", "Casa")] == [1200, 1200]


def test_price_rounding_to_zero_is_looked_up(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.classifier.queue("add_item", item="tornillo", quantity=10, unit_price=0.4)
    bot.say("10 tornillos at 0.4")
    assert bot.oracle.calls == ["tornillo"]
    assert bot.ledger.get_items("L1", "Casa") == [LineItem("tornillo", 10, 1200)]


def test_price_lookup_notice_only_when_a_price_is_missing(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.classifier.queue("add_item", item="a", quantity=2, unit_price=900)
    bot.say("2 a at 900")
    assert (USER, messages.LOOKING_UP_PRICES) not in bot.gateway.texts

    bot.classifier.queue("add_item", item=["b", "c"], quantity=[1, 1], unit_price=[300, None])
    reply = bot.say("b at 300 and c")
    notices = [text for _, text in bot.gateway.texts if text == messages.LOOKING_UP_PRICES]
    assert notices == [messages.LOOKING_UP_PRICES]
    assert bot.gateway.texts.index((USER, messages.LOOKING_UP_PRICES)) < bot.gateway.texts.index((USER, reply))


def test_missing_entities_are_asked_for_individually(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.classifier.queue("add_item", item="cemento")
    assert bot.say("cemento") == messages.missing_item_fields(["quantity"])
    bot.classifier.queue("add_item", quantity=4)
    assert bot.say("4") == messages.missing_item_fields(["item"])
    assert bot.ledger.get_items("L1", "Casa") == []


def test_add_item_switches_to_fuzzy_matched_budget(bot: Harness) -> None:
    bot.say("create budget Casa Ashly")
    bot.say("create budget Garage")
    bot.classifier.queue("add_item", budget_name="casa", item="arena", quantity=2, unit_price=3000)
    bot.say("2 arena at 3000 for casa")
    assert bot.session().active_budget == "Casa Ashly"
    assert bot.ledger.get_items("L1", "Casa Ashly") == [LineItem("arena", 2, 3000)]


def test_created_budget_name_collapses_whitespace(bot: Harness) -> None:
    bot.classifier.queue("create_budget", budget_name="  Casa   Ashly ")
    assert bot.say("create budget Casa   Ashly") == messages.budget_created("Casa Ashly")
    assert bot.session().active_budget == "Casa Ashly"
    assert "1. Casa Ashly ✅" in bot.say("budgets")


def test_add_item_with_unknown_budget_lists_and_stops(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.classifier.queue("add_item", budget_name="oficina", item="arena", quantity=2)
    reply = bot.say("2 arena for oficina")
    assert "oficina" in reply
    assert "1. Casa" in reply
    assert bot.ledger.get_items("L1", "Casa") == []


def test_add_item_without_active_budget(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.sessions.set_active_budget(USER, None)
    bot.say("2 arena at 3000")
    assert bot.session().active_budget == "Casa"

    bot.say("create budget Garage")
    bot.sessions.set_active_budget(USER, None)
    assert bot.say("5 clavos at 100") == messages.pick_budget(["Casa", "Garage"])
    assert bot.say("2") == messages.budget_selected("Garage")
    assert bot.session().active_budget == "Garage"


def test_partial_failure_keeps_committed_items(db_path: Path) -> None:
    bot = build_harness(db_path, ledger=FlakyLedger(db_path, fail_on="b"))
    bot.say("create budget Casa")
    bot.classifier.queue("add_item", item=["a", "b", "c"], quantity=1, unit_price=[100, 200, 300])
    reply = bot.say("1 a, 1 b, 1 c")
    assert reply == messages.partial_ingestion("Casa", 1, 3)
    assert bot.ledger.get_items("L1", "Casa") == [LineItem("a", 1, 100)]


def test_first_item_failure_is_a_generic_apology(db_path: Path) -> None:
    bot = build_harness(db_path, ledger=FlakyLedger(db_path, fail_on="a"))
    bot.say("create budget Casa")
    assert bot.say("1 a at 100") == messages.ACTION_FAILURE


def test_view_items_and_total(bot: Harness) -> None:
    bot.say("create budget Casa")
    assert bot.say("total").startswith('💰 Total for "Casa": $0')
    assert bot.say("items") == messages.empty_budget("Casa")
    bot.say("1 a at 1000, 1 b at 3000")

    total = bot.say("total")
    assert "$4.000" in total
    assert "Highest: b ($3.000)" in total
    assert "Lowest: a ($1.000)" in total
    assert "Average: $2.000" in total
    assert "1. a x1 @ $1.000 = $1.000" in bot.say("items")


def test_delete_item_uses_live_positions(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.say("1 a at 100, 1 b at 100, 1 c at 100")
    assert bot.say("delete 2") == messages.item_deleted("Casa", LineItem("b", 1, 100))
    assert bot.say("delete 2") == messages.item_deleted("Casa", LineItem("c", 1, 100))
    assert [item.name for item in bot.ledger.get_items("L1", "Casa")] == ["a"]


def test_delete_item_out_of_range_prompts_for_selection(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.say("1 a at 100")
    reply = bot.say("delete 7")
    assert reply.startswith("🗑️ Which item")
    assert len(bot.ledger.get_items("L1", "Casa")) == 1


def test_confirm_without_pending_request(bot: Harness) -> None:
    bot.say("create budget Casa")
    assert bot.say("yes") == messages.nothing_pending()
    assert bot.ledger.list_budgets("L1") == ["Casa"]


def test_two_phase_budget_delete_round_trip(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.say("create budget X")
    assert "X" in bot.ledger.list_budgets("L1")

    prompt = bot.say("delete budget X")
    assert prompt.startswith('⚠️ Delete budget "X"?')
    assert bot.ledger.list_budgets("L1") == ["Casa", "X"]
    assert bot.session().pending_confirmation is not None

    assert bot.say("yes") == messages.budget_deleted("X")
    assert bot.ledger.list_budgets("L1") == ["Casa"]
    session = bot.session()
    assert session.active_budget is None
    assert session.pending_confirmation is None
    assert bot.say("yes") == messages.nothing_pending()


def test_deleting_other_budget_keeps_active(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.say("create budget Garage")
    bot.say("delete budget casa")
    bot.say("yes")
    assert bot.ledger.list_budgets("L1") == ["Garage"]
    assert bot.session().active_budget == "Garage"


def test_confirming_delete_of_budget_removed_elsewhere(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.say("create budget Garage")
    bot.say("delete budget Casa")
    bot.ledger.delete_budget("L1", "Casa")

    assert bot.say("yes") == messages.budget_already_gone("Casa")
    session = bot.session()
    assert session.pending_confirmation is None
    assert session.active_budget == "Garage"
    assert bot.say("yes") == messages.nothing_pending()


def test_removed_budget_that_was_active_is_cleared_on_confirm(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.say("delete budget Casa")
    bot.ledger.delete_budget("L1", "Casa")
    assert bot.say("yes") == messages.budget_already_gone("Casa")
    assert bot.session().active_budget is None


def test_delete_budget_without_target_lists_budgets(bot: Harness) -> None:
    bot.say("create budget Casa")
    assert bot.say("delete budget") == messages.pick_budget(["Casa"])
    assert bot.session().pending_confirmation is None


def test_pending_delete_survives_unrelated_turns_until_expiry(db_path: Path) -> None:
    bot = build_harness(db_path, config=_config(confirmation_turns=2))
    bot.say("create budget Casa")
    bot.say("delete budget Casa")
    bot.say("items")
    assert bot.say("yes") == messages.budget_deleted("Casa")

    bot.say("create budget Garage")
    bot.say("delete budget Garage")
    bot.say("items")
    bot.say("total")
    assert bot.say("yes") == messages.nothing_pending()
    assert bot.ledger.list_budgets("L1") == ["Garage"]


def test_cancel_clears_pending_delete(bot: Harness) -> None:
    bot.say("create budget Casa")
    assert bot.say("cancel") == messages.nothing_to_cancel()
    bot.say("delete budget Casa")
    assert bot.say("cancel") == messages.delete_cancelled("Casa")
    assert bot.say("yes") == messages.nothing_pending()
    assert bot.ledger.list_budgets("L1") == ["Casa"]


def test_change_and_list_budgets(bot: Harness) -> None:
    assert bot.say("budgets") == messages.no_budgets()
    bot.say("create budget Casa Ashly")
    bot.say("create budget Garage")
    assert "2. Garage ✅" in bot.say("budgets")
    assert bot.say("change budget casa") == messages.budget_selected("Casa Ashly")
    assert "I couldn't find" in bot.say("change budget oficina")
    assert bot.session().active_budget == "Casa Ashly"


def test_low_confidence_falls_back_to_contextual_help(bot: Harness) -> None:
    bot.say("create budget Casa")
    bot.classifier.queue("delete_budget", confidence=0.2, budget_name="Casa")
    reply = bot.say("hmm casa?")
    assert reply == messages.help_text("Casa")
    assert bot.session().pending_confirmation is None


def test_download_sends_document(bot: Harness) -> None:
    bot.say("create budget Casa Ashly")
    bot.say("2 arena at 3000")
    reply = bot.say("pdf")
    assert reply == messages.document_sent("Casa Ashly")
    assert (USER, messages.GENERATING_DOCUMENT) in bot.gateway.texts
    ((user, content, filename, _caption),) = bot.gateway.documents
    assert (user, filename) == (USER, "Budget_Casa_Ashly.txt")
    assert content == b"L1:Casa Ashly"


def test_download_render_failure_is_generic(db_path: Path) -> None:
    bot = build_harness(db_path, renderer=FakeRenderer(fail=True))
    bot.say("create budget Casa")
    bot.say("2 arena at 3000")
    assert bot.say("pdf") == messages.RENDER_FAILURE
    assert bot.gateway.documents == []


def test_download_empty_budget(bot: Harness) -> None:
    bot.say("create budget Casa")
    assert bot.say("pdf") == messages.empty_budget("Casa")
    assert (USER, messages.GENERATING_DOCUMENT) not in bot.gateway.texts


def test_turns_are_logged_with_intent_and_entities(bot: Harness) -> None:
    bot.say("create budget Casa")
    turns = bot.sessions.get_recent_turns(USER)
    assert [turn.role for turn in turns] == ["user", "agent"]
    assert turns[0].text == "create budget Casa"
    assert turns[1].intent == "create_budget"
    assert turns[1].entities == {"budgetName": "Casa"}
    assert bot.classifier.sessions[0].history[-1].text == "create budget Casa"


def test_unknown_echoes_active_budget(bot: Harness) -> None:
    bot.say("create budget Casa")
    assert "Casa" in bot.say("what's the weather like")
    assert "Hi!" in bot.say("hola")


def test_collaborator_failure_becomes_apology(db_path: Path) -> None:
    class BrokenLedger(SqliteLedgerStore):
        def list_budgets(self, ledger_handle: str) -> list[str]:
            raise RuntimeError("spreadsheet API 503")

    bot = build_harness(db_path, ledger=BrokenLedger(db_path))
    bot.say("create budget Casa")
    reply = bot.say("budgets")
    assert reply == messages.ACTION_FAILURE
    assert "503" not in reply


def test_process_never_raises(db_path: Path) -> None:
    class BrokenSessions(SessionStore):
        def append_turn(self, *args: Any, **kwargs: Any) -> int:
            raise RuntimeError("disk full")

    bot = build_harness(db_path, sessions=BrokenSessions(db_path))
    assert bot.say("hola") == messages.GENERIC_FAILURE
    assert bot.gateway.texts == [(USER, messages.GENERIC_FAILURE)]

    bot.gateway.fail = True
    assert bot.say("hola") == messages.GENERIC_FAILURE


def test_maintenance_failures_are_swallowed(db_path: Path) -> None:
    class NoTrimSessions(SessionStore):
        def trim_history(self, user_id: str, keep: int = 50) -> int:
            raise RuntimeError("locked")

    bot = build_harness(db_path, sessions=NoTrimSessions(db_path))
    assert bot.say("create budget Casa") == messages.budget_created("Casa")


def test_history_is_trimmed_and_price_purge_is_throttled(db_path: Path) -> None:
    bot = build_harness(db_path, config=_config(history_keep=4))
    purges: list[int] = []
    original = bot.prices.purge_stale

    def counting_purge() -> int:
        purges.append(1)
        return original()

    bot.prices.purge_stale = counting_purge  # type: ignore[method-assign]
    for _ in range(3):
        bot.say("hola")
    assert len(bot.sessions.get_recent_turns(USER, limit=50)) == 4
    assert len(purges) == 1

    bot.clock.now += 3601
    bot.say("hola")
    assert len(purges) == 2
