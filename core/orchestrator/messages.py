from __future__ import annotations

from typing import Sequence

from core.ledger.models import BudgetSummary, LineItem
from core.pricing.resolver import PriceSource

GENERIC_FAILURE = "😕 Sorry, something went wrong while processing your message. Please try again in a moment."
ACTION_FAILURE = "😕 Sorry, I couldn't complete that right now. Please try again."
RENDER_FAILURE = "😕 I couldn't generate the document right now. Please try again in a few minutes."
GENERATING_DOCUMENT = "⏳ Generating your budget document..."
LOOKING_UP_PRICES = "🔍 Looking up prices..."

PRICE_LABELS: dict[PriceSource, str] = {
    PriceSource.ESTIMATED: "Homecenter price",
    PriceSource.CACHE: "cached price",
    PriceSource.DEFAULT: "estimated price",
}


def format_money(amount: float) -> str:
    """Whole-peso amount with dot thousands separators, e.g. ``$8.500``."""
    rounded = int(round(amount))
    sign = "-" if rounded < 0 else ""
    return f"{sign}${abs(rounded):,}".replace(",", ".")


def format_quantity(quantity: float) -> str:
    if float(quantity).is_integer():
        return str(int(quantity))
    return f"{quantity:g}".replace(".", ",")


def numbered(names: Sequence[str]) -> str:
    return "\n".join(f"{index}. {name}" for index, name in enumerate(names, start=1))


def item_line(position: int, item: LineItem) -> str:
    return (
        f"{position}. {item.name} x{format_quantity(item.quantity)} "
        f"@ {format_money(item.unit_price)} = {format_money(item.subtotal)}"
    )


def commands_for(active_budget: str | None) -> str:
    if active_budget:
        return (
            f"📋 Active budget: *{active_budget}*\n\n"
            "You can:\n"
            '• Add items: "10 cement at 8500, 5 nails"\n'
            '• See items: "items"\n'
            '• See the total: "total"\n'
            '• Delete an item: "delete 2"\n'
            '• Download it: "pdf"\n'
            '• Switch budget: "change budget <name>"'
        )
    return (
        "You don't have an active budget.\n\n"
        "You can:\n"
        '• Create one: "create budget <name>"\n'
        '• See your budgets: "budgets"\n'
        '• Pick one: "change budget <name>"'
    )


def greeting(active_budget: str | None) -> str:
    return f"👋 Hi! I help you build itemized budgets over chat.\n\n{commands_for(active_budget)}"


def help_text(active_budget: str | None) -> str:
    return f"🤔 I didn't quite get that.\n\n{commands_for(active_budget)}"


def ask_budget_name() -> str:
    return '📝 What should the new budget be called? e.g. "create budget Kitchen"'


def budget_created(name: str) -> str:
    return (
        f'✅ Budget "{name}" created and set as active.\n\n'
        'Now add items, e.g. "10 cement at 8500" or "3 paint buckets".'
    )


def no_budgets() -> str:
    return '📭 You don\'t have any budgets yet. Create one with "create budget <name>".'


def budget_list(budgets: Sequence[str], active_budget: str | None = None) -> str:
    lines = [f"{index}. {name}{' ✅' if name == active_budget else ''}" for index, name in enumerate(budgets, 1)]
    return "📂 Your budgets:\n\n" + "\n".join(lines) + '\n\nReply with a name or number to select one.'


def pick_budget(budgets: Sequence[str]) -> str:
    return "📂 Which budget do you mean?\n\n" + numbered(budgets) + "\n\nReply with the name or number."


def budget_not_found(query: str, budgets: Sequence[str]) -> str:
    return f'🔍 I couldn\'t find a budget matching "{query}".\n\n' + pick_budget(budgets)


def budget_selected(name: str) -> str:
    return f'📋 Now working on "{name}".'


def select_budget_first() -> str:
    return '📂 First select a budget. Send "budgets" to see your list.'


def missing_item_fields(missing: Sequence[str]) -> str:
    if list(missing) == ["item"]:
        return '🛒 Which item should I add? e.g. "10 cement"'
    if list(missing) == ["quantity"]:
        return '🔢 How many? e.g. "10 cement"'
    return '🛒 Tell me the item and quantity, e.g. "10 cement at 8500".'


def items_added(budget: str, rows: Sequence[tuple[LineItem, PriceSource | None]]) -> str:
    lines = []
    for item, source in rows:
        label = f" ({PRICE_LABELS[source]})" if source is not None else ""
        lines.append(
            f"• {item.name} x{format_quantity(item.quantity)} @ {format_money(item.unit_price)}{label}"
            f" = {format_money(item.subtotal)}"
        )
    header = f'✅ Added {len(rows)} item(s) to "{budget}":'
    return header + "\n" + "\n".join(lines)


def partial_ingestion(budget: str, saved: int, total: int) -> str:
    return (
        f'⚠️ Only {saved} of {total} item(s) were saved to "{budget}" before an error.\n'
        'Send "items" to check what was stored before retrying the rest.'
    )


def empty_budget(budget: str) -> str:
    return f'📭 "{budget}" has no items yet. Add some, e.g. "10 cement".'


def item_list(budget: str, items: Sequence[LineItem]) -> str:
    lines = [item_line(position, item) for position, item in enumerate(items, start=1)]
    total = sum(item.subtotal for item in items)
    return f'📋 Items in "{budget}":\n\n' + "\n".join(lines) + f"\n\n💰 Total: {format_money(total)}"


def total_summary(budget: str, summary: BudgetSummary) -> str:
    text = f'💰 Total for "{budget}": {format_money(summary.total)}\n📦 Items: {summary.count}'
    if summary.highest is not None and summary.lowest is not None:
        text += (
            f"\n⬆️ Highest: {summary.highest.name} ({format_money(summary.highest.subtotal)})"
            f"\n⬇️ Lowest: {summary.lowest.name} ({format_money(summary.lowest.subtotal)})"
            f"\n📊 Average: {format_money(summary.mean)}"
        )
    return text


def pick_item(budget: str, items: Sequence[LineItem]) -> str:
    lines = [item_line(position, item) for position, item in enumerate(items, start=1)]
    return f'🗑️ Which item should I delete from "{budget}"?\n\n' + "\n".join(lines) + '\n\nReply e.g. "delete 2".'


def item_deleted(budget: str, item: LineItem) -> str:
    return f'🗑️ Deleted "{item.name}" from "{budget}".'


def edit_unsupported() -> str:
    return (
        "✏️ Editing items isn't supported yet.\n\n"
        'Delete the item ("delete 2") and add it again with the right values.'
    )


def confirm_budget_delete(name: str, summary: BudgetSummary) -> str:
    return (
        f'⚠️ Delete budget "{name}"?\n'
        f"It has {summary.count} item(s) for a total of {format_money(summary.total)}.\n\n"
        'Reply "yes" to confirm or "cancel" to keep it.'
    )


def budget_deleted(name: str) -> str:
    return f'🗑️ Budget "{name}" deleted.'


def budget_already_gone(name: str) -> str:
    return f'🤷 Budget "{name}" no longer exists. Send "budgets" to see your list.'


def nothing_pending() -> str:
    return "🤷 There's nothing pending to confirm."


def nothing_to_cancel() -> str:
    return "👍 There's nothing to cancel."


def delete_cancelled(name: str) -> str:
    return f'👍 Kept budget "{name}".'


def document_sent(budget: str) -> str:
    return f'📄 Here is the document for "{budget}".'
