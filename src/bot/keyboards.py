from __future__ import annotations

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from src.funnel.models import METRIC_LABELS, GoalProgress


def main_menu() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        [
            [
                InlineKeyboardButton("🔻 Funnel (30d)", callback_data="cmd_funnel"),
                InlineKeyboardButton("🎯 Goals", callback_data="cmd_goals"),
            ],
            [
                InlineKeyboardButton("🔗 Share Link", callback_data="cmd_share"),
                InlineKeyboardButton("ℹ️ Help", callback_data="cmd_help"),
            ],
        ]
    )


def account_selector(
    accounts: list[str], action: str
) -> InlineKeyboardMarkup:
    """Build account selector. action is prefixed to callback data."""
    buttons = [
        [InlineKeyboardButton(acct, callback_data=f"{action}_{acct}")]
        for acct in accounts
    ]
    buttons.append([InlineKeyboardButton("« Back", callback_data="cmd_start")])
    return InlineKeyboardMarkup(buttons)


def goal_actions(
    progress: list[GoalProgress], account_id: str
) -> InlineKeyboardMarkup:
    """One archive/restore toggle per goal."""
    buttons = []
    for item in progress:
        goal = item.goal
        label = METRIC_LABELS.get(goal.metric, goal.metric)
        if goal.archived:
            text, cb = f"♻️ Restore #{goal.id} {label}", f"unarchive_{goal.id}"
        else:
            text, cb = f"🗄 Archive #{goal.id} {label}", f"archive_{goal.id}"
        buttons.append([InlineKeyboardButton(text[:40], callback_data=cb)])

    buttons.append(
        [
            InlineKeyboardButton(
                "🗄 Archived", callback_data=f"archived_{account_id}"
            ),
            InlineKeyboardButton("« Back", callback_data="cmd_start"),
        ]
    )
    return InlineKeyboardMarkup(buttons)
