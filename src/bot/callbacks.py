from __future__ import annotations

import logging

from sqlalchemy.orm import sessionmaker
from telegram import Update
from telegram.ext import CallbackQueryHandler, ContextTypes

from config.settings import Settings
from src.bot import formatters, keyboards
from src.bot.handlers import HELP_TEXT, funnel_text, goals_progress
from src.dashboard import service
from src.storage import repository
from src.storage.database import session_scope
from src.utils.errors import GoalNotFoundError

logger = logging.getLogger("funnel-dashboard")


def make_callback_handler(settings: Settings, factory: sessionmaker) -> CallbackQueryHandler:
    async def handle_callback(
        update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        query = update.callback_query
        await query.answer()

        chat_id = update.effective_chat.id if update.effective_chat else None
        if chat_id != settings.telegram_chat_id:
            return

        data = query.data
        logger.info("Callback: %s", data)
        accts = settings.ad_account_ids

        # --- Menu commands ---
        if data == "cmd_start":
            await query.edit_message_text(
                "👋 *Funnel Dashboard*\n\nChoose an action:",
                reply_markup=keyboards.main_menu(),
                parse_mode="MarkdownV2",
            )
            return

        if data == "cmd_help":
            await query.edit_message_text(
                HELP_TEXT,
                reply_markup=keyboards.main_menu(),
                parse_mode="MarkdownV2",
            )
            return

        if data in ("cmd_funnel", "cmd_goals", "cmd_share"):
            action = data.replace("cmd_", "selacct_")
            if len(accts) == 1:
                await _dispatch_account(query, action, accts[0])
            else:
                await query.edit_message_text(
                    "Select an account:",
                    reply_markup=keyboards.account_selector(accts, action),
                )
            return

        # --- Account selection ---
        if data.startswith("selacct_"):
            parts = data.split("_", 2)  # selacct, action, account id
            if len(parts) == 3:
                await _dispatch_account(query, f"selacct_{parts[1]}", parts[2])
            return

        if data.startswith("archived_"):
            account_id = data.replace("archived_", "", 1)
            await _show_goals(query, account_id, include_archived=True)
            return

        # --- Goal archive toggles ---
        if data.startswith(("archive_", "unarchive_")):
            verb, raw_id = data.split("_", 1)
            try:
                with session_scope(factory) as session:
                    goal = repository.set_goal_archived(
                        session, int(raw_id), verb == "archive"
                    )
            except GoalNotFoundError as e:
                await query.edit_message_text(
                    formatters.format_error(str(e)), parse_mode="MarkdownV2"
                )
                return
            await _show_goals(query, goal.account_id, include_archived=goal.archived)
            return

    async def _dispatch_account(query, action: str, account_id: str) -> None:
        if account_id not in settings.ad_account_ids:
            logger.warning("Callback for unknown account %s", account_id)
            return
        if action == "selacct_funnel":
            await query.edit_message_text("Building funnel\\.\\.\\.", parse_mode="MarkdownV2")
            try:
                text = funnel_text(factory, account_id)
            except Exception as e:
                logger.exception("Funnel failed for %s", account_id)
                text = formatters.format_error(f"Error for {account_id}: {e}")
            await query.message.reply_text(text, parse_mode="MarkdownV2")
        elif action == "selacct_goals":
            await _show_goals(query, account_id)
        elif action == "selacct_share":
            with session_scope(factory) as session:
                token = repository.rotate_public_token(session, account_id)
            url = service.share_url(settings.share_base_url, token)
            await query.edit_message_text(
                f"🔗 Share link for `{formatters._esc(account_id)}`:\n{formatters._esc(url)}",
                parse_mode="MarkdownV2",
            )

    async def _show_goals(query, account_id: str, include_archived: bool = False) -> None:
        try:
            progress = goals_progress(settings, factory, account_id, include_archived)
        except Exception as e:
            logger.exception("Goals failed for %s", account_id)
            await query.edit_message_text(
                formatters.format_error(str(e)), parse_mode="MarkdownV2"
            )
            return
        if include_archived:
            progress = [item for item in progress if item.goal.archived]
        await query.edit_message_text(
            formatters.format_goals(account_id, progress),
            reply_markup=keyboards.goal_actions(progress, account_id),
            parse_mode="MarkdownV2",
        )

    return CallbackQueryHandler(handle_callback)
