from __future__ import annotations

import logging

from sqlalchemy.orm import sessionmaker
from telegram import Update
from telegram.ext import ContextTypes

from config.settings import Settings
from src.bot import formatters, keyboards, parsing
from src.dashboard import service
from src.storage import repository
from src.storage.database import session_scope
from src.utils.errors import FunnelDashboardError

logger = logging.getLogger("funnel-dashboard")

HELP_TEXT = (
    "*Commands*\n\n"
    "/start — Main menu\n"
    "/funnel \\[since until\\] — Funnel for a range \\(default 30 days\\)\n"
    "/goals — Goal progress\n"
    "/setmetric YYYY\\-MM followers\\|scheduled\\|showed value — Monthly manual data, \\- clears\n"
    "/setmetric YYYY\\-MM — Show the manual data of a month\n"
    "/funnelsteps \\[metric \\.\\.\\.\\] — Show or reorder funnel steps\n"
    "/analysis YYYY\\-MM \\[text\\] — Show notes or save the month analysis\n"
    "/comment YYYY\\-MM \\[headline \\|\\] text — Comment on a month\n"
    "/delcomment id — Delete a comment\n"
    "/clientname name — Client name shown on reports\n"
    "/addgoal metric target monthly\\|total \\[YYYY\\-MM\\-DD\\] — New goal\n"
    "/archivegoal id — Hide or restore a goal\n"
    "/deletegoal id — Delete a goal\n"
    "/share — New read\\-only link for clients\n"
    "/help — This message\n\n"
    "With several accounts, pass the act\\_ ID before the other arguments\\."
)


def _authorized(settings: Settings):
    """Decorator: silently ignore unauthorized users."""

    def decorator(func):
        async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE):
            chat_id = update.effective_chat.id if update.effective_chat else None
            logger.info(
                "%s from chat_id=%s",
                func.__name__,
                chat_id,
            )
            if chat_id != settings.telegram_chat_id:
                logger.warning("Unauthorized access attempt from chat_id=%s", chat_id)
                return
            try:
                return await func(update, context)
            except parsing.UsageError as e:
                await update.message.reply_text(
                    formatters.format_error(str(e)), parse_mode="MarkdownV2"
                )
            except (FunnelDashboardError, ValueError) as e:
                logger.warning("%s failed: %s", func.__name__, e)
                await update.message.reply_text(
                    formatters.format_error(str(e)), parse_mode="MarkdownV2"
                )

        return wrapper

    return decorator


def funnel_text(factory: sessionmaker, account_id: str, date_range=None) -> str:
    with session_scope(factory) as session:
        payload = service.get_dashboard_funnel(session, account_id, date_range)
    return formatters.format_funnel_report(payload)


def goals_progress(
    settings: Settings, factory: sessionmaker, account_id: str, include_archived: bool = False
):
    with session_scope(factory) as session:
        return service.get_goals_progress(
            session,
            account_id,
            epoch=settings.goal_epoch,
            include_archived=include_archived,
        )


def notes_text(factory: sessionmaker, account_id: str, month) -> str:
    with session_scope(factory) as session:
        notes = service.get_monthly_notes(session, account_id, month)
    return formatters.format_monthly_notes(account_id, notes)


def _author(update: Update) -> str:
    user = update.effective_user
    return user.full_name if user else ""


def register_handlers(app, settings: Settings, factory: sessionmaker) -> None:
    """Register all command handlers on the Application."""
    from telegram.ext import CommandHandler, MessageHandler, filters

    from src.bot.callbacks import make_callback_handler

    auth = _authorized(settings)
    accounts = settings.ad_account_ids

    @auth
    async def start_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.message.reply_text(
            "👋 *Funnel Dashboard*\n\nChoose an action:",
            reply_markup=keyboards.main_menu(),
            parse_mode="MarkdownV2",
        )

    @auth
    async def funnel_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        args = list(context.args or [])
        targets = accounts
        if args and args[0].startswith("act_"):
            acct, args = parsing.resolve_account(args, accounts)
            targets = [acct]
        date_range = parsing.parse_range(args)

        await update.message.reply_text("Building funnel\\.\\.\\.", parse_mode="MarkdownV2")
        for acct in targets:
            try:
                text = funnel_text(factory, acct, date_range)
            except Exception as e:
                logger.exception("Funnel failed for %s", acct)
                text = formatters.format_error(f"Error for {acct}: {e}")
            await update.message.reply_text(text, parse_mode="MarkdownV2")

    @auth
    async def goals_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        for acct in accounts:
            try:
                progress = goals_progress(settings, factory, acct)
                text = formatters.format_goals(acct, progress)
                markup = keyboards.goal_actions(progress, acct)
            except Exception as e:
                logger.exception("Goals failed for %s", acct)
                text, markup = formatters.format_error(f"Error for {acct}: {e}"), None
            await update.message.reply_text(text, reply_markup=markup, parse_mode="MarkdownV2")

    @auth
    async def setmetric_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        acct, args = parsing.resolve_account(list(context.args or []), accounts)
        if len(args) == 1:
            month = parsing.parse_month(args[0])
            with session_scope(factory) as session:
                record = repository.get_month_metrics(session, acct, month)
            await update.message.reply_text(
                formatters.format_month_metrics(acct, f"{month:%Y-%m}", record),
                parse_mode="MarkdownV2",
            )
            return
        if len(args) != 3:
            raise parsing.UsageError("Usage: /setmetric YYYY-MM followers|scheduled|showed value")
        month = parsing.parse_month(args[0])
        field, value = parsing.parse_metric_value(args[1], args[2])

        with session_scope(factory) as session:
            repository.update_funnel_metric(session, acct, month, field, value)
        shown = "cleared" if value is None else f"set to {value}"
        await update.message.reply_text(
            formatters.format_success(f"{field} for {month:%Y-%m} {shown}"),
            parse_mode="MarkdownV2",
        )

    @auth
    async def addgoal_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        acct, args = parsing.resolve_account(list(context.args or []), accounts)
        fields = parsing.parse_goal(args)
        with session_scope(factory) as session:
            goal = repository.save_goal(session, acct, **fields)
        await update.message.reply_text(
            formatters.format_success(f"Goal #{goal.id} created"),
            parse_mode="MarkdownV2",
        )

    @auth
    async def archivegoal_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        goal_id = parsing.parse_goal_id(list(context.args or []))
        with session_scope(factory) as session:
            current = repository.get_goal(session, goal_id)
            goal = repository.set_goal_archived(session, goal_id, not current.archived)
        state = "archived" if goal.archived else "restored"
        await update.message.reply_text(
            formatters.format_success(f"Goal #{goal_id} {state}"),
            parse_mode="MarkdownV2",
        )

    @auth
    async def deletegoal_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        goal_id = parsing.parse_goal_id(list(context.args or []))
        with session_scope(factory) as session:
            repository.delete_goal(session, goal_id)
        await update.message.reply_text(
            formatters.format_success(f"Goal #{goal_id} deleted"),
            parse_mode="MarkdownV2",
        )

    @auth
    async def share_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        acct, _ = parsing.resolve_account(list(context.args or []), accounts)
        with session_scope(factory) as session:
            token = repository.rotate_public_token(session, acct)
        url = service.share_url(settings.share_base_url, token)
        await update.message.reply_text(
            f"🔗 Share link for `{formatters._esc(acct)}`:\n{formatters._esc(url)}",
            parse_mode="MarkdownV2",
        )

    @auth
    async def funnelsteps_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        acct, args = parsing.resolve_account(list(context.args or []), accounts)
        with session_scope(factory) as session:
            if args:
                steps = repository.save_funnel_config(
                    session, acct, parsing.parse_funnel_steps(args)
                )
            else:
                steps = repository.get_funnel_config(repository.require_account(session, acct))
        await update.message.reply_text(
            formatters.format_funnel_steps(acct, steps), parse_mode="MarkdownV2"
        )

    @auth
    async def analysis_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        acct, args = parsing.resolve_account(list(context.args or []), accounts)
        month, text = parsing.parse_month_text(args, "Usage: /analysis YYYY-MM [text]")
        if text:
            with session_scope(factory) as session:
                repository.upsert_monthly_report(session, acct, month, text)
        await update.message.reply_text(
            notes_text(factory, acct, month), parse_mode="MarkdownV2"
        )

    @auth
    async def comment_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        acct, args = parsing.resolve_account(list(context.args or []), accounts)
        month, headline, content = parsing.parse_comment(args)
        with session_scope(factory) as session:
            comment = repository.add_comment(
                session, acct, month, content, headline=headline, author=_author(update)
            )
        await update.message.reply_text(
            formatters.format_success(f"Comment #{comment['id']} added to {month:%Y-%m}"),
            parse_mode="MarkdownV2",
        )

    @auth
    async def delcomment_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        comment_id = parsing.parse_goal_id(list(context.args or []), noun="comment")
        with session_scope(factory) as session:
            repository.delete_comment(session, comment_id)
        await update.message.reply_text(
            formatters.format_success(f"Comment #{comment_id} deleted"),
            parse_mode="MarkdownV2",
        )

    @auth
    async def clientname_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        acct, args = parsing.resolve_account(list(context.args or []), accounts)
        with session_scope(factory) as session:
            account = repository.set_client_name(session, acct, " ".join(args))
        shown = account.client_name or "cleared"
        await update.message.reply_text(
            formatters.format_success(f"Client name for {acct}: {shown}"),
            parse_mode="MarkdownV2",
        )

    @auth
    async def help_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.message.reply_text(HELP_TEXT, parse_mode="MarkdownV2")

    @auth
    async def unknown_cmd(update: Update, context: ContextTypes.DEFAULT_TYPE):
        await update.message.reply_text(
            "Unknown command\\. Try /help for available commands\\.",
            parse_mode="MarkdownV2",
        )

    app.add_handler(CommandHandler("start", start_cmd))
    app.add_handler(CommandHandler("funnel", funnel_cmd))
    app.add_handler(CommandHandler("goals", goals_cmd))
    app.add_handler(CommandHandler("setmetric", setmetric_cmd))
    app.add_handler(CommandHandler("addgoal", addgoal_cmd))
    app.add_handler(CommandHandler("archivegoal", archivegoal_cmd))
    app.add_handler(CommandHandler("deletegoal", deletegoal_cmd))
    app.add_handler(CommandHandler("funnelsteps", funnelsteps_cmd))
    app.add_handler(CommandHandler("analysis", analysis_cmd))
    app.add_handler(CommandHandler("comment", comment_cmd))
    app.add_handler(CommandHandler("delcomment", delcomment_cmd))
    app.add_handler(CommandHandler("clientname", clientname_cmd))
    app.add_handler(CommandHandler("share", share_cmd))
    app.add_handler(CommandHandler("help", help_cmd))
    app.add_handler(make_callback_handler(settings, factory))
    app.add_handler(MessageHandler(filters.COMMAND, unknown_cmd))
