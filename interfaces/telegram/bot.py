"""
Concierge Telegram Bot Interface

Gives the household access to the media concierge from their phones.
Free-text messages are classified and routed to a workflow; inline
buttons are routed to callback handlers. Auth is enforced on every
handler: only allowed chat IDs can interact (an empty allow-list means
anyone who finds the bot).

TelegramTransport is the chat transport handed to the workflows. It is
created before the bot starts and attached to the Application's Bot
once polling begins.

Usage:
    transport = TelegramTransport()
    bot = TelegramBot(token="...", allowed_chat_ids=[123456],
                      engine=engine, classifier=classifier, transport=transport)
    await bot.start()    # non-blocking
    await bot.stop()
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ChatAction, ParseMode
from telegram.error import BadRequest
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from core.callbacks import Keyboard

logger = logging.getLogger("concierge.telegram")

STATUS_UNDERSTANDING = "🧠 Understanding your request…"
STATUS_CLASSIFYING = "🔍 Classifying intent…"
STATUS_ROUTING = "🚦 Routing request…"
STATUS_ERROR = "❌ Error processing request."

TYPING_INTERVAL = 4.0

WELCOME_TEXT = (
    "👋 Media Concierge online.\n\n"
    "Just tell me what you want in plain words, e.g.\n"
    "• \"redownload the latest housewives\"\n"
    "• \"do we have severance?\"\n"
    "• \"empty the recycle bin\"\n\n"
    "Commands:\n"
    "/status: backend health report\n"
    "/reload: re-read settings.toml\n"
    "/help: show this list"
)


def to_markup(keyboard: Keyboard | None) -> InlineKeyboardMarkup | None:
    """Neutral Button rows -> InlineKeyboardMarkup. [] clears the buttons."""
    if keyboard is None:
        return None
    rows = []
    for row in keyboard:
        buttons = []
        for button in row:
            if button.url:
                buttons.append(InlineKeyboardButton(button.text, url=button.url))
            else:
                buttons.append(InlineKeyboardButton(button.text, callback_data=button.callback))
        rows.append(buttons)
    return InlineKeyboardMarkup(rows)


def _not_modified(error: BadRequest) -> bool:
    return "message is not modified" in str(error).lower()


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

def build_application(token: str) -> Application:
    """PTB application that handles updates from different chats concurrently."""
    return (
        Application.builder()
        .token(token)
        .concurrent_updates(True)
        .build()
    )


class TelegramTransport:
    """Chat transport over a telegram.Bot.

    Args:
        bot: A telegram.Bot. May be attached later via attach().
    """

    def __init__(self, bot=None):
        self._bot = bot

    def attach(self, bot):
        self._bot = bot

    @property
    def bot(self):
        if self._bot is None:
            raise RuntimeError("Telegram transport is not attached to a bot yet")
        return self._bot

    @staticmethod
    def _parse_mode(markdown: bool) -> str | None:
        return ParseMode.MARKDOWN if markdown else None

    async def send(self, cid: Any, text: str, keyboard: Keyboard | None = None, markdown: bool = False) -> int:
        message = await self.bot.send_message(
            chat_id=cid,
            text=text,
            reply_markup=to_markup(keyboard),
            parse_mode=self._parse_mode(markdown),
            disable_web_page_preview=True,
        )
        return message.message_id

    async def send_photo(
        self, cid: Any, photo_url: str, caption: str,
        keyboard: Keyboard | None = None, markdown: bool = False,
    ) -> int:
        message = await self.bot.send_photo(
            chat_id=cid,
            photo=photo_url,
            caption=caption,
            reply_markup=to_markup(keyboard),
            parse_mode=self._parse_mode(markdown),
        )
        return message.message_id

    async def edit(
        self, cid: Any, message_id: int, text: str,
        keyboard: Keyboard | None = None, markdown: bool = False,
    ):
        try:
            await self.bot.edit_message_text(
                chat_id=cid,
                message_id=message_id,
                text=text,
                reply_markup=to_markup(keyboard),
                parse_mode=self._parse_mode(markdown),
                disable_web_page_preview=True,
            )
        except BadRequest as e:
            if not _not_modified(e):
                raise

    async def edit_caption(
        self, cid: Any, message_id: int, caption: str,
        keyboard: Keyboard | None = None, markdown: bool = False,
    ):
        try:
            await self.bot.edit_message_caption(
                chat_id=cid,
                message_id=message_id,
                caption=caption,
                reply_markup=to_markup(keyboard),
                parse_mode=self._parse_mode(markdown),
            )
        except BadRequest as e:
            if not _not_modified(e):
                raise

    async def edit_keyboard(self, cid: Any, message_id: int, keyboard: Keyboard | None):
        try:
            await self.bot.edit_message_reply_markup(
                chat_id=cid,
                message_id=message_id,
                reply_markup=to_markup(keyboard or []),
            )
        except BadRequest as e:
            if not _not_modified(e):
                raise

    async def delete(self, cid: Any, message_id: int):
        await self.bot.delete_message(chat_id=cid, message_id=message_id)

    async def typing(self, cid: Any):
        await self.bot.send_chat_action(chat_id=cid, action=ChatAction.TYPING)


# ---------------------------------------------------------------------------
# Bot
# ---------------------------------------------------------------------------

class TelegramBot:
    """Telegram bot interface for the concierge.

    Connects to the Telegram Bot API via long-polling. The workflow
    engine, classifier and transport are injected via the constructor.

    If token is empty, start() returns immediately and the bot is disabled.

    Args:
        token:            Bot token from @BotFather. Empty = disabled.
        allowed_chat_ids: Chat IDs authorized to use the bot. Empty = all.
        engine:           WorkflowEngine (route_intent / handle_callback).
        classifier:       IntentClassifier.
        transport:        TelegramTransport shared with the workflows.
        status_report:    Async callable returning the /status text.
        reload_settings:  Async callable that reloads settings and returns
                          the /reload reply.
        typing_interval:  Seconds between typing indicator refreshes.
    """

    def __init__(
        self,
        token: str,
        allowed_chat_ids: list[int],
        engine,
        classifier,
        transport: TelegramTransport,
        status_report: Callable[[], Awaitable[str]] | None = None,
        reload_settings: Callable[[], Awaitable[str]] | None = None,
        typing_interval: float = TYPING_INTERVAL,
    ):
        self._token = token
        self._allowed_ids = set(allowed_chat_ids or [])
        self._engine = engine
        self._classifier = classifier
        self._transport = transport
        self._status_report = status_report
        self._reload_settings = reload_settings
        self._typing_interval = typing_interval

        self._app: Application | None = None
        self._connected = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Initialize and start polling. Non-blocking.

        Uses initialize() + start() + start_polling() instead of
        run_polling() so the event loop stays free for the scheduler.
        """
        if not self._token:
            logger.warning("Telegram bot disabled, no bot_token configured")
            return

        self._app = build_application(self._token)

        self._app.add_handler(CommandHandler("start", self._cmd_start))
        self._app.add_handler(CommandHandler("help", self._cmd_help))
        self._app.add_handler(CommandHandler("status", self._cmd_status))
        self._app.add_handler(CommandHandler("reload", self._cmd_reload))
        self._app.add_handler(CallbackQueryHandler(self._handle_callback))
        self._app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_text))

        await self._app.initialize()
        self._transport.attach(self._app.bot)
        await self._app.start()
        await self._app.updater.start_polling(drop_pending_updates=True)

        self._connected = True
        logger.info("Telegram bot started (polling)")

    async def stop(self):
        """Gracefully stop the bot and clean up."""
        if self._app is None:
            return

        try:
            if self._app.updater and self._app.updater.running:
                await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
        except Exception as e:
            logger.warning("Error stopping Telegram bot: %s", e)

        self._connected = False
        logger.info("Telegram bot stopped")

    @property
    def is_connected(self) -> bool:
        """Whether the bot is actively polling Telegram."""
        return self._connected

    # ------------------------------------------------------------------
    # Auth guard
    # ------------------------------------------------------------------

    def is_allowed(self, chat_id: int | None) -> bool:
        if chat_id is None:
            return False
        return not self._allowed_ids or chat_id in self._allowed_ids

    def _is_authorized(self, update: Update) -> bool:
        chat_id = update.effective_chat.id if update.effective_chat else None
        return self.is_allowed(chat_id)

    async def _reject_unauthorized(self, update: Update):
        chat_id = update.effective_chat.id if update.effective_chat else "unknown"
        user = update.effective_user
        username = user.username if user else "unknown"
        logger.warning("Unauthorized Telegram access from chat_id=%s user=%s", chat_id, username)
        if update.callback_query is not None:
            await update.callback_query.answer("Not authorized.")
            return
        if update.message is not None:
            await update.message.reply_text("Access denied. This bot is restricted to authorized users.")

    # ------------------------------------------------------------------
    # Command handlers
    # ------------------------------------------------------------------

    async def _cmd_start(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /start: greeting and command list."""
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        await update.message.reply_text(WELCOME_TEXT)

    async def _cmd_help(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /help: same as /start."""
        await self._cmd_start(update, context)

    async def _cmd_status(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /status: backend health report."""
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        if self._status_report is None:
            await update.message.reply_text("Status reporting is not available.")
            return
        try:
            text = await self._status_report()
        except Exception as e:
            logger.error("Status report failed: %s", e)
            await update.message.reply_text("Could not build the status report.")
            return
        await update.message.reply_text(text, parse_mode=ParseMode.MARKDOWN)

    async def _cmd_reload(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Handle /reload: re-read settings and report what changed."""
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        await update.message.reply_text(await self.reload_text())

    async def reload_text(self) -> str:
        if self._reload_settings is None:
            return "Settings reload is not available."
        try:
            return await self._reload_settings()
        except Exception as e:
            logger.error("Settings reload failed: %s", e)
            return "❌ Could not reload settings. Check settings.toml for errors."

    # ------------------------------------------------------------------
    # Free-text handler
    # ------------------------------------------------------------------

    async def _handle_text(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return
        text = (update.message.text or "").strip()
        if not text:
            return
        await self.handle_message(update.effective_chat.id, text)

    async def handle_message(self, chat_id: int, text: str):
        """Classify text and route it, narrating progress in a status message."""
        logger.info("Message from %s: %s", chat_id, text[:80])
        status_id = None
        typing_task = asyncio.create_task(self._keep_typing(chat_id))
        try:
            status_id = await self._transport.send(chat_id, STATUS_UNDERSTANDING)
            await self._update_status(chat_id, status_id, STATUS_CLASSIFYING)
            result = await self._classifier.classify(text)
            await self._update_status(chat_id, status_id, STATUS_ROUTING)
        except Exception as e:
            logger.error("Could not classify message from %s: %s", chat_id, e)
            typing_task.cancel()
            if status_id is not None:
                await self._update_status(chat_id, status_id, STATUS_ERROR)
            return

        try:
            await self._engine.route_intent(chat_id, result)
        finally:
            typing_task.cancel()
            await self._clear_status(chat_id, status_id)

    async def _keep_typing(self, chat_id: int):
        while True:
            try:
                await self._transport.typing(chat_id)
            except Exception as e:
                logger.debug("Typing indicator failed: %s", e)
            await asyncio.sleep(self._typing_interval)

    async def _update_status(self, chat_id: int, message_id: int, text: str):
        try:
            await self._transport.edit(chat_id, message_id, text)
        except Exception as e:
            logger.debug("Status update failed: %s", e)

    async def _clear_status(self, chat_id: int, message_id: int | None):
        if message_id is None:
            return
        try:
            await self._transport.delete(chat_id, message_id)
        except Exception as e:
            logger.debug("Could not clear status message: %s", e)

    # ------------------------------------------------------------------
    # Inline buttons
    # ------------------------------------------------------------------

    async def _handle_callback(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        query = update.callback_query
        if not self._is_authorized(update):
            await self._reject_unauthorized(update)
            return

        chat_id = update.effective_chat.id
        message_id = query.message.message_id if query.message else None
        toast = await self._engine.handle_callback(chat_id, query.data or "", message_id)
        try:
            await query.answer(toast)
        except Exception as e:
            logger.debug("Could not answer callback query: %s", e)
