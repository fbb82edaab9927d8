"""Telegram channel implementation using python-telegram-bot."""

from __future__ import annotations

import asyncio
import re
from typing import Any

from loguru import logger
from telegram import BotCommand, Message, Update
from telegram.error import BadRequest, TelegramError
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    MessageReactionHandler,
    filters,
)
from telegram.request import HTTPXRequest

from agentgate.bus.events import (
    InboundAttachment,
    InboundMessage,
    InboundReaction,
    OutboundFile,
    OutboundMessage,
    ReactionEvent,
    SendResult,
)
from agentgate.channels.base import ChannelAdapter
from agentgate.config.schema import TelegramConfig
from agentgate.errors import DeliveryError
from agentgate.pairing import PairingMeta, PairingStore

MAX_MESSAGE_LENGTH = 4096

_HTML_ESCAPES = {"&": "&amp;", "<": "&lt;", ">": "&gt;"}


def _escape(text: str) -> str:
    return re.sub(r"[&<>]", lambda m: _HTML_ESCAPES[m.group(0)], text)


def markdown_to_telegram_html(text: str) -> str:
    """Convert the agent's markdown to the HTML subset Telegram accepts."""
    if not text:
        return ""

    protected: list[str] = []

    def protect(html: str) -> str:
        protected.append(html)
        return f"\x00{len(protected) - 1}\x00"

    # Code first so nothing inside it gets formatted
    text = re.sub(r"```[\w-]*\n?([\s\S]*?)```", lambda m: protect(f"<pre><code>{_escape(m.group(1))}</code></pre>"), text)
    text = re.sub(r"`([^`\n]+)`", lambda m: protect(f"<code>{_escape(m.group(1))}</code>"), text)

    text = re.sub(r"^#{1,6}\s+(.+)$", r"\1", text, flags=re.MULTILINE)
    text = re.sub(r"^>\s?(.*)$", r"\1", text, flags=re.MULTILINE)
    text = _escape(text)
    text = re.sub(r"\[([^\]]+)\]\(([^)\s]+)\)", r'<a href="\2">\1</a>', text)
    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text)
    text = re.sub(r"__(.+?)__", r"<b>\1</b>", text)
    text = re.sub(r"(?<![\w*])\*([^*\n]+)\*(?![\w*])", r"<i>\1</i>", text)
    text = re.sub(r"(?<![a-zA-Z0-9])_([^_\n]+)_(?![a-zA-Z0-9])", r"<i>\1</i>", text)
    text = re.sub(r"~~(.+?)~~", r"<s>\1</s>", text)
    text = re.sub(r"^[-*]\s+", "• ", text, flags=re.MULTILINE)

    return re.sub(r"\x00(\d+)\x00", lambda m: protected[int(m.group(1))], text)


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split on paragraph / line boundaries so each part fits *limit*."""
    if len(text) <= limit:
        return [text]
    parts: list[str] = []
    rest = text
    while len(rest) > limit:
        cut = rest.rfind("\n\n", 0, limit)
        if cut <= 0:
            cut = rest.rfind("\n", 0, limit)
        if cut <= 0:
            cut = limit
        parts.append(rest[:cut].rstrip())
        rest = rest[cut:].lstrip("\n")
    if rest:
        parts.append(rest)
    return parts


class TelegramChannel(ChannelAdapter):
    """
    Telegram channel using long polling.

    Simple and reliable - no webhook/public IP needed.
    """

    id = "telegram"
    name = "Telegram"

    BOT_COMMANDS = [
        BotCommand("status", "Show agent status"),
        BotCommand("reset", "Start a new conversation"),
        BotCommand("help", "Show available commands"),
    ]

    def __init__(self, config: TelegramConfig, pairing_store: PairingStore | None = None) -> None:
        super().__init__(config, pairing_store)
        self.config: TelegramConfig = config
        self._app: Application | None = None
        self._bot_username: str | None = None
        self._bot_id: int | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the Telegram bot with long polling."""
        if not self.config.token:
            logger.error("Telegram bot token not configured")
            return

        self._running = True

        req = HTTPXRequest(connection_pool_size=16, pool_timeout=5.0, connect_timeout=30.0, read_timeout=30.0)
        builder = Application.builder().token(self.config.token).request(req).get_updates_request(req)
        if self.config.proxy:
            builder = builder.proxy(self.config.proxy).get_updates_proxy(self.config.proxy)
        self._app = builder.build()
        self._app.add_error_handler(self._on_error)

        for command in ("start", "status", "reset", "help"):
            self._app.add_handler(CommandHandler(command, self._on_command))
        self._app.add_handler(
            MessageHandler(
                (filters.TEXT | filters.PHOTO | filters.VOICE | filters.AUDIO | filters.Document.ALL)
                & ~filters.COMMAND,
                self._on_message,
            )
        )
        self._app.add_handler(MessageReactionHandler(self._on_reaction))

        logger.info("Starting Telegram bot (polling mode)...")
        await self._app.initialize()
        await self._app.start()

        bot_info = await self._app.bot.get_me()
        self._bot_username = bot_info.username
        self._bot_id = bot_info.id
        logger.info(f"Telegram bot @{bot_info.username} connected (DM policy: {self.config.dm_policy})")

        try:
            await self._app.bot.set_my_commands(self.BOT_COMMANDS)
        except Exception as e:
            logger.warning(f"Failed to register bot commands: {e}")

        await self._app.updater.start_polling(
            allowed_updates=["message", "message_reaction"],
            drop_pending_updates=True,
        )

        while self._running:
            await asyncio.sleep(1)

    async def stop(self) -> None:
        """Stop the Telegram bot."""
        self._running = False
        if self._app:
            logger.info("Stopping Telegram bot...")
            await self._app.updater.stop()
            await self._app.stop()
            await self._app.shutdown()
            self._app = None

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def supports_editing(self) -> bool:
        return True

    def supports_files(self) -> bool:
        return True

    def _require_app(self) -> Application:
        if self._app is None:
            raise RuntimeError("Telegram bot not running")
        return self._app

    @staticmethod
    def _thread_kwargs(thread_id: str | None) -> dict[str, Any]:
        return {"message_thread_id": int(thread_id)} if thread_id else {}

    async def send_message(self, msg: OutboundMessage) -> SendResult:
        """Send *msg*; long text goes out as several messages, last id returned."""
        app = self._require_app()
        message_id = ""
        try:
            for chunk in split_message(msg.text):
                sent = await self._send_single(app, int(msg.chat_id), chunk, msg.thread_id, msg.reply_to_message_id)
                message_id = str(sent.message_id)
        except TelegramError as e:
            raise DeliveryError(self.id, msg.chat_id, e) from e
        return SendResult(message_id=message_id)

    async def _send_single(
        self,
        app: Application,
        chat_id: int,
        text: str,
        thread_id: str | None,
        reply_to: str | None,
    ) -> Message:
        """Send one chunk as HTML, falling back to plain text."""
        kwargs = self._thread_kwargs(thread_id)
        if reply_to:
            kwargs["reply_to_message_id"] = int(reply_to)
        try:
            return await app.bot.send_message(
                chat_id=chat_id, text=markdown_to_telegram_html(text), parse_mode="HTML", **kwargs
            )
        except BadRequest as e:
            logger.warning(f"HTML parse failed, falling back to plain text: {e}")
            return await app.bot.send_message(chat_id=chat_id, text=text, **kwargs)

    async def edit_message(self, chat_id: str, message_id: str, text: str) -> None:
        app = self._require_app()
        text = text[:MAX_MESSAGE_LENGTH]
        try:
            await app.bot.edit_message_text(
                chat_id=int(chat_id),
                message_id=int(message_id),
                text=markdown_to_telegram_html(text),
                parse_mode="HTML",
            )
        except BadRequest as e:
            if "not modified" in str(e).lower():
                return
            logger.debug(f"HTML edit failed, retrying as plain text: {e}")
            try:
                await app.bot.edit_message_text(chat_id=int(chat_id), message_id=int(message_id), text=text)
            except TelegramError as retry_error:
                raise DeliveryError(self.id, chat_id, retry_error) from retry_error
        except TelegramError as e:
            raise DeliveryError(self.id, chat_id, e) from e

    async def send_typing_indicator(self, chat_id: str) -> None:
        await self._require_app().bot.send_chat_action(chat_id=int(chat_id), action="typing")

    async def send_file(self, file: OutboundFile) -> SendResult:
        app = self._require_app()
        kwargs = self._thread_kwargs(file.thread_id)
        with open(file.file_path, "rb") as fh:
            if file.kind == "image":
                sent = await app.bot.send_photo(chat_id=int(file.chat_id), photo=fh, caption=file.caption, **kwargs)
            else:
                sent = await app.bot.send_document(
                    chat_id=int(file.chat_id), document=fh, caption=file.caption, **kwargs
                )
        return SendResult(message_id=str(sent.message_id))

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def _was_mentioned(self, message: Message) -> bool:
        if message.reply_to_message and message.reply_to_message.from_user:
            if message.reply_to_message.from_user.id == self._bot_id:
                return True
        text = message.text or message.caption or ""
        return bool(self._bot_username) and f"@{self._bot_username}".lower() in text.lower()

    @staticmethod
    def _attachments(message: Message) -> list[InboundAttachment]:
        media: Any = None
        kind = "file"
        if message.photo:
            media, kind = message.photo[-1], "image"
        elif message.voice:
            media, kind = message.voice, "audio"
        elif message.audio:
            media, kind = message.audio, "audio"
        elif message.document:
            media, kind = message.document, "file"
        if media is None:
            return []
        return [
            InboundAttachment(
                id=media.file_id,
                name=getattr(media, "file_name", None),
                mime_type=getattr(media, "mime_type", None),
                size=getattr(media, "file_size", None),
                kind=kind,  # type: ignore[arg-type]
            )
        ]

    async def _on_message(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Handle incoming messages (text, photos, voice, documents)."""
        if not update.message or not update.effective_user:
            return
        message = update.message
        user = update.effective_user
        chat_id = str(message.chat_id)
        is_group = message.chat.type != "private"

        if not is_group:
            meta = PairingMeta(username=user.username, first_name=user.first_name, last_name=user.last_name)
            if not await self._gate_direct_message(str(user.id), chat_id, meta):
                return

        was_mentioned = is_group and self._was_mentioned(message)
        if is_group and self.config.require_mention and not was_mentioned:
            return

        reply_to_user = None
        if message.reply_to_message and message.reply_to_message.from_user:
            reply_to_user = message.reply_to_message.from_user.full_name

        inbound = InboundMessage(
            channel=self.id,
            chat_id=chat_id,
            user_id=str(user.id),
            text="\n".join(p for p in (message.text, message.caption) if p),
            timestamp=message.date,
            user_name=user.full_name or user.first_name,
            user_handle=user.username,
            message_id=str(message.message_id),
            thread_id=str(message.message_thread_id) if message.message_thread_id else None,
            is_group=is_group,
            group_name=message.chat.title if is_group else None,
            was_mentioned=was_mentioned,
            reply_to_user=reply_to_user,
            attachments=self._attachments(message),
        )
        logger.debug(f"Telegram message from {inbound.user_id} in {chat_id}: {inbound.text[:50]!r}")
        await self._handle_message(inbound)

    async def _on_reaction(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        reaction = update.message_reaction
        if reaction is None or reaction.user is None:
            return
        is_group = reaction.chat.type != "private"
        if not is_group and not self.pairing_store_allows(str(reaction.user.id)):
            return

        old = {getattr(r, "emoji", None) for r in reaction.old_reaction}
        new = {getattr(r, "emoji", None) for r in reaction.new_reaction}
        added = [e for e in new - old if e]
        removed = [e for e in old - new if e]
        if added:
            emoji, action = added[0], "added"
        elif removed:
            emoji, action = removed[0], "removed"
        else:
            return

        await self._handle_message(
            ReactionEvent(
                channel=self.id,
                chat_id=str(reaction.chat.id),
                user_id=str(reaction.user.id),
                timestamp=reaction.date,
                user_name=reaction.user.full_name,
                user_handle=reaction.user.username,
                message_id=str(reaction.message_id),
                is_group=is_group,
                group_name=reaction.chat.title if is_group else None,
                reaction=InboundReaction(emoji=emoji, message_id=str(reaction.message_id), action=action),
            )
        )

    def pairing_store_allows(self, user_id: str) -> bool:
        """Reactions never start pairing; unknown DM senders are ignored."""
        if self.pairing_store is None or self.config.dm_policy == "open":
            return True
        return self.pairing_store.is_user_allowed(self.id, user_id, self.config.allow_from)

    async def _on_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Forward /commands to the core and reply with its answer."""
        if not update.message or not update.effective_user:
            return
        message = update.message
        if message.chat.type == "private":
            meta = PairingMeta(
                username=update.effective_user.username,
                first_name=update.effective_user.first_name,
                last_name=update.effective_user.last_name,
            )
            if not await self._gate_direct_message(str(update.effective_user.id), str(message.chat_id), meta):
                return
        if self.on_command is None:
            return
        command = (message.text or "").split()[0]
        reply = await self.on_command(command)
        if reply:
            await message.reply_text(reply)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        """Log polling / handler errors instead of silently swallowing them."""
        logger.error(f"Telegram error: {context.error}")
