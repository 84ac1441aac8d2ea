"""Telegram channel.

Long-polls the Bot API with python-telegram-bot. Text and photo messages
become inbound messages; /help, /tools, /model and /clear become slash
commands. Replies are sent as Telegram HTML with a plain-text fallback.

Requires: pip install 'switchboard[channels]'
Config:
  token:            bot token from @BotFather (required)
  allowed_chat_ids: optional list of chat ids allowed to talk to the bot
"""

from __future__ import annotations

import base64
import re
from typing import Any

from switchboard.plugins.base import Channel, PluginBase, chunk_text, command_from_text
from switchboard.plugins.catalog import plugin
from switchboard.shared.errors import ValidationFailure
from switchboard.shared.types import ImagePart, InboundMessage, SendMessageOptions
from switchboard.shared.utils import setup_logging

logger = setup_logging("plugins.telegram")

COMMANDS = ("help", "tools", "model", "clear")


def md_to_html(text: str) -> str:
    """Best-effort conversion of common Markdown to Telegram-safe HTML."""
    text = text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    text = re.sub(
        r"```(?:\w+)?\n(.*?)```",
        lambda m: f"<pre>{m.group(1).rstrip()}</pre>",
        text,
        flags=re.DOTALL,
    )
    text = re.sub(r"`([^`]+)`", r"<code>\1</code>", text)
    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text)
    text = re.sub(r"(?<![\w*])_(.+?)_(?![\w*])", r"<i>\1</i>", text)
    return re.sub(r"^#{1,6}\s+(.+)$", r"<b>\1</b>", text, flags=re.MULTILINE)


@plugin(
    type="telegram",
    name="Telegram",
    description="Chat with an assistant through a Telegram bot.",
    config_schema=[
        {"key": "token", "type": "secret", "required": True},
        {"key": "allowed_chat_ids", "type": "list", "required": False},
    ],
)
class TelegramChannel(PluginBase, Channel):
    platform = "telegram"
    max_message_length = 4000

    def __init__(self, config: dict[str, Any]):
        super().__init__(config)
        self.token = config.get("token")
        if not self.token:
            raise ValidationFailure("telegram channel requires token")
        allowed = config.get("allowed_chat_ids")
        self.allowed_chat_ids = {int(c) for c in allowed} if allowed else None
        self._app = None

    async def connect(self) -> None:
        try:
            from telegram.ext import Application, CommandHandler, MessageHandler, filters
        except ImportError as e:
            raise ValidationFailure(
                "python-telegram-bot not installed. "
                "Install with: pip install 'switchboard[channels]'"
            ) from e

        app = Application.builder().token(self.token).build()
        app.add_handler(CommandHandler(list(COMMANDS), self._on_command))
        app.add_handler(MessageHandler(
            (filters.TEXT | filters.PHOTO) & ~filters.COMMAND, self._on_message,
        ))
        await app.initialize()
        await app.start()
        await app.updater.start_polling(drop_pending_updates=True)
        self._app = app
        logger.info("Telegram channel connected")

    async def disconnect(self) -> None:
        app, self._app = self._app, None
        if app is not None:
            await app.updater.stop()
            await app.stop()
            await app.shutdown()
            logger.info("Telegram channel disconnected")
        self._close_events()

    def is_connected(self) -> bool:
        return self._app is not None

    def _is_allowed(self, chat_id: int) -> bool:
        return self.allowed_chat_ids is None or chat_id in self.allowed_chat_ids

    async def _on_message(self, update, context) -> None:
        message = update.effective_message
        chat = update.effective_chat
        if message is None or chat is None or not self._is_allowed(chat.id):
            return
        images = []
        if message.photo:
            # file_path is a download URL that embeds the bot token
            file = await context.bot.get_file(message.photo[-1].file_id)
            data = await file.download_as_bytearray()
            images.append(ImagePart(data=base64.b64encode(bytes(data)).decode("ascii"), media_type="image/jpeg"))
        content = message.text or message.caption or ""
        if not content.strip() and not images:
            return
        user = update.effective_user
        self._emit(InboundMessage(
            id=str(message.message_id),
            platform=self.platform,
            channel_id=str(chat.id),
            user_id=str(user.id) if user else str(chat.id),
            username=(user.username or user.first_name or "") if user else "",
            content=content,
            timestamp=message.date,
            images=images,
        ))

    async def _on_command(self, update, context) -> None:
        message = update.effective_message
        chat = update.effective_chat
        if message is None or chat is None or not self._is_allowed(chat.id):
            return

        async def reply(text: str, ephemeral: bool = True) -> None:
            await self._send_text(chat.id, text, reply_to=message.message_id)

        user = update.effective_user
        command = command_from_text(
            message.text or "", reply,
            channel_id=str(chat.id), user_id=str(user.id) if user else None,
        )
        if command is not None:
            self._emit(command)

    async def _send_text(self, chat_id: int | str, text: str, reply_to: int | None = None) -> None:
        for i, chunk in enumerate(chunk_text(text, self.max_message_length)):
            reply_id = reply_to if i == 0 else None
            try:
                await self._app.bot.send_message(
                    chat_id=chat_id, text=md_to_html(chunk), parse_mode="HTML",
                    reply_to_message_id=reply_id,
                )
            except Exception as e:
                logger.debug(f"HTML send failed, retrying as plain text: {e}")
                await self._app.bot.send_message(
                    chat_id=chat_id, text=chunk, reply_to_message_id=reply_id,
                )

    async def send_message(self, options: SendMessageOptions) -> None:
        if self._app is None:
            raise RuntimeError("Telegram channel is not connected")
        reply_to = int(options.reply_to) if options.reply_to and options.reply_to.isdigit() else None
        if options.content:
            await self._send_text(options.channel_id, options.content, reply_to=reply_to)
        for attachment in options.attachments:
            if attachment.type == "image" or attachment.type.startswith("image/"):
                await self._app.bot.send_photo(chat_id=options.channel_id, photo=attachment.url)
            else:
                await self._app.bot.send_document(chat_id=options.channel_id, document=attachment.url)

    async def send_typing(self, channel_id: str) -> None:
        if self._app is None:
            return
        from telegram.constants import ChatAction

        await self._app.bot.send_chat_action(chat_id=channel_id, action=ChatAction.TYPING)
