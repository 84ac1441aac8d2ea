"""Discord channel.

Connects a discord.py client. Direct messages and guild messages that
mention the bot become inbound messages; ``!help``, ``!tools``,
``!model`` and ``!clear`` (or the ``/`` forms) become slash commands.
Image attachments on replies are sent as embeds.

Requires: pip install 'switchboard[channels]'
Config:
  token:           bot token (required)
  allowed_guilds:  optional list of guild ids
  require_mention: only answer guild messages that mention the bot (default true)
"""

from __future__ import annotations

import asyncio
from typing import Any

from switchboard.plugins.base import Channel, PluginBase, chunk_text, command_from_text
from switchboard.plugins.catalog import plugin
from switchboard.shared.errors import ValidationFailure
from switchboard.shared.types import Attachment, InboundMessage, SendMessageOptions
from switchboard.shared.utils import setup_logging

logger = setup_logging("plugins.discord")

READY_TIMEOUT = 30
_CLEAR_LIMIT = 100
_MAX_EMBEDS = 10


@plugin(
    type="discord",
    name="Discord",
    description="Chat with an assistant through a Discord bot.",
    config_schema=[
        {"key": "token", "type": "secret", "required": True},
        {"key": "allowed_guilds", "type": "list", "required": False},
        {"key": "require_mention", "type": "boolean", "default": True},
    ],
)
class DiscordChannel(PluginBase, Channel):
    platform = "discord"
    max_message_length = 1900

    def __init__(self, config: dict[str, Any]):
        super().__init__(config)
        self.token = config.get("token")
        if not self.token:
            raise ValidationFailure("discord channel requires token")
        guilds = config.get("allowed_guilds")
        self.allowed_guilds = {int(g) for g in guilds} if guilds else None
        self.require_mention = bool(config.get("require_mention", True))
        self._client = None
        self._runner: asyncio.Task | None = None

    async def connect(self) -> None:
        try:
            import discord
        except ImportError as e:
            raise ValidationFailure(
                "discord.py not installed. Install with: pip install 'switchboard[channels]'"
            ) from e

        intents = discord.Intents.default()
        intents.message_content = True
        client = discord.Client(intents=intents)
        ready = asyncio.Event()

        @client.event
        async def on_ready():
            logger.info(f"Discord channel connected as {client.user}")
            ready.set()

        @client.event
        async def on_message(message):
            self._on_message(message)

        self._client = client
        self._runner = asyncio.create_task(client.start(self.token))
        waiter = asyncio.create_task(ready.wait())
        done, _ = await asyncio.wait(
            {self._runner, waiter}, timeout=READY_TIMEOUT, return_when=asyncio.FIRST_COMPLETED,
        )
        waiter.cancel()
        if self._runner in done:
            error = self._runner.exception()
            self._client, self._runner = None, None
            raise RuntimeError(f"Discord login failed: {error}")
        if not ready.is_set():
            await self.disconnect()
            raise TimeoutError("Discord client did not become ready")

    async def disconnect(self) -> None:
        client, runner = self._client, self._runner
        self._client, self._runner = None, None
        if client is not None:
            await client.close()
        if runner is not None:
            runner.cancel()
            try:
                await runner
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Discord client exited with {e}")
        self._close_events()
        logger.info("Discord channel disconnected")

    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_ready()

    def _on_message(self, message) -> None:
        client = self._client
        if client is None or message.author == client.user or message.author.bot:
            return
        if message.guild is not None:
            if self.allowed_guilds and message.guild.id not in self.allowed_guilds:
                return
            if self.require_mention and client.user not in message.mentions:
                return
        text = message.content
        if client.user is not None:
            for mention in (f"<@{client.user.id}>", f"<@!{client.user.id}>"):
                text = text.replace(mention, "")
        text = text.strip()

        async def reply(content: str, ephemeral: bool = True) -> None:
            for chunk in chunk_text(content, self.max_message_length):
                await message.channel.send(chunk)

        command = command_from_text(
            text, reply, channel_id=str(message.channel.id), user_id=str(message.author.id),
        )
        if command is not None:
            self._emit(command)
            return
        attachments = [
            Attachment(
                type=a.content_type or "file", url=a.url, filename=a.filename, size=a.size,
            )
            for a in message.attachments
        ]
        if not text and not attachments:
            return
        self._emit(InboundMessage(
            id=str(message.id),
            platform=self.platform,
            channel_id=str(message.channel.id),
            user_id=str(message.author.id),
            username=message.author.display_name,
            content=text,
            timestamp=message.created_at,
            attachments=attachments,
        ))

    async def _resolve_channel(self, channel_id: str):
        if self._client is None:
            raise RuntimeError("Discord channel is not connected")
        channel = self._client.get_channel(int(channel_id))
        if channel is None:
            channel = await self._client.fetch_channel(int(channel_id))
        return channel

    async def send_message(self, options: SendMessageOptions) -> None:
        import discord

        channel = await self._resolve_channel(options.channel_id)
        reference = None
        if options.reply_to and options.reply_to.isdigit():
            reference = channel.get_partial_message(int(options.reply_to))
        chunks = chunk_text(options.content, self.max_message_length) if options.content else [""]
        embeds = [
            discord.Embed().set_image(url=a.url)
            for a in options.attachments
            if a.type == "image" or a.type.startswith("image/")
        ][:_MAX_EMBEDS]
        for i, chunk in enumerate(chunks):
            last = i == len(chunks) - 1
            kwargs: dict[str, Any] = {}
            if i == 0 and reference is not None:
                kwargs["reference"] = reference
                kwargs["mention_author"] = False
            if last and embeds:
                kwargs["embeds"] = embeds
            if chunk or kwargs.get("embeds"):
                await channel.send(chunk or None, **kwargs)

    async def send_typing(self, channel_id: str) -> None:
        channel = await self._resolve_channel(channel_id)
        await channel.typing()

    async def clear_channel_history(self, channel_id: str) -> int:
        """Purge recent messages. In DMs only the bot's own messages can be deleted."""
        import discord

        channel = await self._resolve_channel(channel_id)
        if isinstance(channel, discord.TextChannel):
            deleted = await channel.purge(limit=_CLEAR_LIMIT)
            return len(deleted)
        count = 0
        async for message in channel.history(limit=_CLEAR_LIMIT):
            if message.author == self._client.user:
                await message.delete()
                count += 1
        return count
