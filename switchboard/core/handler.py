"""Channel message handler.

Turns one inbound channel event into a reply:

  received -> assistant resolved -> typing heartbeat -> agent loop
           -> reply (with image attachments) -> rolling cache -> persisted

A failure during generation sends a best-effort error reply and persists
nothing. The typing heartbeat is stopped on every exit path.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import PurePosixPath
from urllib.parse import parse_qs, urlparse

from switchboard.core.commands import SlashCommands
from switchboard.core.context_cache import RollingContextCache
from switchboard.core.service import AssistantService
from switchboard.plugins.base import Channel, ChannelEvent, SlashCommandContext
from switchboard.shared.trace import start_trace
from switchboard.shared.types import (
    Attachment,
    ConversationMessage,
    InboundMessage,
    SendMessageOptions,
    ToolContext,
    ToolUsageRecord,
    TranscriptEntry,
)
from switchboard.shared.utils import setup_logging
from switchboard.stores.base import ConfigStore, ConversationStore

logger = setup_logging("core.handler")

NOT_CONFIGURED_NOTICE = (
    "No assistant is configured for this bot. "
    "Bind one to this channel in config/assistants.yaml."
)
DEFAULT_TYPING_INTERVAL = 8.0

_IMAGE_URL_HINT = (
    "[IMAGE URL(s): pass one of these exact URLs when a tool asks for an image URL. "
    "Do not use placeholders.]"
)


def _is_image(attachment: Attachment) -> bool:
    return attachment.type == "image" or attachment.type.startswith("image/")


def build_user_content(message: InboundMessage) -> str:
    """Message text plus the URLs of any attached images.

    Inline images travel on the message itself, so an image-only message
    gets a placeholder text.
    """
    urls = [a.url for a in message.attachments if _is_image(a)]
    if not urls:
        if message.images and not message.content.strip():
            return "[User sent image(s).]"
        return message.content
    listing = "\n".join(urls)
    if message.content.strip():
        return f"{message.content}\n\n{_IMAGE_URL_HINT}\n{listing}"
    return f"[User sent image(s).] {_IMAGE_URL_HINT}\n{listing}"


def _filename_from_url(url: str) -> str:
    try:
        parsed = urlparse(url)
    except ValueError:
        return "image.png"
    names = parse_qs(parsed.query).get("filename")
    if names and names[0]:
        return names[0]
    last = PurePosixPath(parsed.path).name
    return last if "." in last else "image.png"


def extract_image_attachments(tool_usages: list[ToolUsageRecord]) -> list[Attachment]:
    """Collect ``imageUrls`` from tool outputs as channel attachments."""
    attachments = []
    for usage in tool_usages:
        output = usage.output
        if not isinstance(output, dict):
            continue
        urls = output.get("imageUrls") or output.get("image_urls")
        if not isinstance(urls, list):
            continue
        for url in urls:
            if isinstance(url, str):
                attachments.append(Attachment(type="image", url=url, filename=_filename_from_url(url)))
    return attachments


def tool_entry_content(usage: ToolUsageRecord) -> str:
    if usage.error:
        return usage.error
    if isinstance(usage.output, str):
        return usage.output
    return json.dumps(usage.output, default=str)


class ChannelMessageHandler:
    """Registry event handler for every channel instance."""

    def __init__(
        self,
        service: AssistantService,
        config_store: ConfigStore,
        conversations: ConversationStore | None = None,
        cache: RollingContextCache | None = None,
        typing_interval: float = DEFAULT_TYPING_INTERVAL,
    ):
        self.service = service
        self.registry = service.registry
        self.config_store = config_store
        self.conversations = conversations
        self.cache = cache or RollingContextCache()
        self.typing_interval = typing_interval
        self.commands = SlashCommands(self.registry, config_store, self.cache)

    async def handle_event(self, instance_id: str, event: ChannelEvent) -> None:
        if isinstance(event, SlashCommandContext):
            await self.commands.dispatch(instance_id, event)
        else:
            await self.handle_message(instance_id, event)

    async def handle_message(self, instance_id: str, message: InboundMessage) -> None:
        entry = self.registry.get(instance_id)
        channel = entry.plugin.as_channel() if entry else None
        if entry is None or not entry.enabled or channel is None:
            logger.debug(f"Ignoring message for unavailable channel {instance_id}")
            return
        start_trace()

        assistant_id = await self.config_store.get_bound_assistant_id(instance_id)
        assistant = await self.config_store.get_assistant(assistant_id) if assistant_id else None
        if assistant is None or not assistant.llm_provider_id or not assistant.llm_model:
            try:
                await channel.send_message(SendMessageOptions(
                    channel_id=message.channel_id,
                    content=NOT_CONFIGURED_NOTICE,
                    reply_to=message.id,
                ))
            except Exception as e:
                logger.error(f"Failed to send not-configured notice on {instance_id}: {e}")
            return

        key = (instance_id, message.channel_id)
        user_message = ConversationMessage(
            role="user", content=build_user_content(message), images=list(message.images) or None,
        )
        messages = []
        if assistant.system_prompt and assistant.system_prompt.strip():
            messages.append(ConversationMessage(role="system", content=assistant.system_prompt.strip()))
        messages.extend(self.cache.get(key))
        messages.append(user_message)
        context = ToolContext(
            user_id=message.user_id,
            channel_id=message.channel_id,
            platform=message.platform,
            message=message,
            assistant_id=assistant.id,
        )

        try:
            typing = asyncio.create_task(self._typing_heartbeat(channel, message.channel_id))
            try:
                result = await self.service.run(assistant, messages, context)
            finally:
                typing.cancel()
                try:
                    await typing
                except asyncio.CancelledError:
                    pass
        except Exception as e:
            logger.error(
                f"Generation failed for {instance_id}: {e}",
                extra={"extra_data": {"instance_id": instance_id, "channel_id": message.channel_id}},
            )
            await self._send_error(instance_id, channel, message, str(e))
            return

        content = result.response.content
        await channel.send_message(SendMessageOptions(
            channel_id=message.channel_id,
            content=content,
            reply_to=message.id,
            attachments=extract_image_attachments(result.tool_usages),
        ))
        # inline image data is sent once, not replayed from the cache
        self.cache.append(
            key,
            user_message.model_copy(update={"images": None}),
            ConversationMessage(role="assistant", content=content),
        )
        await self._persist(instance_id, channel, message, result.tool_usages, content)

    async def _typing_heartbeat(self, channel: Channel, channel_id: str) -> None:
        while True:
            try:
                await channel.send_typing(channel_id)
            except Exception as e:
                logger.debug(f"Typing indicator failed: {e}")
            await asyncio.sleep(self.typing_interval)

    async def _send_error(
        self, instance_id: str, channel: Channel, message: InboundMessage, error: str,
    ) -> None:
        try:
            await channel.send_error(message.channel_id, error, code="llm_error", reply_to=message.id)
        except Exception as e:
            logger.error(f"Failed to send error reply on {instance_id}: {e}")

    async def _persist(
        self,
        instance_id: str,
        channel: Channel,
        message: InboundMessage,
        tool_usages: list[ToolUsageRecord],
        content: str,
    ) -> None:
        if self.conversations is None:
            return
        entries = [TranscriptEntry(
            id=message.id, role="user", content=message.content, created=message.timestamp,
        )]
        for idx, usage in enumerate(tool_usages):
            entries.append(TranscriptEntry(
                id=f"tool-{message.id}-{idx}",
                role="tool",
                content=tool_entry_content(usage),
                tool_usage=usage,
            ))
        entries.append(TranscriptEntry(id=f"assistant-{message.id}", role="assistant", content=content))
        title = message.subject or f"{channel.platform or message.platform} ({message.channel_id})"
        try:
            await self.conversations.append_channel_messages(
                instance_id, message.channel_id, entries, title,
            )
        except Exception as e:
            logger.error(
                f"Failed to persist conversation for {instance_id}: {e}",
                extra={"extra_data": {"instance_id": instance_id, "channel_id": message.channel_id}},
            )
