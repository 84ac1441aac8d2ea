"""Scheduled automations.

An automation runs a stored prompt through an assistant (with the
assistant's full tool set) on a schedule, records the outcome in a
bounded execution history, and delivers the answer to a channel.

Schedules:
  - Standard 5-field cron expressions, evaluated in UTC: "0 9 * * 1-5"
  - Interval shorthand: "every 30m", "every 2h", "every 1d"
"""

from __future__ import annotations

import asyncio
import re
import time
from collections import defaultdict
from datetime import UTC, datetime

from switchboard.core.registry import InstanceRegistry
from switchboard.core.service import AssistantService, with_system_prompt
from switchboard.shared.errors import NotFoundError, ValidationFailure
from switchboard.shared.trace import start_trace
from switchboard.shared.types import (
    Automation,
    AutomationExecution,
    ConversationMessage,
    DeliveryTarget,
    InboundMessage,
    SendMessageOptions,
    ToolContext,
)
from switchboard.shared.utils import setup_logging, truncate
from switchboard.stores.base import AutomationStore

logger = setup_logging("core.automations")

AUTOMATION_PLATFORM = "automation"
DEFAULT_TICK_INTERVAL = 5

_INTERVAL_RE = re.compile(r"^every\s+(\d+)\s*([smhd])$", re.IGNORECASE)
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
# (minimum, maximum) per cron field: minute hour day month weekday
_CRON_BOUNDS = ((0, 59), (0, 23), (1, 31), (1, 12), (0, 7))


def validate_schedule(schedule: str) -> str | None:
    """Return an error message for an unsupported schedule, or None."""
    schedule = schedule.strip()
    match = _INTERVAL_RE.match(schedule)
    if match:
        return None if int(match.group(1)) > 0 else "Interval must be positive"
    parts = schedule.split()
    if len(parts) != 5:
        return f"Invalid schedule: '{schedule}'. Use 5-field cron or 'every N[s/m/h/d]'"
    for part, (low, high) in zip(parts, _CRON_BOUNDS):
        if not _valid_cron_field(part, low, high):
            return f"Invalid cron field '{part}' in '{schedule}'"
    return None


def _valid_cron_field(field: str, low: int, high: int) -> bool:
    for segment in field.split(","):
        base, _, step = segment.partition("/")
        if step and (not step.isdigit() or int(step) == 0):
            return False
        if base == "*":
            continue
        bounds = base.split("-", 1)
        if not all(b.isdigit() and low <= int(b) <= high for b in bounds):
            return False
    return True


def match_cron_field(field: str, value: int, low: int) -> bool:
    """True when ``value`` matches one cron field (lists, ranges, steps)."""
    for segment in field.split(","):
        base, _, step_str = segment.partition("/")
        step = int(step_str) if step_str else 1
        if base == "*":
            start, end = low, None
        elif "-" in base:
            first, last = base.split("-", 1)
            start, end = int(first), int(last)
        else:
            start = int(base)
            end = start if not step_str else None
        if value < start or (end is not None and value > end):
            continue
        if (value - start) % step == 0:
            return True
    return False


def cron_matches(schedule: str, now: datetime) -> bool:
    minute, hour, day, month, weekday = schedule.split()
    current_weekday = now.isoweekday() % 7  # 0=Sun
    return (
        match_cron_field(minute, now.minute, 0)
        and match_cron_field(hour, now.hour, 0)
        and match_cron_field(day, now.day, 1)
        and match_cron_field(month, now.month, 1)
        and (
            match_cron_field(weekday, current_weekday, 0)
            or (current_weekday == 0 and match_cron_field(weekday, 7, 0))
        )
    )


def is_due(schedule: str, now: datetime, last_run: datetime | None) -> bool:
    """Whether a schedule should fire at ``now``. Cron fires at most once per minute."""
    schedule = schedule.strip()
    match = _INTERVAL_RE.match(schedule)
    if match:
        if last_run is None:
            return True
        seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]
        return (now - last_run).total_seconds() >= seconds
    if len(schedule.split()) != 5:
        return False
    if last_run is not None and last_run.replace(second=0, microsecond=0) == now.replace(
        second=0, microsecond=0,
    ):
        return False
    return cron_matches(schedule, now)


class AutomationScheduler:
    """Evaluates automation schedules on a tick loop and runs due ones."""

    def __init__(
        self,
        store: AutomationStore,
        service: AssistantService,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
    ):
        self.store = store
        self.service = service
        self.registry: InstanceRegistry = service.registry
        self.tick_interval = tick_interval
        self._last_run: dict[str, datetime] = {}
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._running = False
        self._tasks: set[asyncio.Task] = set()

    async def add_automation(
        self,
        name: str,
        cron: str,
        prompt: str,
        assistant_id: str,
        delivery: DeliveryTarget,
        max_executions: int = 10,
    ) -> Automation:
        error = validate_schedule(cron)
        if error:
            raise ValidationFailure(error)
        automation = Automation(
            name=name, cron=cron, prompt=prompt, assistant_id=assistant_id,
            delivery=delivery, max_executions=max_executions,
        )
        await self.store.save(automation)
        logger.info(f"Added automation {automation.id}: schedule={cron} assistant={assistant_id}")
        return automation

    async def run_automation_now(self, automation_id: str) -> AutomationExecution:
        automation = await self.store.get(automation_id)
        if automation is None:
            raise NotFoundError(f"Automation not found: {automation_id}")
        return await self._execute(automation)

    async def start(self) -> None:
        self._running = True
        logger.info("Automation scheduler started")
        while self._running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Automation tick failed: {e}")
            await asyncio.sleep(self.tick_interval)

    def stop(self) -> None:
        self._running = False
        for task in list(self._tasks):
            task.cancel()

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Start every due automation. Returns the ids started."""
        now = now or datetime.now(UTC)
        started = []
        for automation in await self.store.list():
            if not automation.enabled or self._locks[automation.id].locked():
                continue
            if is_due(automation.cron, now, self._previous_run(automation)):
                self._last_run[automation.id] = now
                task = asyncio.create_task(self._execute(automation))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                started.append(automation.id)
        return started

    def _previous_run(self, automation: Automation) -> datetime | None:
        last = self._last_run.get(automation.id)
        if last is None and automation.executions:
            last = automation.executions[0].timestamp
        if last is not None and last.tzinfo is None:
            last = last.replace(tzinfo=UTC)
        return last

    async def _execute(self, automation: Automation) -> AutomationExecution:
        async with self._locks[automation.id]:
            start_trace()
            started_at = datetime.now(UTC)
            self._last_run[automation.id] = started_at
            start = time.monotonic()
            content = ""
            try:
                content = await self._generate(automation, started_at)
                execution = AutomationExecution(timestamp=started_at, success=True, result="Success")
            except Exception as e:
                logger.error(f"Automation {automation.id} failed: {e}")
                execution = AutomationExecution(timestamp=started_at, success=False, result=str(e))
            execution.duration_ms = int((time.monotonic() - start) * 1000)

            if execution.success:
                execution.delivery_error = await self._deliver(automation.delivery, content)
                execution.delivered = execution.delivery_error is None

            await self.store.append_execution(automation.id, execution)
            logger.info(
                f"Automation {automation.id} finished",
                extra={"extra_data": {
                    "automation_id": automation.id,
                    "success": execution.success,
                    "delivered": execution.delivered,
                    "duration_ms": execution.duration_ms,
                }},
            )
            return execution

    async def _generate(self, automation: Automation, started_at: datetime) -> str:
        assistant = await self.service.get_assistant(automation.assistant_id)
        messages = with_system_prompt(
            assistant, [ConversationMessage(role="user", content=automation.prompt)],
        )
        message = InboundMessage(
            id=f"automation-{automation.id}-{int(started_at.timestamp() * 1000)}",
            platform=AUTOMATION_PLATFORM,
            channel_id=automation.delivery.channel_id,
            user_id="automation",
            username="Automation",
            content=automation.prompt,
            timestamp=started_at,
        )
        context = ToolContext(
            user_id="automation",
            channel_id=automation.delivery.channel_id,
            platform=AUTOMATION_PLATFORM,
            message=message,
            assistant_id=assistant.id,
        )
        result = await self.service.run(assistant, messages, context)
        return result.response.content

    async def _deliver(self, target: DeliveryTarget, content: str) -> str | None:
        """Send the result to the target channel. Returns an error message on failure."""
        entry = self.registry.get(target.instance_id)
        channel = entry.plugin.as_channel() if entry else None
        if entry is None or channel is None:
            error = f"Delivery channel not found: {target.instance_id}"
        elif not entry.enabled:
            error = f"Delivery channel is disabled: {target.instance_id}"
        elif not channel.is_connected():
            error = f"Delivery channel is not connected: {target.instance_id}"
        else:
            try:
                await channel.send_message(SendMessageOptions(
                    channel_id=target.channel_id, content=content,
                ))
                return None
            except Exception as e:
                error = f"Delivery failed: {e}"
        logger.warning(f"{error} (content: {truncate(content, 80)!r})")
        return error
