"""Platform event dispatch for round activity.

All handlers are plain async functions. ``emit_platform_event()`` fans
out to them via ``loop.create_task()`` so callers don't block.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from teepals.rounds.config import NOTIFICATION_TYPES
from teepals.shared.utils.logging import get_logger

logger = get_logger(__name__)

NotificationSink = Callable[[dict[str, Any]], Awaitable[None]]

_notification_sinks: list[NotificationSink] = []
_pending: set[asyncio.Task] = set()


def register_notification_sink(sink: NotificationSink) -> None:
    """Register an async callable that receives one notification dict per recipient."""
    if sink not in _notification_sinks:
        _notification_sinks.append(sink)


def unregister_notification_sink(sink: NotificationSink) -> None:
    if sink in _notification_sinks:
        _notification_sinks.remove(sink)


async def drain_pending_events() -> None:
    """Wait for in-flight handler tasks. Used on shutdown and in tests."""
    while _pending:
        await asyncio.gather(*list(_pending), return_exceptions=True)


def _spawn(loop: asyncio.AbstractEventLoop, coro: Awaitable[None]) -> None:
    task = loop.create_task(coro)
    _pending.add(task)
    task.add_done_callback(_pending.discard)


# ============================================================
# Fan-out router
# ============================================================


def emit_platform_event(topic: str, event_data: dict[str, Any]) -> None:
    """Route a platform event to appropriate async handler tasks.

    This is a synchronous function safe to call from async code.
    Handlers run as fire-and-forget background tasks on the running loop.

    Args:
        topic: Logical topic ("rounds.membership" or "rounds.lifecycle").
        event_data: The event payload dict.
    """
    loop = asyncio.get_running_loop()
    event_type = event_data.get("event_type", "")

    if topic == "rounds.membership":
        _spawn(loop, _handle_round_event(event_data))
        _spawn(loop, _handle_notification_event(event_data))

    elif topic == "rounds.lifecycle":
        _spawn(loop, _handle_round_event(event_data))
        if event_type != "round.created":
            _spawn(loop, _handle_notification_event(event_data))

    else:
        logger.debug("unrouted_event", topic=topic, event_type=event_type)


# ============================================================
# Round event handler
# ============================================================


async def _handle_round_event(event_data: dict[str, Any]) -> None:
    logger.info(
        "round_event_processed",
        event_type=event_data.get("event_type", ""),
        round_id=event_data.get("round_id"),
        actor_uid=event_data.get("actor_uid"),
    )


# ============================================================
# Notification handler
# ============================================================


def build_notifications(event_data: dict[str, Any]) -> list[dict[str, Any]]:
    """One notification per recipient, excluding the actor."""
    event_type = event_data.get("event_type", "")
    notification_type = NOTIFICATION_TYPES.get(event_type)
    if notification_type is None:
        return []

    actor = event_data.get("actor_uid")
    data = event_data.get("data", {})
    return [
        {
            "recipient_uid": recipient,
            "type": notification_type,
            "actor_uid": actor,
            "round_id": event_data.get("round_id"),
            "round_title": data.get("title"),
            "created_at": event_data.get("occurred_at"),
            "is_read": False,
        }
        for recipient in event_data.get("recipients", [])
        if recipient != actor
    ]


async def _handle_notification_event(event_data: dict[str, Any]) -> None:
    event_type = event_data.get("event_type", "")
    notifications = build_notifications(event_data)
    if not notifications:
        logger.debug("no_notification_recipients", event_type=event_type)
        return

    for notification in notifications:
        for sink in list(_notification_sinks):
            try:
                await sink(notification)
            except Exception as e:
                logger.error(
                    "notification_event_error",
                    error=str(e),
                    event_type=event_type,
                    recipient_uid=notification["recipient_uid"],
                )

    logger.info(
        "notifications_produced",
        event_type=event_type,
        recipient_count=len(notifications),
    )
