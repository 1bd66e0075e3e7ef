"""
Notification Service - Fire-and-forget participant notifications.
"""

from collections.abc import Collection
from typing import Protocol

from structlog import get_logger

from qa_engine.db.models import Notification
from qa_engine.db.store import QuestionStore
from qa_engine.models.api import NotificationType
from qa_engine.models.domain import Notify

logger = get_logger(__name__)

PREVIEW_CHARS = 100


def question_link(question_id: object) -> str:
    return f"/marketplace/qa/{question_id}"


def preview(text: str, limit: int = PREVIEW_CHARS) -> str:
    """Truncate message text for a notification body."""
    return text if len(text) <= limit else text[:limit] + "..."


async def matching_expert_notifications(
    store: QuestionStore,
    category: str,
    exclude_user_ids: Collection[str],
    notification_type: NotificationType,
    title: str,
    body: str,
    link: str | None = None,
) -> list[Notify]:
    """Notify jobs for every active, available expert in a category."""
    user_ids = await store.matching_expert_user_ids(category, exclude_user_ids)
    return [
        Notify(
            user_id=user_id,
            notification_type=notification_type,
            title=title,
            body=body,
            link=link,
        )
        for user_id in user_ids
    ]


class Notifier(Protocol):
    """Anything that can deliver a notification to a user."""

    async def notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        body: str,
        link: str | None = None,
    ) -> None:
        ...


class DatabaseNotifier:
    """Writes notifications to the notifications table."""

    def __init__(self, store: QuestionStore) -> None:
        self.store = store

    async def notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        body: str,
        link: str | None = None,
    ) -> None:
        await self.store.add_notification(
            Notification(
                user_id=user_id,
                notification_type=notification_type.value,
                title=title,
                body=body,
                link=link,
            )
        )
        await self.store.commit()
        logger.debug("notification_sent", user_id=user_id, type=notification_type.value)
