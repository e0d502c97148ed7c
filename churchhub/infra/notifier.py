from __future__ import annotations

from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    def notify_member_limit_reached(
        self,
        admin_emails: list[str],
        church_name: str,
        total_members: int,
        max_members: int,
    ) -> None: ...


class LoggingNotifier:
    """Records limit notifications in the log stream; mail delivery lives outside this service."""

    def notify_member_limit_reached(
        self,
        admin_emails: list[str],
        church_name: str,
        total_members: int,
        max_members: int,
    ) -> None:
        logger.info(
            "member_limit_reached_notification",
            recipients=len(admin_emails),
            church_name=church_name,
            total_members=total_members,
            max_members=max_members,
        )
