from __future__ import annotations

from typing import Any, Protocol

import structlog
from sqlalchemy.engine import Engine
from sqlmodel import Session

from churchhub.domain.models import AuditLog
from churchhub.infra.db import get_engine

logger = structlog.get_logger(__name__)


class AuditSink(Protocol):
    def emit(
        self,
        event_type: str,
        actor_id: str | None,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None: ...


def write_audit_log(
    *,
    event_type: str,
    actor_id: str | None,
    entity_type: str,
    entity_id: str | None,
    detail: dict[str, Any] | None = None,
    engine: Engine | None = None,
) -> None:
    log = AuditLog(
        event_type=event_type,
        actor_id=actor_id,
        entity_type=entity_type,
        entity_id=entity_id,
        detail=detail or {},
    )
    with Session(engine or get_engine()) as session:
        session.add(log)
        session.commit()


class DatabaseAuditSink:
    def __init__(self, engine: Engine | None = None) -> None:
        self._engine = engine

    def emit(
        self,
        event_type: str,
        actor_id: str | None,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        write_audit_log(
            event_type=event_type,
            actor_id=actor_id,
            entity_type=entity_type,
            entity_id=entity_id,
            detail=metadata,
            engine=self._engine,
        )


class AuditEmitter:
    """Fire-and-forget front for an :class:`AuditSink`.

    Sink failures are logged and dropped so they never change the result of
    the operation being audited.
    """

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    def emit(
        self,
        event_type: str,
        actor_id: str | None,
        entity_type: str,
        entity_id: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        try:
            self._sink.emit(event_type, actor_id, entity_type, entity_id, metadata or {})
        except Exception:
            logger.exception(
                "audit_emit_failed",
                event_type=event_type,
                actor_id=actor_id,
                entity_type=entity_type,
                entity_id=entity_id,
            )
