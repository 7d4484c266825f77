"""
cadence.services.admin_service — Admin Mutation Service Layer
==============================================================

Every admin write follows the same pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after JSONB
  5. Commit

Schedule mutations live in :mod:`cadence.services.schedule_service` and
reuse the audit helpers below.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import Any

from sqlalchemy import inspect, select
from sqlalchemy.orm import Session

from cadence.database.models import ActivityKind, AdminActionType, AdminLog, RankConstant
from cadence.errors import ValidationError
from cadence.services.streak_service import parse_activity_kind

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------
def _row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for attr in inspect(obj).mapper.column_attrs:
        val = getattr(obj, attr.key, None)
        if isinstance(val, (datetime, date)):
            val = val.isoformat()
        result[attr.columns[0].name] = val
    return result


def _log_admin_action(
    session: Session,
    *,
    actor_id: int | None,
    action_type: AdminActionType,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> None:
    """Insert a row into admin_log within the current transaction."""
    session.add(AdminLog(
        actor_id=actor_id,
        action_type=action_type.value,
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    ))


# ---------------------------------------------------------------------------
# Rank constants
# ---------------------------------------------------------------------------
def update_rank_constant(
    engine,
    kind: str | ActivityKind,
    value: float,
    *,
    actor_id: int | None = None,
    description: str | None = None,
    reason: str | None = None,
) -> RankConstant:
    """Set the rank scalar for *kind*, creating the row if needed.

    Raises
    ------
    ValidationError
        If *kind* is unknown or *value* is not a positive finite number.
    """
    kind = parse_activity_kind(kind)
    try:
        value = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(
            "Rank constant must be a number", details={"value": value}
        ) from exc
    if not math.isfinite(value) or value <= 0:
        raise ValidationError(
            "Rank constant must be a positive number", details={"value": value}
        )

    with Session(engine, expire_on_commit=False) as session:
        constant = session.get(RankConstant, kind.value)
        before = _row_to_dict(constant)
        if constant is None:
            constant = RankConstant(kind=kind.value, value=value, description=description)
            session.add(constant)
            action = AdminActionType.CREATE
        else:
            constant.value = value
            if description is not None:
                constant.description = description
            action = AdminActionType.UPDATE
        session.flush()
        _log_admin_action(
            session,
            actor_id=actor_id,
            action_type=action,
            target_table="rank_constants",
            target_id=kind.value,
            before=before,
            after=_row_to_dict(constant),
            reason=reason,
        )
        session.commit()
        session.refresh(constant)
        session.expunge(constant)

    logger.info("Rank constant %s set to %s by actor=%s", kind, value, actor_id)
    return constant


def list_rank_constants(engine) -> dict[str, float]:
    with Session(engine) as session:
        return {c.kind: c.value for c in session.scalars(select(RankConstant))}


# ---------------------------------------------------------------------------
# Audit log read
# ---------------------------------------------------------------------------
def get_admin_log(
    engine,
    *,
    target_table: str | None = None,
    limit: int = 50,
) -> list[AdminLog]:
    """Most recent audit rows, optionally for one table."""
    stmt = select(AdminLog).order_by(AdminLog.id.desc()).limit(limit)
    if target_table is not None:
        stmt = stmt.where(AdminLog.target_table == target_table)
    with Session(engine, expire_on_commit=False) as session:
        rows = list(session.scalars(stmt))
        for row in rows:
            session.expunge(row)
        return rows
