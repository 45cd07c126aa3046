"""Single-primary bookkeeping for child records.

Several child tables carry a boolean flag (``is_primary`` / ``is_default``)
scoped to a parent row: a contact's emails and company affiliations, a user's
email accounts and signatures, an email account's signatures. For any parent
at most one child may be flagged.

``PrimaryFlagToggler`` implements the four mutations once, parameterised by a
``PrimaryFlagPolicy``. Every mutation runs inside the caller's transaction and
starts by locking the whole group (``SELECT ... FOR UPDATE``), so a concurrent
request for the same parent waits instead of interleaving its demote/promote
with ours. The partial unique index declared next to each model is the last
line: the database refuses a second flagged row even if a caller bypasses the
toggler. The toggler flushes but never commits; the owning service decides
when the unit of work ends.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace
from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crmdesk.crm.errors import PrimaryFlagConflict, PrimaryFlagValidationError, PrimaryRecordNotFound
from crmdesk.metrics import observe_primary_flag_change, observe_primary_flag_conflict


logger = logging.getLogger("crmdesk.crm.primary")
tracer = trace.get_tracer("crmdesk.crm.primary")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PrimaryFlagPolicy:
    entity: str
    model: type[Any]
    group_attr: str
    flag_attr: str = "is_primary"
    # first row of an empty group is flagged even when not requested
    default_first: bool = True
    # deleting the flagged row flags the oldest remaining row
    promote_on_delete: bool = True
    # parent row locked first so that an empty group is serialized too
    parent_model: type[Any] | None = None

    @property
    def group_column(self) -> Any:
        return getattr(self.model, self.group_attr)

    @property
    def flag_column(self) -> Any:
        return getattr(self.model, self.flag_attr)

    @property
    def id_column(self) -> Any:
        return self.model.id

    @property
    def flag_index_name(self) -> str | None:
        """Name of the partial unique index on the group column, if declared."""
        for index in self.model.__table__.indexes:
            if index.unique and [column.name for column in index.columns] == [self.group_attr]:
                return index.name
        return None


class PrimaryChange(enum.Enum):
    NOT_FOUND = "not_found"
    UNCHANGED = "unchanged"
    CHANGED = "changed"


class PrimaryFlagToggler:
    def __init__(self, policy: PrimaryFlagPolicy) -> None:
        self.policy = policy

    def list_group(self, session: Session, group_key: int) -> list[Any]:
        key = self._validate_group_key(group_key)
        policy = self.policy
        stmt = (
            select(policy.model)
            .where(policy.group_column == key)
            .order_by(policy.flag_column.desc(), policy.id_column.asc())
        )
        return list(session.scalars(stmt).all())

    def get_primary(self, session: Session, group_key: int) -> Any | None:
        key = self._validate_group_key(group_key)
        policy = self.policy
        return session.scalar(
            select(policy.model)
            .where(and_(policy.group_column == key, policy.flag_column.is_(True)))
            .order_by(policy.id_column.asc())
            .limit(1)
        )

    def set_primary(self, session: Session, group_key: int, record_id: int) -> bool:
        """Flag ``record_id`` and clear the flag on every sibling.

        Returns False when the record does not exist or belongs to another
        group. Calling it again for the current primary rewrites nothing.
        """
        return self.apply_primary(session, group_key, record_id) is not PrimaryChange.NOT_FOUND

    def apply_primary(self, session: Session, group_key: int, record_id: int) -> PrimaryChange:
        key = self._validate_group_key(group_key)
        policy = self.policy
        with tracer.start_as_current_span("crm.primary.set_primary") as span:
            self._annotate(span, key, record_id)
            rows = self._lock_group(session, key)
            target = next((row for row in rows if row.id == record_id), None)
            if target is None:
                span.set_attribute("crm.primary.found", False)
                return PrimaryChange.NOT_FOUND

            flagged = [row for row in rows if getattr(row, policy.flag_attr)]
            if len(flagged) == 1 and flagged[0].id == target.id:
                span.set_attribute("crm.primary.changed", False)
                return PrimaryChange.UNCHANGED

            self._demote_group(session, key, exclude_id=target.id)
            setattr(target, policy.flag_attr, True)
            target.updated_at = utcnow()
            self._flush(session, key)
            self._assert_single_primary(session, key)

            observe_primary_flag_change(policy.entity, "set_primary")
            logger.info(
                "primary_flag.set",
                extra={"entity": policy.entity, "operation": "set_primary", "group_key": key, "record_id": target.id},
            )
            return PrimaryChange.CHANGED

    def create(self, session: Session, group_key: int, values: dict[str, Any], requested_primary: bool = False) -> Any:
        key = self._validate_group_key(group_key)
        policy = self.policy
        self._reject_group_change(values, key)
        with tracer.start_as_current_span("crm.primary.create") as span:
            self._annotate(span, key, None)
            rows = self._lock_group(session, key)
            make_primary = bool(requested_primary) or (policy.default_first and not rows)
            if make_primary and rows:
                self._demote_group(session, key)

            payload = {name: value for name, value in values.items() if name not in {"id", policy.group_attr, policy.flag_attr}}
            payload[policy.group_attr] = key
            payload[policy.flag_attr] = make_primary
            record = policy.model(**payload)
            session.add(record)
            self._flush(session, key)
            if make_primary:
                self._assert_single_primary(session, key)

            span.set_attribute("crm.primary.flagged", make_primary)
            observe_primary_flag_change(policy.entity, "create_primary" if make_primary else "create")
            logger.info(
                "primary_flag.create",
                extra={"entity": policy.entity, "operation": "create", "group_key": key, "record_id": record.id},
            )
            return record

    def update(self, session: Session, record_id: int, values: dict[str, Any], group_key: int | None = None) -> Any:
        """Apply ``values`` to a record.

        ``values[flag] is True`` makes the record the group's primary;
        ``False`` clears it, leaving the group without a primary.
        """
        policy = self.policy
        record = session.get(policy.model, record_id)
        if record is None:
            raise PrimaryRecordNotFound(policy.entity, record_id)
        key = getattr(record, policy.group_attr)
        if group_key is not None and key != group_key:
            raise PrimaryRecordNotFound(policy.entity, record_id, group_key)
        self._reject_group_change(values, key)

        flag_value = values.get(policy.flag_attr)
        with tracer.start_as_current_span("crm.primary.update") as span:
            self._annotate(span, key, record_id)
            if flag_value is True:
                self._lock_group(session, key)
                self._demote_group(session, key, exclude_id=record.id)

            for field_name, value in values.items():
                if field_name in {"id", policy.group_attr}:
                    continue
                if field_name == policy.flag_attr and value is None:
                    continue
                setattr(record, field_name, value)
            record.updated_at = utcnow()
            self._flush(session, key)

            if flag_value is not None:
                self._assert_single_primary(session, key)
                observe_primary_flag_change(policy.entity, "set_primary" if flag_value else "clear_primary")
            return record

    def delete(self, session: Session, record_id: int, group_key: int | None = None) -> bool:
        policy = self.policy
        record = session.get(policy.model, record_id)
        if record is None:
            return False
        key = getattr(record, policy.group_attr)
        if group_key is not None and key != group_key:
            return False

        with tracer.start_as_current_span("crm.primary.delete") as span:
            self._annotate(span, key, record_id)
            rows = self._lock_group(session, key)
            record = next((row for row in rows if row.id == record_id), None)
            if record is None:
                return False

            was_primary = bool(getattr(record, policy.flag_attr))
            session.delete(record)
            self._flush(session, key)

            promoted_id: int | None = None
            if was_primary and policy.promote_on_delete:
                remaining = [row for row in rows if row.id != record_id]
                if remaining:
                    promoted = remaining[0]
                    setattr(promoted, policy.flag_attr, True)
                    promoted.updated_at = utcnow()
                    self._flush(session, key)
                    promoted_id = promoted.id
                    self._assert_single_primary(session, key)

            observe_primary_flag_change(policy.entity, "delete_primary" if was_primary else "delete")
            logger.info(
                "primary_flag.delete",
                extra={
                    "entity": policy.entity,
                    "operation": "delete",
                    "group_key": key,
                    "record_id": record_id,
                    "promoted_id": promoted_id,
                },
            )
            return True

    def count_primaries(self, session: Session, group_key: int) -> int:
        policy = self.policy
        return int(
            session.scalar(
                select(func.count())
                .select_from(policy.model)
                .where(and_(policy.group_column == group_key, policy.flag_column.is_(True)))
            )
            or 0
        )

    def _lock_group(self, session: Session, key: int) -> list[Any]:
        policy = self.policy
        self._flush(session, key)
        if policy.parent_model is not None:
            session.execute(select(policy.parent_model.id).where(policy.parent_model.id == key).with_for_update())
        stmt = (
            select(policy.model)
            .where(policy.group_column == key)
            .order_by(policy.id_column.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(session.scalars(stmt).all())

    def _demote_group(self, session: Session, key: int, exclude_id: int | None = None) -> None:
        policy = self.policy
        conditions = [policy.group_column == key, policy.flag_column.is_(True)]
        if exclude_id is not None:
            conditions.append(policy.id_column != exclude_id)
        session.execute(
            update(policy.model)
            .where(and_(*conditions))
            .values({policy.flag_attr: False, "updated_at": utcnow()})
            .execution_options(synchronize_session="fetch")
        )

    def _flush(self, session: Session, key: int) -> None:
        try:
            session.flush()
        except IntegrityError as exc:
            if not self._violates_flag_index(exc):
                raise
            self._report_conflict(key, None)
            raise PrimaryFlagConflict(self.policy.entity, key) from exc

    def _violates_flag_index(self, exc: IntegrityError) -> bool:
        message = str(exc.orig)
        index_name = self.policy.flag_index_name
        if index_name and index_name in message:
            return True
        # SQLite reports the indexed columns rather than the index name
        table_name = self.policy.model.__table__.name
        return message.strip().endswith(f"UNIQUE constraint failed: {table_name}.{self.policy.group_attr}")

    def _assert_single_primary(self, session: Session, key: int) -> None:
        count = self.count_primaries(session, key)
        if count > 1:
            self._report_conflict(key, count)
            raise PrimaryFlagConflict(self.policy.entity, key, count)

    def _report_conflict(self, key: int, count: int | None) -> None:
        observe_primary_flag_conflict(self.policy.entity)
        logger.warning(
            "primary_flag.conflict",
            extra={"entity": self.policy.entity, "group_key": key, "primary_count": count},
        )

    def _reject_group_change(self, values: dict[str, Any], key: int) -> None:
        group_attr = self.policy.group_attr
        if group_attr in values and values[group_attr] is not None and values[group_attr] != key:
            raise PrimaryFlagValidationError(self.policy.entity, f"{group_attr} cannot be changed")

    def _validate_group_key(self, group_key: Any) -> int:
        if isinstance(group_key, bool) or not isinstance(group_key, int) or group_key <= 0:
            raise PrimaryFlagValidationError(
                self.policy.entity,
                f"invalid {self.policy.group_attr}: {group_key!r}",
            )
        return group_key

    def _annotate(self, span: Any, key: int, record_id: int | None) -> None:
        span.set_attribute("crm.entity", self.policy.entity)
        span.set_attribute("crm.group_key", key)
        if record_id is not None:
            span.set_attribute("crm.record_id", record_id)
