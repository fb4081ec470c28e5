"""Storage-boundary guard for ``Url.original_click_limit``.

The baseline may only change inside ``protection_bypass(session)``. Two
layers enforce it:

* Database triggers on ``urls`` (sqlite and postgresql) keep the old value
  for any UPDATE that is not running alongside a ``click_protection_bypass``
  row in the same transaction, and write an ``audit_logs`` row. This covers
  raw SQL and Core statements.
* A ``before_flush`` hook does the same for ORM flushes so the in-memory
  object is restored too and the warning is logged. ORM bulk UPDATE
  statements that set the baseline while protected are rejected outright
  with ``ProtectionViolation``.

``click_limit`` stays writable.
"""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager

from sqlalchemy import DDL, delete, event, insert, inspect

from campaign_engine.errors import ProtectionViolation
from campaign_engine.extensions import db
from campaign_engine.models import AuditLog, ClickProtectionBypass, Url

log = logging.getLogger("campaign_engine.click_protection")

BYPASS_KEY = "click_protection_bypass"

_bypass_table = ClickProtectionBypass.__table__


# ----------------------------------------------------------------------
# Database triggers
# ----------------------------------------------------------------------

# sqlite cannot rewrite NEW in a BEFORE trigger, so the row is put back
# after the fact. recursive_triggers is off by default and the WHEN clause
# is false for the restoring UPDATE anyway.
SQLITE_TRIGGER = DDL("""
CREATE TRIGGER IF NOT EXISTS urls_protect_original_click_limit
AFTER UPDATE OF original_click_limit ON urls
FOR EACH ROW
WHEN NEW.original_click_limit IS NOT OLD.original_click_limit
 AND NOT EXISTS (SELECT 1 FROM click_protection_bypass)
BEGIN
    UPDATE urls SET original_click_limit = OLD.original_click_limit WHERE id = NEW.id;
    INSERT INTO audit_logs (action, target_type, target_id, meta, created_at)
    VALUES (
        'click_limit_protection', 'url', NEW.id,
        '{"old_value": ' || OLD.original_click_limit || ', "attempted_value": ' || NEW.original_click_limit || '}',
        CURRENT_TIMESTAMP
    );
END
""").execute_if(dialect="sqlite")

POSTGRES_FUNCTION = DDL("""
CREATE OR REPLACE FUNCTION protect_original_click_limit() RETURNS trigger AS $$
BEGIN
    IF NEW.original_click_limit IS DISTINCT FROM OLD.original_click_limit
       AND NOT EXISTS (SELECT 1 FROM click_protection_bypass) THEN
        RAISE WARNING USING MESSAGE = 'Attempted to change original_click_limit of url ' || OLD.id
            || ' from ' || OLD.original_click_limit || ' to ' || NEW.original_click_limit;
        INSERT INTO audit_logs (action, target_type, target_id, meta, created_at)
        VALUES (
            'click_limit_protection', 'url', OLD.id,
            json_build_object('old_value', OLD.original_click_limit,
                              'attempted_value', NEW.original_click_limit)::text,
            timezone('utc', now())
        );
        NEW.original_click_limit := OLD.original_click_limit;
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql
""").execute_if(dialect="postgresql")

POSTGRES_DROP_TRIGGER = DDL(
    "DROP TRIGGER IF EXISTS urls_protect_original_click_limit ON urls"
).execute_if(dialect="postgresql")

POSTGRES_TRIGGER = DDL("""
CREATE TRIGGER urls_protect_original_click_limit
BEFORE UPDATE OF original_click_limit ON urls
FOR EACH ROW EXECUTE FUNCTION protect_original_click_limit()
""").execute_if(dialect="postgresql")

# Runs after every create_all, once all tables exist; each statement is idempotent.
for _ddl in (SQLITE_TRIGGER, POSTGRES_FUNCTION, POSTGRES_DROP_TRIGGER, POSTGRES_TRIGGER):
    event.listen(db.metadata, "after_create", _ddl)


# ----------------------------------------------------------------------
# Session guard
# ----------------------------------------------------------------------

def is_bypassed(session) -> bool:
    return bool(session.info.get(BYPASS_KEY))


@contextmanager
def protection_bypass(session, reason: str = "admin"):
    """Assert the bypass for the duration of one authorized update.

    The bypass row is inserted and removed inside the caller's transaction,
    so other connections never see it.
    """
    token = session.execute(insert(_bypass_table).values(reason=reason[:64])).inserted_primary_key[0]
    previous = session.info.get(BYPASS_KEY, False)
    session.info[BYPASS_KEY] = True
    try:
        yield session
        session.flush()
    finally:
        session.info[BYPASS_KEY] = previous
        if session.is_active:
            session.execute(delete(_bypass_table).where(_bypass_table.c.id == token))


def _guard_flush(session, flush_context, instances):
    if is_bypassed(session):
        return
    for obj in list(session.dirty):
        if not isinstance(obj, Url):
            continue
        hist = inspect(obj).attrs.original_click_limit.history
        if not hist.has_changes() or not hist.deleted:
            continue
        old = hist.deleted[0]
        attempted = hist.added[0] if hist.added else None
        if old == attempted:
            continue
        violation = ProtectionViolation(obj.id, old, attempted)
        obj.original_click_limit = old
        log.warning(str(violation))
        session.add(AuditLog(
            action="click_limit_protection",
            target_type="url",
            target_id=obj.id,
            meta=json.dumps({"old_value": old, "attempted_value": attempted}),
        ))


def _guard_bulk_update(orm_execute_state):
    if not orm_execute_state.is_update or is_bypassed(orm_execute_state.session):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is None or mapper.class_ is not Url:
        return
    params = orm_execute_state.statement.compile().params
    if "original_click_limit" in params:
        raise ProtectionViolation(None, "unchanged", params["original_click_limit"])


def register_click_protection(session) -> None:
    """Attach the guard to a session, sessionmaker or scoped_session (idempotent)."""
    if not event.contains(session, "before_flush", _guard_flush):
        event.listen(session, "before_flush", _guard_flush)
    if not event.contains(session, "do_orm_execute", _guard_bulk_update):
        event.listen(session, "do_orm_execute", _guard_bulk_update)


def click_limit_for(original_click_limit: int, multiplier: float) -> int:
    return int(round(int(original_click_limit or 0) * float(multiplier or 1.0)))


def update_original_click_limit(session, url: Url, value: int) -> Url:
    """The administrative path for the baseline: sets it under the bypass and
    re-derives ``click_limit`` from the campaign multiplier."""
    value = int(value)
    if value < 0:
        raise ValueError("original_click_limit must be >= 0")
    multiplier = url.campaign.multiplier if url.campaign is not None else 1.0
    with protection_bypass(session):
        url.original_click_limit = value
        url.click_limit = click_limit_for(value, multiplier)
    return url


def recompute_click_limits(session, campaign, multiplier: float) -> int:
    """Apply a new multiplier to every URL of the campaign. Baselines are untouched."""
    campaign.multiplier = float(multiplier)
    changed = 0
    for url in campaign.urls.all():
        new_limit = click_limit_for(url.original_click_limit, multiplier)
        if new_limit != url.click_limit:
            url.click_limit = new_limit
            changed += 1
    session.flush()
    return changed
