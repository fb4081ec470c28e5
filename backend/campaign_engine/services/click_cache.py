from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import text, update

from campaign_engine.errors import NoEligibleUrl
from campaign_engine.extensions import db
from campaign_engine.models import Url, compute_active_status

# Stand-in for "no limit" when summing remaining clicks
UNLIMITED_REMAINING = 1_000_000_000


@dataclass(frozen=True)
class UrlView:
    id: int
    campaign_id: int
    target_url: str
    click_limit: int
    clicks: int
    status: str
    weight: int
    created_at: datetime | None

    @property
    def active_status(self) -> str:
        return compute_active_status(self.status, self.click_limit, self.clicks)

    @property
    def remaining(self) -> int:
        if self.click_limit <= 0:
            return UNLIMITED_REMAINING
        return max(0, self.click_limit - self.clicks)


@dataclass
class _Entry:
    loaded_at: float
    urls: tuple[UrlView, ...]


def pick_weighted(candidates: list[UrlView], rng: random.Random) -> UrlView:
    """Proportional pick over the cumulative weight sum."""
    if len(candidates) == 1:
        return candidates[0]
    total = sum(c.weight for c in candidates)
    draw = rng.random() * total
    upto = 0
    for c in candidates:
        upto += c.weight
        if draw < upto:
            return c
    return candidates[-1]


class ClickLimitCache:
    """Per-campaign, TTL-bounded view of URLs for the click-serving path.

    A URL that reaches its limit between reloads can keep being served until
    the entry expires; staleness is bounded by the TTL. A negative TTL turns
    caching off.
    """

    def __init__(self, *, ttl_seconds: float = 30.0, rng: random.Random | None = None,
                 clock=time.monotonic, logger: logging.Logger | None = None):
        self.ttl_seconds = float(ttl_seconds)
        self.rng = rng or random.Random()
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[int, _Entry] = {}
        self.log = logger or logging.getLogger("campaign_engine.click_cache")

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @staticmethod
    def _view(row) -> UrlView:
        return UrlView(
            id=int(row.id),
            campaign_id=int(row.campaign_id),
            target_url=row.target_url,
            click_limit=int(row.click_limit or 0),
            clicks=int(row.clicks or 0),
            status=row.status or "",
            weight=max(int(row.weight if row.weight is not None else 1), 0),
            created_at=row.created_at,
        )

    def _load(self, campaign_id: int) -> tuple[UrlView, ...]:
        rows = (
            Url.query
            .filter(Url.campaign_id == int(campaign_id))
            .order_by(Url.created_at.asc(), Url.id.asc())
            .all()
        )
        return tuple(self._view(r) for r in rows)

    def _direct_read(self, campaign_id: int) -> tuple[UrlView, ...]:
        result = db.session.execute(
            text(
                "SELECT id, campaign_id, target_url, click_limit, clicks, status, weight, created_at "
                "FROM urls WHERE campaign_id = :cid ORDER BY created_at ASC, id ASC"
            ),
            {"cid": int(campaign_id)},
        )
        return tuple(self._view(r) for r in result)

    def get_urls(self, campaign_id: int, force_refresh: bool = False) -> list[UrlView]:
        campaign_id = int(campaign_id)
        now = self._clock()
        if not force_refresh and self.ttl_seconds >= 0:
            with self._lock:
                entry = self._entries.get(campaign_id)
            if entry is not None and now - entry.loaded_at < self.ttl_seconds:
                return list(entry.urls)

        try:
            urls = self._load(campaign_id)
        except Exception:
            self.log.exception("URL reload failed for campaign %s, reading storage directly", campaign_id)
            db.session.rollback()
            return list(self._direct_read(campaign_id))

        if self.ttl_seconds >= 0:
            with self._lock:
                self._entries[campaign_id] = _Entry(loaded_at=now, urls=urls)
        return list(urls)

    def invalidate(self, campaign_id: int | None = None) -> None:
        with self._lock:
            if campaign_id is None:
                self._entries.clear()
            else:
                self._entries.pop(int(campaign_id), None)

    # ------------------------------------------------------------------
    # Serving
    # ------------------------------------------------------------------

    def eligible(self, campaign_id: int, force_refresh: bool = False) -> list[UrlView]:
        return [u for u in self.get_urls(campaign_id, force_refresh) if u.active_status == "active"]

    def select_url(self, campaign_id: int) -> UrlView:
        candidates = [u for u in self.eligible(campaign_id) if u.weight > 0]
        if not candidates:
            raise NoEligibleUrl(campaign_id)
        return pick_weighted(candidates, self.rng)

    def record_click(self, url_id: int) -> bool:
        """Single atomic increment; no lock shared with automation."""
        result = db.session.execute(
            update(Url)
            .where(Url.id == int(url_id), Url.status == "active")
            .values(clicks=Url.clicks + 1)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return bool(result.rowcount)

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def remaining_clicks(self, campaign_id: int, *, include_unlimited: bool = True,
                         force_refresh: bool = False) -> int:
        """Sum of remaining clicks over active URLs. Unlimited URLs count as a
        large sentinel, or not at all when ``include_unlimited`` is off."""
        total = 0
        for u in self.get_urls(campaign_id, force_refresh):
            if u.status != "active":
                continue
            if u.click_limit <= 0:
                if include_unlimited:
                    total += UNLIMITED_REMAINING
                continue
            total += max(0, u.click_limit - u.clicks)
        return total
