from datetime import datetime, timedelta

import pytest
from apscheduler.jobstores.base import ConflictingIdError, JobLookupError

from campaign_engine import create_app
from campaign_engine.errors import TransientNetworkError
from campaign_engine.extensions import db
from campaign_engine.models import Campaign, Url
from campaign_engine.utils.adnetwork_client import format_end_time


class FakeClock:
    def __init__(self, now=None):
        self.now = now or datetime(2026, 3, 14, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeAdNetwork:
    """Records automation calls and keeps a tiny remote campaign state."""

    def __init__(self):
        self.calls = []
        self.spend = {}
        self.remote = {}
        self.fail = {}
        self.hooks = {}

    def _campaign(self, ad_id):
        return self.remote.setdefault(str(ad_id), {"active": False, "max_daily": 0.0, "status": "paused"})

    def _maybe_fail(self, op):
        exc = self.fail.get(op)
        if exc is not None:
            raise exc
        hook = self.hooks.get(op)
        if hook is not None:
            hook()

    def get_campaign(self, ad_id):
        self.calls.append(("get_campaign", str(ad_id)))
        self._maybe_fail("get_campaign")
        c = self._campaign(ad_id)
        return {"id": ad_id, "active": c["active"], "status": c["status"], "max_daily": c["max_daily"]}

    def get_daily_spend(self, ad_id, day):
        self.calls.append(("get_daily_spend", str(ad_id), day.isoformat()))
        self._maybe_fail("get_daily_spend")
        return float(self.spend.get(str(ad_id), 0.0))

    def pause_campaign(self, ad_id, now):
        self.calls.append(("pause", str(ad_id), format_end_time(now)))
        self._maybe_fail("pause")
        c = self._campaign(ad_id)
        c["active"] = False
        c["status"] = "paused"
        return {}

    def activate_campaign(self, ad_id, end_time):
        self.calls.append(("activate", str(ad_id), format_end_time(end_time)))
        self._maybe_fail("activate")
        c = self._campaign(ad_id)
        c["active"] = True
        c["status"] = "active"
        return {}

    def update_daily_budget(self, ad_id, max_daily):
        self.calls.append(("update_budget", str(ad_id), round(float(max_daily), 2)))
        self._maybe_fail("update_budget")
        self._campaign(ad_id)["max_daily"] = round(float(max_daily), 2)
        return {}

    def ops(self, name):
        return [c for c in self.calls if c[0] == name]


class FakeJob:
    def __init__(self, scheduler, func, trigger, args, job_id, options):
        self.scheduler = scheduler
        self.func = func
        self.trigger = trigger
        self.args = list(args or [])
        self.id = job_id
        self.options = options

    @property
    def run_date(self):
        return self.options.get("run_date")

    def fire(self):
        # one-shot jobs leave the store before they run, as in APScheduler
        if self.trigger == "date":
            self.scheduler.jobs.pop(self.id, None)
        self.func(*self.args)


class FakeJobScheduler:
    """Stands in for apscheduler's BackgroundScheduler; jobs run only when fired."""

    def __init__(self):
        self.jobs = {}
        self.added = []
        self.removed = []
        self.running = False

    def add_job(self, func, trigger=None, args=None, id=None, replace_existing=False, **options):
        if id in self.jobs and not replace_existing:
            raise ConflictingIdError(id)
        job = FakeJob(self, func, trigger, args, id, options)
        self.jobs[id] = job
        self.added.append(job)
        return job

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def get_jobs(self):
        return list(self.jobs.values())

    def remove_job(self, job_id):
        if job_id not in self.jobs:
            raise JobLookupError(job_id)
        self.removed.append(self.jobs.pop(job_id))

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False


@pytest.fixture
def fake_network():
    return FakeAdNetwork()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def jobs():
    return FakeJobScheduler()


@pytest.fixture
def app(tmp_path, fake_network, jobs):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'engine.db'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False}},
        "INSTANCE_DIR": str(tmp_path),
        "AUTOMATION_SCHEDULER_ENABLED": False,
        "BUDGET_DEBOUNCE_SECONDS": 600,
        "AUTOMATION_WORKERS": 1,
        "ADMIN_API_TOKEN": "",
    }, client=fake_network, jobs=jobs)
    yield app
    app.extensions["automation"].aggregator.shutdown()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_campaign(ctx):
    def _make(**kwargs):
        kwargs.setdefault("name", "Spring promo")
        kwargs.setdefault("adnetwork_campaign_id", "995")
        kwargs.setdefault("price_per_thousand", 0.5)
        c = Campaign(**kwargs)
        db.session.add(c)
        db.session.commit()
        return c
    return _make


@pytest.fixture
def make_url(ctx):
    def _make(campaign, click_limit=1000, clicks=0, status="active", weight=1, created_at=None):
        u = Url(
            campaign_id=campaign.id,
            name=f"url-{click_limit}-{clicks}",
            target_url="https://example.com/landing",
            click_limit=click_limit,
            original_click_limit=click_limit,
            clicks=clicks,
            status=status,
            weight=weight,
        )
        if created_at is not None:
            u.created_at = created_at
        db.session.add(u)
        db.session.commit()
        return u
    return _make


@pytest.fixture
def transient():
    return TransientNetworkError("HTTP 503", status_code=503)
