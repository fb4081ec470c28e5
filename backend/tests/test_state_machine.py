from datetime import timedelta

import pytest
from sqlalchemy import update

from campaign_engine.extensions import db
from campaign_engine.models import AutomationState, Campaign
from campaign_engine.services.click_cache import ClickLimitCache
from campaign_engine.services.locks import CampaignLocks
from campaign_engine.services.settings import get_settings
from campaign_engine.services.state_machine import CampaignStateMachine, staged_budget


@pytest.fixture
def machine(ctx, fake_network, clock):
    return CampaignStateMachine(fake_network, ClickLimitCache(ttl_seconds=-1), CampaignLocks(), clock=clock)


def _in_regime(make_campaign, state=AutomationState.CONDITION1, **kwargs):
    c = make_campaign(automation_enabled=True, **kwargs)
    c.state = state
    db.session.commit()
    return c


def test_idle_pauses_and_moves_to_waiting(machine, make_campaign, make_url, fake_network, clock):
    c = make_campaign(automation_enabled=True)
    make_url(c, click_limit=20000)

    res = machine.evaluate(c.id)

    assert res["ok"] is True
    assert res["action"] == "paused"
    assert c.state is AutomationState.WAITING
    assert c.wait_start_time == clock.now
    assert fake_network.ops("pause") == [("pause", "995", "2026-03-14 12:00:00")]
    assert fake_network.ops("get_daily_spend") == []


def test_never_jumps_from_idle_to_a_regime(machine, make_campaign, make_url, fake_network, clock):
    c = make_campaign(automation_enabled=True)
    make_url(c, click_limit=20000)
    fake_network.spend["995"] = 3.0

    seen = []
    for _ in range(4):
        machine.evaluate(c.id)
        seen.append(c.state)
        clock.advance(minutes=3)

    assert seen[0] is AutomationState.WAITING
    assert seen[1] is AutomationState.CONDITION1
    assert seen[2] is AutomationState.CONDITION1


def test_scenario_a_activates_until_end_of_day(machine, make_campaign, make_url, fake_network):
    c = _in_regime(make_campaign)
    make_url(c, click_limit=20000)
    fake_network.spend["995"] = 7.50

    res = machine.evaluate(c.id)

    assert res["action"] == "activated"
    assert fake_network.ops("activate") == [("activate", "995", "2026-03-14 23:59:00")]
    assert c.state is AutomationState.CONDITION1
    assert c.daily_spent == 7.50


def test_scenario_b_budget_applied_directly(machine, make_campaign, make_url, fake_network):
    c = _in_regime(make_campaign, price_per_thousand=0.50)
    make_url(c, click_limit=3000)
    fake_network.spend["995"] = 12.00

    res = machine.evaluate(c.id)

    assert fake_network.ops("update_budget") == [("update_budget", "995", 13.50)]
    assert res["budget"] == 13.50
    assert c.state is AutomationState.CONDITION2
    assert c.last_applied_budget == 13.50
    # campaign was paused remotely, so it gets activated after the budget lands
    assert len(fake_network.ops("activate")) == 1


def test_applied_budget_survives_failed_activation(machine, make_campaign, make_url, fake_network, clock,
                                                    transient):
    c = _in_regime(make_campaign, price_per_thousand=0.50)
    make_url(c, click_limit=3000)
    fake_network.spend["995"] = 12.00
    fake_network.fail["activate"] = transient

    res = machine.evaluate(c.id)

    assert res["ok"] is False
    assert fake_network.ops("update_budget") == [("update_budget", "995", 13.50)]
    db.session.expire_all()
    row = db.session.get(Campaign, c.id)
    assert row.last_applied_budget == 13.50
    assert row.last_budget_update_at == clock.now
    assert row.state is AutomationState.CONDITION1


def test_scenario_c_wait_window(machine, make_campaign, make_url, fake_network, clock):
    c = make_campaign(automation_enabled=True, wait_minutes=2)
    make_url(c, click_limit=20000)
    c.state = AutomationState.WAITING
    c.wait_start_time = clock.now
    db.session.commit()
    start = clock.now

    clock.now = start + timedelta(minutes=1, seconds=59)
    res = machine.evaluate(c.id)
    assert res["action"] == "wait"
    assert c.state is AutomationState.WAITING
    assert fake_network.ops("get_daily_spend") == []

    clock.now = start + timedelta(minutes=2, seconds=1)
    machine.evaluate(c.id)
    assert len(fake_network.ops("get_daily_spend")) == 1
    assert c.state in (AutomationState.CONDITION1, AutomationState.CONDITION2)


def test_scenario_d_minimum_threshold_pauses(machine, make_campaign, make_url, fake_network):
    c = _in_regime(make_campaign)
    make_url(c, click_limit=4999)
    fake_network.remote["995"] = {"active": True, "max_daily": 10.0, "status": "active"}
    fake_network.spend["995"] = 4.0

    res = machine.evaluate(c.id)

    assert res["action"] == "paused"
    assert len(fake_network.ops("pause")) == 1


def test_scenario_d_hysteresis_band_holds(machine, make_campaign, make_url, fake_network):
    c = _in_regime(make_campaign)
    make_url(c, click_limit=5001)
    fake_network.remote["995"] = {"active": True, "max_daily": 10.0, "status": "active"}
    fake_network.spend["995"] = 4.0

    res = machine.evaluate(c.id)

    assert res["action"] == "hold"
    assert fake_network.ops("pause") == []
    assert fake_network.ops("activate") == []


def test_per_campaign_threshold_override(machine, make_campaign, make_url, fake_network):
    c = _in_regime(make_campaign, remaining_clicks_threshold=25000)
    make_url(c, click_limit=20000)
    fake_network.spend["995"] = 1.0

    res = machine.evaluate(c.id)

    assert res["action"] == "hold"
    assert fake_network.ops("activate") == []


def test_unlimited_url_counts_as_plenty(machine, make_campaign, make_url, fake_network):
    c = _in_regime(make_campaign)
    make_url(c, click_limit=0, clicks=10)
    fake_network.spend["995"] = 1.0

    res = machine.evaluate(c.id)

    assert res["action"] == "activated"


def test_empty_campaign_is_paused(machine, make_campaign, make_url, fake_network):
    c = _in_regime(make_campaign)
    make_url(c, click_limit=100, clicks=100)
    fake_network.remote["995"] = {"active": True, "max_daily": 10.0, "status": "active"}
    fake_network.spend["995"] = 20.0

    res = machine.evaluate(c.id)

    assert res["action"] == "paused"
    assert res["reason"] == "no_eligible_urls"
    assert fake_network.ops("update_budget") == []


def test_staged_budget_caps_large_raises(machine, make_campaign, make_url, fake_network):
    c = _in_regime(make_campaign, state=AutomationState.CONDITION2, price_per_thousand=1.0)
    make_url(c, click_limit=100000)
    fake_network.remote["995"] = {"active": True, "max_daily": 40.0, "status": "active"}
    fake_network.spend["995"] = 38.0

    res = machine.evaluate(c.id)

    assert res["target_budget"] == 138.0
    assert fake_network.ops("update_budget") == [("update_budget", "995", 50.0)]
    assert c.last_applied_budget == 50.0


def test_staged_budget_rules(ctx):
    s = get_settings()
    assert staged_budget(13.5, 0.0, 12.0, s) == 13.5
    assert staged_budget(80.0, 20.0, 15.0, s) == 30.0
    assert staged_budget(55.0, 50.0, 48.0, s) == 55.0
    assert staged_budget(60.0, 90.0, 10.0, s) == 60.0


def test_failed_call_leaves_state_untouched(machine, make_campaign, make_url, fake_network, transient):
    c = make_campaign(automation_enabled=True)
    make_url(c, click_limit=20000)
    fake_network.fail["pause"] = transient

    res = machine.evaluate(c.id)

    assert res["ok"] is False
    assert c.state is AutomationState.IDLE
    assert c.wait_start_time is None


def test_disable_during_call_discards_result(machine, make_campaign, make_url, fake_network):
    c = make_campaign(automation_enabled=True)
    make_url(c, click_limit=20000)

    def _operator_disables():
        db.session.execute(update(Campaign).where(Campaign.id == c.id).values(automation_enabled=False))
        db.session.commit()

    fake_network.hooks["pause"] = _operator_disables

    res = machine.evaluate(c.id)

    assert res["action"] == "discarded"
    assert c.state is AutomationState.IDLE


def test_unknown_state_loads_as_idle(machine, make_campaign, make_url, fake_network):
    c = make_campaign(automation_enabled=True)
    make_url(c, click_limit=20000)
    c.automation_state = "condition9"
    db.session.commit()

    machine.evaluate(c.id)

    assert c.automation_state == "waiting"
    assert len(fake_network.ops("pause")) == 1


def test_busy_campaign_is_skipped(machine, make_campaign, fake_network):
    c = make_campaign(automation_enabled=True)

    with machine.locks.hold(c.id):
        res = machine.evaluate(c.id)

    assert res["action"] == "skipped"
    assert res["reason"] == "busy"
    assert fake_network.calls == []


def test_disable_resets_to_idle(machine, make_campaign):
    c = _in_regime(make_campaign)

    machine.disable(c)

    assert c.automation_enabled is False
    assert c.state is AutomationState.IDLE
    assert machine.evaluate(c.id)["reason"] == "disabled"
