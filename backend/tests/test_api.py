from campaign_engine.extensions import db
from campaign_engine.models import ApiErrorLog, AutomationState, Campaign, Url


def _seed_error_logs(n_open=3, n_resolved=2):
    for i in range(n_open):
        db.session.add(ApiErrorLog(endpoint=f"/campaigns/{i}", method="PATCH", error_message="HTTP 503"))
    for i in range(n_resolved):
        db.session.add(ApiErrorLog(endpoint=f"/campaigns/r{i}", method="GET", error_message="HTTP 500", resolved=True))
    db.session.commit()


def test_health(client):
    res = client.get("/api/health")
    assert res.status_code == 200
    assert res.get_json()["db"] == "ok"


def test_redirect_serves_and_counts(client, make_campaign, make_url):
    c = make_campaign()
    u = make_url(c, click_limit=10, clicks=0)

    res = client.get(f"/c/{c.id}")

    assert res.status_code == 302
    assert res.headers["Location"] == "https://example.com/landing"
    db.session.expire_all()
    assert db.session.get(Url, u.id).clicks == 1


def test_redirect_methods(client, make_campaign, make_url):
    temp = make_campaign(redirect_method="307")
    meta = make_campaign(redirect_method="meta")
    make_url(temp, click_limit=0)
    make_url(meta, click_limit=0)

    assert client.get(f"/c/{temp.id}").status_code == 307
    res = client.get(f"/c/{meta.id}")
    assert res.status_code == 200
    assert b'http-equiv="refresh"' in res.data


def test_redirect_without_inventory_is_410(client, make_campaign, make_url):
    c = make_campaign()
    make_url(c, click_limit=3, clicks=3)

    res = client.get(f"/c/{c.id}")

    assert res.status_code == 410
    assert "reached their click limits" in res.get_json()["message"]


def test_redirect_unknown_campaign(client, ctx):
    assert client.get("/c/4040").status_code == 404


def test_error_logs_paginate_resolve_and_clear(client, ctx):
    _seed_error_logs()

    page = client.get("/api/admin/error-logs?page=1&limit=2").get_json()
    assert len(page["logs"]) == 2
    assert page["pagination"] == {"page": 1, "limit": 2, "total": 5, "pages": 3}

    open_logs = client.get("/api/admin/error-logs?resolved=false").get_json()
    assert open_logs["pagination"]["total"] == 3

    target = open_logs["logs"][0]["id"]
    res = client.post(f"/api/admin/error-logs/{target}/resolve")
    assert res.status_code == 200
    assert res.get_json()["log"]["resolved"] is True

    res = client.delete("/api/admin/error-logs/resolved")
    assert res.get_json()["deleted"] == 3
    db.session.expire_all()
    assert ApiErrorLog.query.count() == 2

    assert client.post("/api/admin/error-logs/9999/resolve").status_code == 404
    assert client.delete("/api/admin/error-logs").get_json()["deleted"] == 2


def test_settings_validation_returns_400(client, ctx):
    res = client.post("/api/admin/automation/settings",
                      json={"minimum_clicks_threshold": 20000, "remaining_clicks_threshold": 15000})
    assert res.status_code == 400
    assert res.get_json()["field"] == "remaining_clicks_threshold"

    res = client.post("/api/admin/automation/settings", json={"minimum_clicks_threshold": 4000})
    assert res.status_code == 200
    assert res.get_json()["settings"]["minimum_clicks_threshold"] == 4000


def test_toggle_and_run_now(client, make_campaign, make_url, fake_network):
    c = make_campaign()
    make_url(c, click_limit=20000)

    res = client.post(f"/api/admin/automation/campaigns/{c.id}/toggle", json={"enabled": True})
    assert res.status_code == 200
    assert res.get_json()["status"]["state"] == "idle"

    res = client.post(f"/api/admin/automation/campaigns/{c.id}/run")
    assert res.status_code == 200
    assert res.get_json()["action"] == "paused"

    status = client.get(f"/api/admin/automation/campaigns/{c.id}").get_json()["status"]
    assert status["state"] == "waiting"
    assert status["remaining_clicks"] == 20000
    assert status["wait_minutes"] == 2

    res = client.post(f"/api/admin/automation/campaigns/{c.id}/toggle", json={"enabled": False})
    assert res.get_json()["status"]["state"] == "idle"
    assert len(fake_network.ops("pause")) == 1


def test_toggle_requires_adnetwork_campaign(client, make_campaign):
    c = make_campaign(adnetwork_campaign_id=None)
    res = client.post(f"/api/admin/automation/campaigns/{c.id}/toggle", json={"enabled": True})
    assert res.status_code == 400


def test_tick_runs_every_enabled_campaign(client, make_campaign, make_url, fake_network):
    a = make_campaign(automation_enabled=True, adnetwork_campaign_id="11")
    b = make_campaign(automation_enabled=True, adnetwork_campaign_id="22")
    make_campaign(automation_enabled=False, adnetwork_campaign_id="33")
    make_url(a, click_limit=100)
    make_url(b, click_limit=100)

    res = client.post("/api/admin/automation/tick").get_json()

    assert res["processed"] == 2
    assert res["errors"] == 0
    assert {call[1] for call in fake_network.ops("pause")} == {"11", "22"}
    db.session.expire_all()
    assert db.session.get(Campaign, a.id).state is AutomationState.WAITING


def test_tick_isolates_campaign_failures(client, make_campaign, make_url, fake_network, transient):
    a = make_campaign(automation_enabled=True, adnetwork_campaign_id="11")
    make_campaign(automation_enabled=True, adnetwork_campaign_id="22")
    make_url(a, click_limit=100)

    calls = {"n": 0}

    def _second_pause_fails():
        calls["n"] += 1
        if calls["n"] == 2:
            raise transient

    fake_network.hooks["pause"] = _second_pause_fails

    res = client.post("/api/admin/automation/tick").get_json()

    assert res["processed"] == 2
    assert res["errors"] == 1
    assert res["acted"] == 1


def test_url_event_queues_and_flush_applies(client, make_campaign, make_url, fake_network):
    c = make_campaign(price_per_thousand=1.0)
    u = make_url(c, click_limit=4000)

    res = client.post("/api/admin/automation/url-events", json={"campaign_id": c.id, "url_id": u.id})
    assert res.status_code == 202
    assert res.get_json()["delta"] == 4.0

    pending = client.get("/api/admin/automation/url-events").get_json()["campaigns"]
    assert pending[0]["total"] == 4.0
    assert pending[0]["timer_armed"] is True

    res = client.post(f"/api/admin/automation/campaigns/{c.id}/flush")
    assert res.status_code == 200
    assert fake_network.ops("update_budget") == [("update_budget", "995", 4.0)]


def test_original_click_limit_admin_path(client, make_campaign, make_url):
    c = make_campaign(multiplier=2.0)
    u = make_url(c, click_limit=200)

    res = client.post(f"/api/admin/urls/{u.id}/original-click-limit", json={"original_click_limit": 300})

    assert res.status_code == 200
    body = res.get_json()["url"]
    assert body["original_click_limit"] == 300
    assert body["click_limit"] == 600

    assert client.post(f"/api/admin/urls/{u.id}/original-click-limit", json={"original_click_limit": -1}).status_code == 400


def test_admin_token_gate(app, client, ctx):
    app.config["ADMIN_API_TOKEN"] = "s3cret-token"

    assert client.get("/api/admin/automation").status_code == 403
    assert client.get("/api/admin/error-logs").status_code == 403
    ok = client.get("/api/admin/automation", headers={"Authorization": "Bearer s3cret-token"})
    assert ok.status_code == 200


def test_url_budget_logs_list_and_clear(client, make_campaign, make_url):
    a = make_campaign(price_per_thousand=1.0)
    b = make_campaign(name="Other", adnetwork_campaign_id="996", price_per_thousand=1.0)
    for c, limit in ((a, 2000), (a, 1000), (b, 3000)):
        u = make_url(c, click_limit=limit)
        client.post("/api/admin/automation/url-events", json={"campaign_id": c.id, "url_id": u.id})
    client.post(f"/api/admin/automation/campaigns/{a.id}/flush")
    client.post(f"/api/admin/automation/campaigns/{b.id}/flush")

    everything = client.get("/api/admin/automation/url-budget-logs").get_json()
    assert everything["pagination"]["total"] == 3

    mine = client.get(f"/api/admin/automation/campaigns/{a.id}/url-budget-logs").get_json()
    assert mine["campaign_id"] == a.id
    assert sorted(row["price"] for row in mine["logs"]) == [1.0, 2.0]

    filtered = client.get(f"/api/admin/automation/url-budget-logs?campaign_id={b.id}").get_json()
    assert [row["price"] for row in filtered["logs"]] == [3.0]

    res = client.delete(f"/api/admin/automation/campaigns/{a.id}/url-budget-logs")
    assert res.get_json()["deleted"] == 2
    assert client.delete("/api/admin/automation/url-budget-logs").get_json()["deleted"] == 1
    assert client.get("/api/admin/automation/url-budget-logs?campaign_id=x").status_code == 400
    assert client.get("/api/admin/automation/campaigns/4040/url-budget-logs").status_code == 404


def test_scheduler_registers_one_interval_job(app, jobs):
    scheduler = app.extensions["automation"].scheduler

    scheduler.start()
    scheduler.start()

    job = jobs.get_job("automation-tick")
    assert job.trigger == "interval"
    assert job.options["seconds"] == scheduler.interval_seconds
    assert job.options["max_instances"] == 1
    assert len([j for j in jobs.added if j.id == "automation-tick"]) == 1
    assert scheduler.running

    scheduler.stop()
    assert not scheduler.running


def test_admin_token_covers_every_admin_blueprint(app, client, make_campaign, make_url):
    c = make_campaign()
    u = make_url(c, click_limit=10)
    app.config["ADMIN_API_TOKEN"] = "s3cret-token"

    assert client.get(f"/api/admin/urls/{u.id}").status_code == 403
    assert client.get(f"/api/admin/urls/{u.id}", headers={"Authorization": "Bearer wrong"}).status_code == 403
    ok = client.get(f"/api/admin/urls/{u.id}", headers={"Authorization": "bearer s3cret-token"})
    assert ok.status_code == 200
    assert client.get(f"/c/{c.id}").status_code == 302
