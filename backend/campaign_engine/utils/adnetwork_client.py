from __future__ import annotations

import json
import logging
import threading
import time
from datetime import date, datetime, timedelta

import requests

from campaign_engine.errors import AdNetworkError, AuthError, TransientNetworkError

DEFAULT_BASE_URL = "https://api.trafficstars.com/v1"
DEFAULT_TOKEN_URL = "https://api.trafficstars.com/v1/auth/token"

# Refresh this long before the provider's stated expiry
TOKEN_EXPIRY_MARGIN_SECONDS = 60


def format_end_time(dt: datetime) -> str:
    """Ad network wants "YYYY-MM-DD HH:MM:SS" (UTC)."""
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def end_of_day(now: datetime) -> datetime:
    """23:59 UTC on the same day."""
    return now.replace(hour=23, minute=59, second=0, microsecond=0)


def _summarize(payload, limit: int = 2000) -> str | None:
    if payload is None:
        return None
    try:
        raw = json.dumps(payload, sort_keys=True, default=str)
    except Exception:
        raw = str(payload)
    return raw[:limit]


def _to_float(value) -> float:
    try:
        return float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0


class AdNetworkClient:
    """Ad network campaign API: token, campaign read/patch and spend report.

    Every call carries a hard timeout. Timeouts, connection failures and 5xx
    are retried up to ``max_retries`` times with exponential backoff; 4xx fail
    immediately. Whatever ends up failing is written to the error log.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        token_url: str = DEFAULT_TOKEN_URL,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        error_log=None,
        session: requests.Session | None = None,
        sleep=time.sleep,
        clock=datetime.utcnow,
        logger: logging.Logger | None = None,
    ):
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.token_url = token_url
        self.timeout = float(timeout)
        self.max_retries = int(max_retries)
        self.backoff_seconds = float(backoff_seconds)
        self.error_log = error_log
        self.session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock
        self.log = logger or logging.getLogger("campaign_engine.adnetwork")

        self._token_lock = threading.Lock()
        self._access_token: str | None = None
        self._token_expires_at: datetime | None = None

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    def get_token(self) -> str:
        with self._token_lock:
            now = self._clock()
            if self._access_token and self._token_expires_at and now < self._token_expires_at:
                return self._access_token
            return self._refresh_token(now)

    def invalidate_token(self) -> None:
        with self._token_lock:
            self._access_token = None
            self._token_expires_at = None

    def _refresh_token(self, now: datetime) -> str:
        if not self.api_key:
            self._record_failure(self.token_url, "POST", None, "ADNETWORK_API_KEY not set", action_type="auth")
            raise AuthError("ADNETWORK_API_KEY not set")
        try:
            r = self.session.post(
                self.token_url,
                data={"grant_type": "refresh_token", "refresh_token": self.api_key},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            self._record_failure(self.token_url, "POST", None, f"token request failed: {e}", action_type="auth")
            raise AuthError(f"token request failed: {e}") from e

        body = self._json(r)
        token = body.get("access_token") if isinstance(body, dict) else None
        if not (200 <= r.status_code < 300) or not token:
            msg = f"token refresh rejected: HTTP {r.status_code}"
            self._record_failure(self.token_url, "POST", None, msg, status_code=r.status_code, details=body, action_type="auth")
            raise AuthError(msg)

        expires_in = int(body.get("expires_in") or 0)
        self._access_token = token
        self._token_expires_at = now + timedelta(seconds=max(expires_in - TOKEN_EXPIRY_MARGIN_SECONDS, 0))
        self.log.info("Ad network token refreshed, valid until %s", self._token_expires_at.isoformat())
        return token

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @staticmethod
    def _json(r):
        try:
            return r.json() if r.content else {}
        except ValueError:
            return {}

    def _request(self, method: str, path: str, *, params=None, payload=None,
                 campaign_id=None, action_type: str | None = None):
        url = f"{self.base_url}{path}"
        last_error: TransientNetworkError | None = None
        reauthed = False
        attempt = 0

        while True:
            token = self.get_token()
            headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
            try:
                r = self.session.request(method, url, headers=headers, params=params, json=payload, timeout=self.timeout)
            except requests.Timeout as e:
                last_error = TransientNetworkError(f"timeout after {self.timeout}s: {e}")
            except requests.ConnectionError as e:
                last_error = TransientNetworkError(f"connection error: {e}")
            except requests.RequestException as e:
                self._record_failure(url, method, payload, str(e), campaign_id=campaign_id,
                                     action_type=action_type, retry_count=attempt)
                raise AdNetworkError(str(e)) from e
            else:
                if r.status_code == 401 and not reauthed:
                    # Token revoked early; refresh once without spending a retry
                    reauthed = True
                    self.invalidate_token()
                    continue
                if r.status_code >= 500:
                    last_error = TransientNetworkError(f"HTTP {r.status_code}", status_code=r.status_code)
                elif r.status_code >= 400:
                    body = self._json(r)
                    message = (body.get("message") if isinstance(body, dict) else None) or f"HTTP {r.status_code}"
                    self._record_failure(url, method, payload, message, status_code=r.status_code, details=body,
                                         campaign_id=campaign_id, action_type=action_type, retry_count=attempt)
                    raise AdNetworkError(message, status_code=r.status_code, body=body)
                else:
                    return self._json(r)

            if attempt >= self.max_retries:
                break
            delay = self.backoff_seconds * (2 ** attempt)
            attempt += 1
            self.log.warning("%s %s failed (%s), retry %s/%s in %.1fs",
                             method, path, last_error, attempt, self.max_retries, delay)
            self._sleep(delay)

        self._record_failure(url, method, payload, str(last_error), status_code=last_error.status_code,
                             campaign_id=campaign_id, action_type=action_type, retry_count=attempt)
        raise last_error

    def _record_failure(self, endpoint, method, payload, message, *, status_code=None, details=None,
                        campaign_id=None, action_type=None, retry_count=0):
        self.log.error("Ad network call failed: %s %s: %s", method, endpoint, message)
        if self.error_log is None:
            return
        try:
            self.error_log.record(
                endpoint=endpoint,
                method=method,
                request_body=_summarize(payload),
                error_message=message,
                error_details=_summarize(details),
                status_code=status_code,
                campaign_id=campaign_id,
                action_type=action_type,
                retry_count=retry_count,
            )
        except Exception:
            self.log.exception("Could not write api error log for %s %s", method, endpoint)

    # ------------------------------------------------------------------
    # Campaign API
    # ------------------------------------------------------------------

    def get_campaign(self, campaign_id) -> dict:
        body = self._request("GET", f"/campaigns/{campaign_id}", campaign_id=campaign_id, action_type="get_campaign")
        data = body.get("response", body) if isinstance(body, dict) else {}
        return {
            "id": data.get("id", campaign_id),
            "name": data.get("name") or "",
            "status": data.get("status") or "",
            "active": bool(data.get("active")),
            "max_daily": _to_float(data.get("max_daily")),
            "schedule_end_time": data.get("schedule_end_time"),
            "is_archived": bool(data.get("is_archived")),
        }

    def patch_campaign(self, campaign_id, *, status: str | None = None, active: bool | None = None,
                       max_daily: float | None = None, schedule_end_time: str | None = None,
                       action_type: str = "patch_campaign") -> dict:
        payload = {}
        if status is not None:
            payload["status"] = status
        if active is not None:
            payload["active"] = bool(active)
        if max_daily is not None:
            payload["max_daily"] = round(float(max_daily), 2)
        if schedule_end_time is not None:
            payload["schedule_end_time"] = schedule_end_time
        return self._request("PATCH", f"/campaigns/{campaign_id}", payload=payload,
                             campaign_id=campaign_id, action_type=action_type)

    def get_daily_spend(self, campaign_id, day: date) -> float:
        d = day.strftime("%Y-%m-%d")
        body = self._request("GET", f"/campaigns/{campaign_id}/spent",
                             params={"date_from": d, "date_to": d},
                             campaign_id=campaign_id, action_type="get_spend")
        if isinstance(body, dict):
            body = body.get("response", body)
        if isinstance(body, list):
            return round(sum(_to_float(row.get("amount") or row.get("spent")) for row in body if isinstance(row, dict)), 4)
        for key in ("spent", "total", "amount"):
            if key in body:
                return _to_float(body.get(key))
        return 0.0

    # Convenience wrappers used by automation

    def pause_campaign(self, campaign_id, now: datetime) -> dict:
        return self.patch_campaign(campaign_id, status="paused", active=False,
                                   schedule_end_time=format_end_time(now), action_type="pause")

    def activate_campaign(self, campaign_id, end_time: datetime) -> dict:
        return self.patch_campaign(campaign_id, status="active", active=True,
                                   schedule_end_time=format_end_time(end_time), action_type="activate")

    def update_daily_budget(self, campaign_id, max_daily: float) -> dict:
        return self.patch_campaign(campaign_id, max_daily=max_daily, action_type="update_budget")
