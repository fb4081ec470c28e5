from __future__ import annotations


class CampaignEngineError(Exception):
    """Base class for engine failures."""


class TransientNetworkError(CampaignEngineError):
    """Timeout, connection failure or 5xx from the ad network. Retried."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AdNetworkError(CampaignEngineError):
    """Non-retryable 4xx from the ad network."""

    def __init__(self, message: str, *, status_code: int | None = None, body=None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AuthError(CampaignEngineError):
    """Token refresh failed. Fatal for the current tick only."""


class ValidationError(CampaignEngineError):
    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.field = field


class ProtectionViolation(CampaignEngineError):
    """A write to a URL's protected click-limit baseline while protection is on."""

    def __init__(self, url_id, old_value, attempted_value):
        super().__init__(
            f"originalClickLimit of url {url_id} is protected: "
            f"kept {old_value}, discarded {attempted_value}"
        )
        self.url_id = url_id
        self.old_value = old_value
        self.attempted_value = attempted_value


class NoEligibleUrl(CampaignEngineError):
    def __init__(self, campaign_id):
        super().__init__("All URLs in this campaign have reached their click limits")
        self.campaign_id = campaign_id
