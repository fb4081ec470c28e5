from .campaign import Campaign, AutomationState  # noqa: F401
from .url import Url, compute_active_status  # noqa: F401

from .automation_settings import AutomationSettings  # noqa: F401

from .api_error_log import ApiErrorLog  # noqa: F401

from .audit_log import AuditLog  # noqa: F401

from .click_protection_bypass import ClickProtectionBypass  # noqa: F401

from .url_budget_log import UrlBudgetLog  # noqa: F401
