"""System-wide constants. All magic numbers and strings live here."""

from __future__ import annotations

# ── Plans & Billing ──────────────────────────────────────────────
DEFAULT_PLAN_NAME = "Free"            # Zero-cost tier assigned at setup
DEFAULT_BILLING_PERIOD_DAYS = 30
UNLIMITED_TOKENS_SENTINEL = -1        # Storage encoding of "unlimited"

# ── Quota Warning Thresholds (percent of limit) ─────────────────
WARNING_THRESHOLD_MEDIUM = 80.0
WARNING_THRESHOLD_HIGH = 90.0
WARNING_THRESHOLD_CRITICAL = 95.0

# ── Client Polling ───────────────────────────────────────────────
DEFAULT_POLL_INTERVAL_SECONDS = 300   # 5 minutes

# ── Usage History ────────────────────────────────────────────────
USAGE_HISTORY_DEFAULT_DAYS = 30
USAGE_HISTORY_DEFAULT_LIMIT = 100
USAGE_HISTORY_MAX_DAYS = 365
USAGE_HISTORY_MAX_LIMIT = 1000
USAGE_HISTORY_RAW_EVENTS = 50         # Raw events echoed back in history view

# ── Model Fallback ───────────────────────────────────────────────
DEFAULT_MODEL_LABEL = "unknown"       # Events recorded without a model

# ── Response Messages ────────────────────────────────────────────
MSG_ACCESS_DENIED = "Access denied"
MSG_INTERNAL_ERROR = "Internal server error"
MSG_BILLING_NOT_CONFIGURED = "Billing is not configured"
MSG_BILLING_SETUP_COMPLETE = "Billing setup complete"
MSG_BILLING_ALREADY_SET_UP = "already set up"
MSG_NO_ACTIVE_SUBSCRIPTION = "No active subscription. Set up billing to continue."

# ── Service ──────────────────────────────────────────────────────
SERVICE_NAME = "tokenmeter"
API_VERSION = "0.1.0"
