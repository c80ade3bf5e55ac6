"""
System-wide constants for the Delta Exchange gateway.

Centralizes wire names and default values used across modules.
"""

# API Configuration
DELTA_BASE_URL = "https://api.india.delta.exchange"
API_VERSION_PREFIX = "/v2"

# API Endpoints (logical paths, version prefix added by the dispatcher)
PRODUCTS_ENDPOINT = "/products"
WALLET_BALANCES_ENDPOINT = "/wallet/balances"
POSITIONS_ENDPOINT = "/positions/margined"
ORDERS_ENDPOINT = "/orders"
SERVER_TIME_ENDPOINT = "/settings"

# Auth headers
HEADER_API_KEY = "api-key"
HEADER_TIMESTAMP = "timestamp"
HEADER_SIGNATURE = "signature"
HEADER_USER_AGENT = "User-Agent"
USER_AGENT = "delta-gateway/python"

# Venue error codes
ERROR_EXPIRED_SIGNATURE = "expired_signature"
AUTH_ERROR_CODES = frozenset({
    "invalid_api_key",
    "unauthorized_api_access",
    "unauthorizedapiaccess",
    "signature_mismatch",
    "ip_not_whitelisted_for_api_key",
})

# Clock skew
DEFAULT_SAFETY_BUFFER_SECONDS = 5
DEFAULT_RESYNC_INTERVAL_SECONDS = 300
DEFAULT_RETRY_BUFFER_STEP_SECONDS = 10
DEFAULT_LARGE_SKEW_THRESHOLD_SECONDS = 10
DEFAULT_SKEW_SAFETY_MARGIN_SECONDS = 5

# Timeouts and Retries
DEFAULT_API_TIMEOUT = 30  # seconds
MAX_SIGNATURE_RETRIES = 3
RETRY_BASE_DELAY_SECONDS = 0.5
RETRY_MAX_DELAY_SECONDS = 4.0

# Risk
DEFAULT_MAX_DRAWDOWN_PCT = 20.0

# Polling
LEDGER_REFRESH_INTERVAL = 5  # seconds
