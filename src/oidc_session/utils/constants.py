"""Centralized constants for the OIDC session manager."""

# Storage slot holding the single persisted refresh token
TOKEN_STORE_KEY = "refresh_token"

# Seconds subtracted from a token's expiry before it is considered stale
SKEW_BUFFER_SECONDS = 120

# Used when neither the token response nor the access token carry an expiry
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600

# Issuer endpoint paths
AUTHORIZE_PATH = "/authorize"
TOKEN_PATH = "/oauth/token"
LOGOUT_PATH = "/v2/logout"

# Loopback callback
DEFAULT_PORT = 9877
DEFAULT_BASE_URI = "http://localhost"
CALLBACK_PATH = "/callback"
DEFAULT_BROWSER_TIMEOUT_SECONDS = 300.0

# PKCE
CODE_CHALLENGE_METHOD = "S256"

DEFAULT_AUTH_ERROR_MESSAGE = "Something went wrong"
