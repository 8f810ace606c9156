"""Security configuration constants for the Platflow API.

This module centralizes security-related configuration including:
- Sensitive keys that should be sanitized from logs
- Error response fields allowed per environment
"""

# Keys are matched case-insensitively as substrings, so "apikey" also covers
# "apiKeys" cookies and "x-api-key"-style headers once lowercased.
SENSITIVE_KEYS: set[str] = {
    # Credentials forwarded to LLM providers and the builder service
    "apikey",
    "api_key",
    "x-api-key",
    "secret",
    "token",
    "authorization",
    "bearer",
    "password",
    "connection_string",
    # Request-scoped state carried in cookies
    "cookie",
    "set-cookie",
    "session_id",
    # Personal Identifiable Information
    "email",
    "phone",
}

# Production-only error response fields
# In production, error responses should only contain these fields to
# prevent information leakage
PRODUCTION_ERROR_FIELDS: set[str] = {
    "correlation_id",
    "type",
}

# Development error response fields (additional fields allowed in development)
DEVELOPMENT_ERROR_FIELDS: set[str] = PRODUCTION_ERROR_FIELDS | {
    "details",
    "traceback",
    "exception_type",
    "validation_errors",
}


def get_allowed_error_fields(environment: str) -> set[str]:
    """Get allowed error response fields based on environment."""
    if environment == "production":
        return PRODUCTION_ERROR_FIELDS.copy()
    return DEVELOPMENT_ERROR_FIELDS.copy()


def is_sensitive_key(key: str) -> bool:
    """Check if a key should be considered sensitive and redacted."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)
