"""Download security: rate limiting, quotas and signed tokens."""
