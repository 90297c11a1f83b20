"""Admin API, image proxy and security middleware."""
