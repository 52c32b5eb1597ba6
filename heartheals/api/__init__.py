"""FastAPI surface for webhooks and entitlement checks."""
