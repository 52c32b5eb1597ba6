"""Background jobs run alongside the API."""
