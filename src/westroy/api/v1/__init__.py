"""API v1 routers."""

from westroy.api.v1 import auth, companies, guest_requests, offers, orders, requests, search, suggest

__all__ = ["auth", "companies", "guest_requests", "offers", "orders", "requests", "search", "suggest"]
