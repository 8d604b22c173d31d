"""Shared-secret permissions for the storefront and admin endpoints.

Authentication and sessions live in a separate service; this project only
checks the secrets that service and the storefront present:

- ``HasAdminToken``: ``Authorization: Bearer <ADMIN_API_TOKEN>``. When the
  token is not configured every admin request is denied.
- ``HasStorefrontApiKey``: ``X-API-Key`` header or ``apiKey`` query param
  matching ``STOREFRONT_API_KEY``. When no key is configured the endpoint is
  open.
- ``HasAllowedOrigin``: browser origin allow-list for storefront writes
  (``ALLOWED_ORIGINS``, comma separated; empty means any origin).
"""

from django.conf import settings
from django.utils.crypto import constant_time_compare
from rest_framework.permissions import BasePermission


class HasAdminToken(BasePermission):
    message = "ADMIN_TOKEN_REQUIRED"

    def has_permission(self, request, view) -> bool:
        expected = getattr(settings, "ADMIN_API_TOKEN", "")
        if not expected:
            return False
        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        return scheme.lower() == "bearer" and constant_time_compare(token.strip(), expected)


class HasStorefrontApiKey(BasePermission):
    message = "INVALID_API_KEY"

    def has_permission(self, request, view) -> bool:
        expected = getattr(settings, "STOREFRONT_API_KEY", "")
        if not expected:
            return True
        supplied = request.headers.get("X-API-Key") or request.query_params.get("apiKey") or ""
        return constant_time_compare(supplied, expected)


class HasAllowedOrigin(BasePermission):
    """``Origin`` (or ``Referer``) must start with one of ``ALLOWED_ORIGINS``.

    Open when no origins are configured.
    """

    message = "ORIGIN_NOT_ALLOWED"

    def has_permission(self, request, view) -> bool:
        allowed = getattr(settings, "ALLOWED_ORIGINS", [])
        if not allowed:
            return True
        origin = request.headers.get("Origin") or request.headers.get("Referer") or ""
        return bool(origin) and any(origin.startswith(prefix) for prefix in allowed)
