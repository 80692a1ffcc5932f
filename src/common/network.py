"""Request metadata helpers shared by the API views."""

from __future__ import annotations


def client_ip(request) -> str:
    """
    Return the address the request came from.

    Only ``REMOTE_ADDR`` is trusted. Deployments behind a proxy must rewrite it
    in the proxy or middleware instead of trusting ``X-Forwarded-For`` here.
    """

    return request.META.get("REMOTE_ADDR") or "unknown"


def user_agent(request, limit: int = 255) -> str:
    return (request.META.get("HTTP_USER_AGENT") or "")[:limit]
