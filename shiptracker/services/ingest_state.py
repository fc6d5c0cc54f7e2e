"""
Shared proxy instance for API routes.

Set at app lifespan start; read by HTTP and WebSocket handlers.
"""
from __future__ import annotations

from typing import Optional

from shiptracker.services.proxy import ProxyService

_proxy: Optional[ProxyService] = None


def set_proxy(p: Optional[ProxyService]) -> None:
    global _proxy
    _proxy = p


def get_proxy() -> ProxyService:
    if _proxy is None:
        raise RuntimeError("Proxy state not initialized")
    return _proxy
