"""
Authentication helpers for trusted internal callers.
"""

from .service_token import SERVICE_TOKEN_HEADER, ServiceIdentity, ServiceTokenVerifier

__all__ = [
    "SERVICE_TOKEN_HEADER",
    "ServiceIdentity",
    "ServiceTokenVerifier",
]
