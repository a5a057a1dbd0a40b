"""Management API client for the provisioned primary."""

from .client import APIError, Client, ConflictError, NotFoundError, UnauthorizedError

__all__ = [
    "APIError",
    "Client",
    "ConflictError",
    "NotFoundError",
    "UnauthorizedError",
]
