"""Domain exceptions shared by the service layer and the API."""

from __future__ import annotations


class CrystalFootballError(Exception):
    """Base class for errors the API maps onto HTTP responses."""


class NotFoundError(CrystalFootballError):
    """Requested record does not exist."""


class InvalidRequestError(CrystalFootballError):
    """Input failed a business rule."""
