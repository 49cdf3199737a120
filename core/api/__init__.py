"""HTTP API for the review and ledger services."""

from core.api.app import create_app
from core.api.identity import HeaderIdentityProvider

__all__ = ["create_app", "HeaderIdentityProvider"]
