"""
YouTube Data API Layer.

This package handles all communication with the YouTube Data API v3 and the
rotation of the API keys used to call it.
"""

from .client import CatalogueClient, UploadListing
from .credentials import CredentialPool

__all__ = ["CatalogueClient", "CredentialPool", "UploadListing"]
