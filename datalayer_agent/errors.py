"""
Exception hierarchy shared by the deployment actions and the HTTP surface.
"""

from typing import Any, Optional


class DatalayerError(Exception):
    """Base class for errors surfaced to the operator."""
    pass


class ValidationError(DatalayerError):
    """Operator input rejected before any network call."""
    pass


class ShopifyAPIError(DatalayerError):
    """A Shopify Admin API call failed."""

    def __init__(self, message: str, status: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.status = status
        self.body = body


class PixelInstallError(DatalayerError):
    """The web pixel could not be created or updated."""
    pass


class TemplatePatchError(DatalayerError):
    """The theme layout has no anchor the injection engine can use."""
    pass


class OAuthError(DatalayerError):
    """OAuth callback or token exchange failed."""
    pass
