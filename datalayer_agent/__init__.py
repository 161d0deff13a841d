"""
Ultimate DataLayer: normalized ecommerce analytics for Shopify storefronts.
"""

__version__ = "0.3.0"
