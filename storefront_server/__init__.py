"""Storefront client, checkout flow and proxy for a Zoho Commerce store."""

__version__ = "0.1.0"
