"""ShopSphere marketplace API: listings, negotiation, chat and PayPal checkout."""

__version__ = "0.1.0"
