"""
Error handling module for the ShopSphere API.

Provides retry logic used by background reconciliation. Request handlers do
not retry.
"""

from .error_handler import ErrorHandler, RetryConfig

__all__ = ['ErrorHandler', 'RetryConfig']
