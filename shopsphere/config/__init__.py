"""Configuration module for the ShopSphere API."""

from .app_config import (
    APP_CONFIG,
    AppSettings,
    DatabaseConfig,
    RedisConfig,
    PayPalConfig,
    ReconciliationConfig,
    get_app_settings,
    load_app_config,
)

__all__ = [
    'APP_CONFIG',
    'AppSettings',
    'DatabaseConfig',
    'RedisConfig',
    'PayPalConfig',
    'ReconciliationConfig',
    'get_app_settings',
    'load_app_config',
]
