"""
Configuration management infrastructure.

This module provides configuration loading, validation and saving.
"""

from .loader import ConfigLoader
from .models import ApplicationConfig, LoggingConfig, RetryConfig, ServiceConfig, UploadConfig

__all__ = [
    "ConfigLoader",
    "ApplicationConfig",
    "LoggingConfig",
    "RetryConfig",
    "ServiceConfig",
    "UploadConfig",
]
