"""Configuration for the crisiswatch pipeline."""
from .settings import ConfigurationError, ProcessingConfig, ServiceConfig, SettingsStore

__all__ = ["ConfigurationError", "ProcessingConfig", "ServiceConfig", "SettingsStore"]
