"""
Service Layer

Service classes for configuration management.
"""

from creatorengine.services.config_service import ConfigService

__all__ = [
    "ConfigService",
]
