"""Configuration subsystem for AutoACME.

Public API::

    from autoacme.config import load_settings

    settings = load_settings("config.yaml")
    settings.challenges.dns.domain      # typed access
"""

from autoacme.config.loader import ConfigValidationError, load_settings
from autoacme.config.settings import (
    AutoAcmeSettings,
    ChallengeSettings,
    DnsSettings,
    EngineSettings,
    HttpFileSettings,
    HttpHostedSettings,
    LoggingSettings,
    build_settings,
)

__all__ = [
    "AutoAcmeSettings",
    "ChallengeSettings",
    "ConfigValidationError",
    "DnsSettings",
    "EngineSettings",
    "HttpFileSettings",
    "HttpHostedSettings",
    "LoggingSettings",
    "build_settings",
    "load_settings",
]
