"""Logging subsystem for AutoACME.

Public API::

    from autoacme.logging import configure_logging

    configure_logging(settings.logging)
"""

from autoacme.logging.setup import configure_logging

__all__ = ["configure_logging"]
