"""Challenge strategy factory.

Builds the strategy chosen by the ``challenges`` configuration section.

Usage::

    from autoacme.challenge.registry import create_strategy

    with create_strategy(settings.challenges) as strategy:
        if strategy.test_reachability(hosts):
            ...

Modes:

- ``dns`` / ``hosted`` / ``file``: exactly that strategy
- ``auto``: ``dns`` if configured, else ``hosted`` if configured,
  else ``file``
- ``fallback``: a :class:`FallbackStrategy` over ``fallback_order``
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from autoacme.challenge.fallback import FallbackStrategy

if TYPE_CHECKING:
    from autoacme.challenge.base import ChallengeStrategy
    from autoacme.config.settings import ChallengeSettings

log = logging.getLogger(__name__)

# Maps strategy name → (module_path, class_name, settings attribute)
_BUILTIN_STRATEGIES: dict[str, tuple[str, str, str]] = {
    "dns": ("autoacme.challenge.dns01", "DnsStrategy", "dns"),
    "hosted": ("autoacme.challenge.http_hosted", "HttpHostedStrategy", "http_hosted"),
    "file": ("autoacme.challenge.http_file", "HttpFileStrategy", "http_file"),
}

_AUTO_ORDER = ("dns", "hosted", "file")


def available_strategies(settings: ChallengeSettings) -> list[str]:
    """Names of the strategies that have a settings section, in auto order."""
    return [
        name
        for name in _AUTO_ORDER
        if getattr(settings, _BUILTIN_STRATEGIES[name][2]) is not None
    ]


def _build_one(name: str, settings: ChallengeSettings) -> ChallengeStrategy:
    try:
        mod_path, cls_name, settings_attr = _BUILTIN_STRATEGIES[name]
    except KeyError:
        msg = f"Unknown challenge strategy '{name}'"
        raise ValueError(msg) from None

    section = getattr(settings, settings_attr)
    if section is None:
        msg = f"Challenge strategy '{name}' is not configured (challenges.{settings_attr})"
        raise ValueError(msg)

    module = importlib.import_module(mod_path)
    cls = getattr(module, cls_name)
    try:
        strategy = cls(section)
    except Exception:
        log.exception("Failed to create %s challenge strategy", name)
        raise
    log.info("Created %s challenge strategy", name)
    return strategy


def create_strategy(settings: ChallengeSettings) -> ChallengeStrategy:
    """Build the strategy selected by *settings*.

    Raises
    ------
    ValueError
        If the selected strategy has no settings section.
    ListenerStartupError
        If the self-hosted listener cannot bind.

    """
    mode = settings.mode
    if mode == "auto":
        available = available_strategies(settings)
        if not available:
            msg = "No challenge strategy is configured"
            raise ValueError(msg)
        return _build_one(available[0], settings)

    if mode != "fallback":
        return _build_one(mode, settings)

    children: list[ChallengeStrategy] = []
    try:
        for name in settings.fallback_order:
            children.append(_build_one(name, settings))
    except Exception:
        for child in children:
            child.close()
        raise
    return FallbackStrategy(children)
