"""AutoACME: prove control of DNS names to an ACME certificate authority.

Public API::

    from autoacme.challenge import ChallengeStrategy
    from autoacme.challenge.registry import create_strategy
    from autoacme.services.validation import ValidationEngine, prove_control
"""

__version__ = "1.0.0"
