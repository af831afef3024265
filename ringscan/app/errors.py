"""
Engine error taxonomy.

Tier-level failures are NOT exceptions; they are carried by TierResult
and recorded in the availability ledger. Exceptions are reserved for
configuration errors detected before orchestration and for internal
contract breaches.
"""


class ConfigurationError(ValueError):
    """
    Fatal configuration error detected before orchestration begins
    (e.g. a scan path that does not exist).
    """


class AssemblerInvariantError(RuntimeError):
    """
    Internal contract breach detected while assembling the report
    (e.g. a finding that references an unknown or unconsulted tier).

    This is fatal: it indicates a defect, not an external failure.
    """
