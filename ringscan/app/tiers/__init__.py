from .client import (
    TierClient,
    TierFailure,
    TierResult,
    TierSuccess,
    UnconfiguredTierClient,
    guarded_query,
)
from .recording import RecordingTierClient, TierSettlement, settle_tier

__all__ = [
    "TierClient",
    "TierFailure",
    "TierResult",
    "TierSuccess",
    "UnconfiguredTierClient",
    "guarded_query",
    "RecordingTierClient",
    "TierSettlement",
    "settle_tier",
]
