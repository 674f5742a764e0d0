"""
Billing Domain

Pure domain types: ledger metadata shapes and trial rules.
"""

from .metadata import (
    CheckoutMetadata,
    LedgerMetadata,
    RefundMetadata,
    RefundPayoutMetadata,
    ReviewMetadata,
    SessionCommissionMetadata,
    SettlementPayoutMetadata,
    parse_metadata,
)
from .trial import TrialStatus, effective_subscription_status, resolve_trial_status

__all__ = [
    'CheckoutMetadata',
    'LedgerMetadata',
    'RefundMetadata',
    'RefundPayoutMetadata',
    'ReviewMetadata',
    'SessionCommissionMetadata',
    'SettlementPayoutMetadata',
    'parse_metadata',
    'TrialStatus',
    'effective_subscription_status',
    'resolve_trial_status',
]
