"""
Usage Module

Monthly live-session quotas and usage analytics.
"""

from .analytics import days_until_reset, get_usage_analytics, get_usage_history, is_approaching_limit, usage_percentages
from .tracker import (
    QuotaCheck,
    QuotaReason,
    UsageQuotaTracker,
    UsageTotals,
    evaluate_quota,
    month_key,
    usage_quota_tracker,
)

__all__ = [
    'QuotaCheck',
    'QuotaReason',
    'UsageQuotaTracker',
    'UsageTotals',
    'evaluate_quota',
    'month_key',
    'usage_quota_tracker',
    'days_until_reset',
    'get_usage_analytics',
    'get_usage_history',
    'is_approaching_limit',
    'usage_percentages',
]
