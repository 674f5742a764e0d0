"""
Commissions Module

Revenue splits for institution payments and instructor/host sessions.

Components:
- CommissionCalculator: Pure split arithmetic
- SessionCommissionService: Leader commissions, stats and payouts
"""

from .calculator import (
    CommissionCalculator,
    CommissionSplit,
    commission_calculator,
    institution_split,
    leader_split,
    refund_split,
    session_revenue,
)
from .service import SessionCommissionService, resolve_leader_rate, session_commission_service

__all__ = [
    'CommissionCalculator',
    'CommissionSplit',
    'commission_calculator',
    'institution_split',
    'leader_split',
    'refund_split',
    'session_revenue',
    'SessionCommissionService',
    'session_commission_service',
    'resolve_leader_rate',
]
