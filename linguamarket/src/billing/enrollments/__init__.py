"""
Enrollments Module

Eligibility decisions and enrollment creation.
"""

from .eligibility import EligibilityReason, EligibilityResult, check_eligibility, decide_eligibility
from .service import EnrollmentService, enrollment_service

__all__ = [
    'EligibilityReason',
    'EligibilityResult',
    'check_eligibility',
    'decide_eligibility',
    'EnrollmentService',
    'enrollment_service',
]
