"""
Sessions Module

Scheduling and quota-gated booking of live video sessions and conversations.
"""

from .service import LiveSessionService, live_session_service, validate_session_schedule

__all__ = [
    'LiveSessionService',
    'live_session_service',
    'validate_session_schedule',
]
