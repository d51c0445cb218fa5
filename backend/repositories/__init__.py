"""
Repository pattern implementation for data access layer.
"""

from .base import BaseRepository
from .case_transition_repository import CaseTransitionRepository
from .fraud_report_repository import FraudReportRepository
from .suspicious_activity_repository import SuspiciousActivityRepository
from .ticket_verification_repository import TicketVerificationRepository
from .user_suspension_repository import UserSuspensionRepository

__all__ = [
    "BaseRepository",
    "CaseTransitionRepository",
    "FraudReportRepository",
    "SuspiciousActivityRepository",
    "TicketVerificationRepository",
    "UserSuspensionRepository",
]
