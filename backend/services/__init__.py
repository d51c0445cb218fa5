"""
Services layer for business logic.

This package contains the trust & safety services; FraudEngine is the
public entry point that binds them to their collaborators.
"""

from .activity_service import ActivityService
from .detection_service import DetectionService
from .fraud_engine import FraudEngine
from .fraud_report_service import FraudReportService
from .risk_service import RiskService
from .suspension_service import SuspensionService
from .verification_service import VerificationService

__all__ = [
    "ActivityService",
    "DetectionService",
    "FraudEngine",
    "FraudReportService",
    "RiskService",
    "SuspensionService",
    "VerificationService",
]
