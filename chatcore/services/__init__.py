"""
Service layer exports.
"""
from chatcore.services.access import SqlBlockService, SqlMembershipService
from chatcore.services.delivery_tracker import DeliveryTracker
from chatcore.services.envelope import JsonEnvelopeValidator
from chatcore.services.notifier import Notifier
from chatcore.services.orchestrator import MessageOrchestrator, build_orchestrator

__all__ = [
    "DeliveryTracker",
    "JsonEnvelopeValidator",
    "MessageOrchestrator",
    "Notifier",
    "SqlBlockService",
    "SqlMembershipService",
    "build_orchestrator",
]
