"""FastAPI dependency providers.

Every provider resolves from the service container so tests can swap an
implementation either with ``app.dependency_overrides`` or by registering
an instance in the container.
"""

from typing import Annotated

from fastapi import Depends

from ..application.services.escalation_report import EscalationReportService
from ..application.services.reminder_dispatch import ReminderDispatcher
from ..application.use_cases.process_visit import VisitProcessingOrchestrator
from ..application.use_cases.retry_visit import RetryVisitUseCase
from ..core.config import Settings
from ..core.container import ServiceNames, get_service
from ..workers.recovery_sweeper import RecoverySweeper


def get_app_settings() -> Settings:
    return get_service(ServiceNames.SETTINGS)


def get_orchestrator() -> VisitProcessingOrchestrator:
    """Get the visit processing orchestrator."""
    return get_service(ServiceNames.ORCHESTRATOR)


def get_retry_use_case() -> RetryVisitUseCase:
    return get_service(ServiceNames.RETRY_VISIT)


def get_escalation_service() -> EscalationReportService:
    return get_service(ServiceNames.ESCALATION_REPORT)


def get_reminder_dispatcher() -> ReminderDispatcher:
    return get_service(ServiceNames.REMINDER_DISPATCHER)


def get_recovery_sweeper() -> RecoverySweeper:
    return get_service(ServiceNames.RECOVERY_SWEEPER)


# Dependency annotations for FastAPI
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
OrchestratorDep = Annotated[VisitProcessingOrchestrator, Depends(get_orchestrator)]
RetryVisitDep = Annotated[RetryVisitUseCase, Depends(get_retry_use_case)]
EscalationServiceDep = Annotated[EscalationReportService, Depends(get_escalation_service)]
ReminderDispatcherDep = Annotated[ReminderDispatcher, Depends(get_reminder_dispatcher)]
RecoverySweeperDep = Annotated[RecoverySweeper, Depends(get_recovery_sweeper)]
