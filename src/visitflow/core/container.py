"""
Dependency injection container for the visitflow service.

Production wiring lives in ``register_default_services``; the API and the
recovery sweeper both resolve their objects from here. Tests register their
own instances under the same names.
"""

from typing import Any, Callable, Dict

from .config import get_settings
from .exceptions import ConfigurationError


class Container:
    """Lightweight dependency injection container."""

    def __init__(self) -> None:
        self._factories: Dict[str, Callable[[], Any]] = {}
        self._singletons: Dict[str, Any] = {}

    def register_singleton(self, name: str, instance: Any) -> None:
        """Register a singleton instance."""
        self._singletons[name] = instance

    def register_factory(self, name: str, factory: Callable[[], Any]) -> None:
        """Register a factory; its first result is cached."""
        self._factories[name] = factory

    def get(self, name: str) -> Any:
        if name in self._singletons:
            return self._singletons[name]

        if name in self._factories:
            instance = self._factories[name]()
            self._singletons[name] = instance
            return instance

        raise ConfigurationError(f"Service '{name}' not found")

    def has(self, name: str) -> bool:
        return name in self._factories or name in self._singletons

    def clear(self) -> None:
        self._factories.clear()
        self._singletons.clear()


# Global container instance
_container = Container()


def get_container() -> Container:
    return _container


def get_service(name: str) -> Any:
    """Get a service from the global container, wiring defaults on first use."""
    if not _container.has(name):
        register_default_services()
    return _container.get(name)


class ServiceNames:
    """Service names used throughout the application."""

    SETTINGS = "settings"

    VISIT_REPOSITORY = "visit_repository"
    REMINDER_REPOSITORY = "reminder_repository"
    USER_PROFILE_REPOSITORY = "user_profile_repository"

    COLLABORATORS = "visit_collaborators"
    ORCHESTRATOR = "visit_orchestrator"
    RETRY_VISIT = "retry_visit_use_case"
    ESCALATION_REPORT = "escalation_report_service"
    REMINDER_DISPATCHER = "reminder_dispatcher"
    RECOVERY_SWEEPER = "recovery_sweeper"


def _build_collaborators():
    from ..adapters.db.mongo.repositories.action_repository import MongoActionRepository
    from ..adapters.db.mongo.repositories.medication_repository import MongoMedicationRepository
    from ..adapters.db.mongo.repositories.nudge_repository import MongoNudgeAnalyzer
    from ..adapters.external.notification_services import EmailCaregiverNotifier, HttpPushNotifier
    from ..adapters.external.summary_service_openai import OpenAISummaryService
    from ..adapters.external.transcription_service_assemblyai import AssemblyAITranscriptionService
    from ..application.collaborators import VisitCollaborators

    profiles = _container.get(ServiceNames.USER_PROFILE_REPOSITORY)
    medications = MongoMedicationRepository()
    transcription = AssemblyAITranscriptionService()
    return VisitCollaborators(
        transcription=transcription,
        summarizer=OpenAISummaryService(),
        action_sync=MongoActionRepository(),
        medication_sync=medications,
        medication_lookup=medications,
        nudge_analyzer=MongoNudgeAnalyzer(),
        caregiver_notifier=EmailCaregiverNotifier(profiles),
        push_notifier=HttpPushNotifier(profiles),
        user_profiles=profiles,
        transcript_cleanup=transcription,
    )


def register_default_services() -> None:
    """Register production factories for every name not already registered."""
    from ..adapters.db.mongo.repositories.reminder_repository import MongoReminderRepository
    from ..adapters.db.mongo.repositories.user_repository import MongoUserProfileRepository
    from ..adapters.db.mongo.repositories.visit_repository import MongoVisitRepository
    from ..adapters.external.notification_services import WebhookIncidentReporter
    from ..application.services.escalation_report import EscalationReportService
    from ..application.services.reminder_dispatch import ReminderDispatcher
    from ..application.use_cases.process_visit import ProcessingPolicy, VisitProcessingOrchestrator
    from ..application.use_cases.retry_visit import RetryVisitUseCase
    from ..workers.recovery_sweeper import RecoverySweeper

    settings = get_settings()
    defaults: Dict[str, Callable[[], Any]] = {
        ServiceNames.SETTINGS: lambda: settings,
        ServiceNames.VISIT_REPOSITORY: MongoVisitRepository,
        ServiceNames.REMINDER_REPOSITORY: MongoReminderRepository,
        ServiceNames.USER_PROFILE_REPOSITORY: MongoUserProfileRepository,
        ServiceNames.COLLABORATORS: _build_collaborators,
        ServiceNames.ORCHESTRATOR: lambda: VisitProcessingOrchestrator(
            _container.get(ServiceNames.VISIT_REPOSITORY),
            _container.get(ServiceNames.COLLABORATORS),
            policy=ProcessingPolicy.from_settings(settings),
        ),
        ServiceNames.RETRY_VISIT: lambda: RetryVisitUseCase(_container.get(ServiceNames.ORCHESTRATOR)),
        ServiceNames.ESCALATION_REPORT: lambda: EscalationReportService(
            _container.get(ServiceNames.VISIT_REPOSITORY), WebhookIncidentReporter()
        ),
        ServiceNames.REMINDER_DISPATCHER: lambda: ReminderDispatcher(
            _container.get(ServiceNames.REMINDER_REPOSITORY),
            _container.get(ServiceNames.COLLABORATORS).push_notifier,
            lock_window_ms=settings.reminders.lock_window_seconds * 1000,
        ),
        ServiceNames.RECOVERY_SWEEPER: lambda: RecoverySweeper.from_settings(
            _container.get(ServiceNames.ORCHESTRATOR), settings
        ),
    }
    for name, factory in defaults.items():
        if not _container.has(name):
            _container.register_factory(name, factory)
