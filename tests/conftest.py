"""
Shared fixtures: an orchestrator wired to in-memory fakes, a manual clock and
an API client whose container resolves to those fakes.
"""

import pytest
from fastapi.testclient import TestClient

from visitflow.app import create_app
from visitflow.application.services.escalation_report import EscalationReportService
from visitflow.application.services.reminder_dispatch import ReminderDispatcher
from visitflow.application.use_cases.process_visit import (
    ProcessingPolicy,
    VisitProcessingOrchestrator,
)
from visitflow.application.use_cases.retry_visit import RetryVisitUseCase
from visitflow.core.config import get_settings, reset_settings
from visitflow.core.container import ServiceNames, get_container
from visitflow.domain.entities.post_commit_ledger import BackoffPolicy
from visitflow.workers.recovery_sweeper import RecoverySweeper

from fakes import (
    FakeIncidentReporter,
    FakeReminderRepository,
    FakeVisitRepository,
    ManualClock,
    make_collaborators,
)


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    monkeypatch.setenv("APP_ENV", "testing")
    monkeypatch.delenv("WEBHOOK_SECRET", raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def visits():
    return FakeVisitRepository()


@pytest.fixture
def collaborators(visits):
    return make_collaborators(visits)


@pytest.fixture
def policy():
    return ProcessingPolicy(
        max_retries=3,
        min_retry_interval_ms=30_000,
        backoff=BackoffPolicy(
            base_delay_ms=5 * 60 * 1000,
            max_delay_ms=6 * 60 * 60 * 1000,
            max_attempts=5,
            alert_threshold=3,
        ),
    )


@pytest.fixture
def orchestrator(visits, collaborators, policy, clock):
    return VisitProcessingOrchestrator(visits, collaborators, policy=policy, clock=clock)


@pytest.fixture
def reminders():
    return FakeReminderRepository()


@pytest.fixture
def incident_reporter():
    return FakeIncidentReporter()


@pytest.fixture
def client(orchestrator, visits, reminders, incident_reporter, collaborators, clock):
    """API client with every container service backed by the fakes above."""
    container = get_container()
    container.clear()
    container.register_singleton(ServiceNames.SETTINGS, get_settings())
    container.register_singleton(ServiceNames.VISIT_REPOSITORY, visits)
    container.register_singleton(ServiceNames.REMINDER_REPOSITORY, reminders)
    container.register_singleton(ServiceNames.COLLABORATORS, collaborators)
    container.register_singleton(ServiceNames.ORCHESTRATOR, orchestrator)
    container.register_singleton(ServiceNames.RETRY_VISIT, RetryVisitUseCase(orchestrator))
    container.register_singleton(
        ServiceNames.ESCALATION_REPORT,
        EscalationReportService(visits, incident_reporter, clock=clock),
    )
    container.register_singleton(
        ServiceNames.REMINDER_DISPATCHER,
        ReminderDispatcher(reminders, collaborators.push_notifier, clock=clock),
    )
    container.register_singleton(ServiceNames.RECOVERY_SWEEPER, RecoverySweeper(orchestrator))

    with TestClient(create_app(use_lifespan=False)) as test_client:
        yield test_client
    container.clear()
