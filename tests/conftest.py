"""Shared test fixtures."""

import uuid
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from hrnotify.audit.models import AuditLog
from hrnotify.database.base import Base
from hrnotify.directory.models import Employee, EmployeeRole, Role
from hrnotify.directory.service import StaticDirectory
from hrnotify.dispatcher.service import Dispatcher
from hrnotify.guard.service import CompletionGuard
from hrnotify.inapp.models import InAppNotification
from hrnotify.queue.models import QueueEntry
from hrnotify.recipients.static_cc import StaticCcConfig
from hrnotify.rendering.service import JinjaRenderer

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [AuditLog, Employee, EmployeeRole, Role, InAppNotification, QueueEntry]


def make_engine(url: str = "sqlite:///:memory:"):
    """SQLite engine with working SAVEPOINTs (pysqlite needs explicit BEGIN)."""
    kwargs = {"connect_args": {"check_same_thread": False}}
    if url == "sqlite:///:memory:":
        kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session():
    """Create an in-memory SQLite database for testing.

    Note: SQLite doesn't support all PostgreSQL features (JSONB, native enums),
    but the partial unique index and conditional UPDATEs behave the same.
    """
    engine = make_engine()
    TestSession = sessionmaker(bind=engine)
    session = TestSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def people():
    """Stable ids for the directory fixture."""
    return SimpleNamespace(
        employee=uuid.uuid4(),
        manager=uuid.uuid4(),
        hr=uuid.uuid4(),
        hrm=uuid.uuid4(),
        admin=uuid.uuid4(),
        finance=uuid.uuid4(),
        teammate=uuid.uuid4(),
        orphan=uuid.uuid4(),
        inactive=uuid.uuid4(),
    )


@pytest.fixture
def directory(people):
    d = StaticDirectory()
    d.add(people.manager, "maria.manager@example.com", "Maria Manager")
    d.add(people.employee, "eddie.employee@example.com", "Eddie Employee", manager_id=people.manager)
    d.add(people.teammate, "tess.teammate@example.com", "Tess Teammate", manager_id=people.manager)
    d.add(people.orphan, "olga.orphan@example.com", "Olga Orphan")
    d.add(people.hr, "hana.hr@example.com", "Hana HR", roles=("hr",))
    d.add(people.hrm, "hugo.hrm@example.com", "Hugo HRM", roles=("hrm", "hr"))
    d.add(people.admin, "ada.admin@example.com", "Ada Admin", roles=("admin",))
    d.add(people.finance, "finn.finance@example.com", "Finn Finance", roles=("finance_manager",))
    d.add(people.inactive, "gone@example.com", "Gone Person", roles=("hr", "admin"), active=False)
    return d


@pytest.fixture
def static_cc():
    return StaticCcConfig.from_mapping(
        {
            "default": [{"email": "people@example.com", "name": "People Team"}],
            "leave": [{"email": "payroll@example.com", "name": "Payroll"}],
        }
    )


@pytest.fixture
def renderer():
    return JinjaRenderer()


class FakeMailer:
    """Records sends; raises queued failures first."""

    def __init__(self, failures=()):
        self.sent = []
        self.failures = list(failures)
        self.calls = 0
        self.on_send = None

    def send(self, to, cc, subject, body):
        self.calls += 1
        if self.on_send is not None:
            self.on_send()
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append(SimpleNamespace(to=list(to), cc=list(cc), subject=subject, body=body))


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def guard(directory, renderer, static_cc):
    return CompletionGuard(directory, renderer, static_cc, resolver_timeout=5.0)


@pytest.fixture
def dispatcher(directory, renderer, mailer, static_cc):
    return Dispatcher(directory, renderer, mailer, static_cc, worker_id="worker-a", resolver_timeout=5.0)


@pytest.fixture
def leave_payload():
    return {
        "employee_name": "Eddie Employee",
        "leave_type": "Annual",
        "start_date": date(2026, 11, 2).isoformat(),
        "end_date": date(2026, 11, 6).isoformat(),
        "approver_name": "Maria Manager",
    }


@pytest.fixture
def kra_payload():
    return {
        "employee_name": "Eddie Employee",
        "cycle_name": "Q3 2026",
        "evaluator_name": "Maria Manager",
        "score": 4.2,
    }


@pytest.fixture
def engine_factory():
    return make_engine


@pytest.fixture
def mailer_factory():
    return FakeMailer
