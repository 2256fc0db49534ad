"""Directory lookups used by the recipient resolver.

Provides SqlDirectory (employees/roles tables) and StaticDirectory (in-memory),
both satisfying the Directory protocol. Only active people with an email
address are ever returned.
"""

from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from ..database.base import SessionLocal
from ..recipients.schemas import Recipient
from .models import Employee, EmployeeRole, EmployeeStatus, Role


class Directory(Protocol):
    """User/role directory interface."""

    def get_person(self, person_id: UUID) -> Recipient | None: ...
    def manager_of(self, person_id: UUID) -> Recipient | None: ...
    def people_with_roles(self, roles: Sequence[str]) -> list[Recipient]: ...
    def team_of(self, manager_id: UUID) -> list[Recipient]: ...


def _to_recipient(employee: Employee) -> Recipient:
    return Recipient(id=employee.id, email=employee.email, name=employee.full_name or "")


class SqlDirectory:
    """Directory backed by the employees and roles tables.

    Each lookup opens its own short-lived session so it can run off the
    caller's thread without touching the caller's transaction.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        finally:
            db.close()

    @staticmethod
    def _reachable(query):
        return query.filter(
            Employee.status == EmployeeStatus.ACTIVE,
            Employee.email.isnot(None),
            Employee.email != "",
        )

    def get_person(self, person_id: UUID) -> Recipient | None:
        with self._session() as db:
            employee = self._reachable(db.query(Employee).filter(Employee.id == person_id)).first()
            return _to_recipient(employee) if employee else None

    def manager_of(self, person_id: UUID) -> Recipient | None:
        with self._session() as db:
            manager_id = db.query(Employee.manager_id).filter(Employee.id == person_id).scalar()
        if manager_id is None:
            return None
        return self.get_person(manager_id)

    def people_with_roles(self, roles: Sequence[str]) -> list[Recipient]:
        if not roles:
            return []
        with self._session() as db:
            rows = (
                self._reachable(
                    db.query(Employee)
                    .join(EmployeeRole, EmployeeRole.employee_id == Employee.id)
                    .join(Role, Role.id == EmployeeRole.role_id)
                    .filter(Role.name.in_(list(roles)), EmployeeRole.is_active.is_(True))
                )
                .distinct()
                .order_by(Employee.full_name.asc(), Employee.email.asc())
                .all()
            )
            return [_to_recipient(e) for e in rows]

    def team_of(self, manager_id: UUID) -> list[Recipient]:
        with self._session() as db:
            rows = (
                self._reachable(db.query(Employee).filter(Employee.manager_id == manager_id))
                .order_by(Employee.full_name.asc(), Employee.email.asc())
                .all()
            )
            return [_to_recipient(e) for e in rows]


@dataclass
class _Person:
    recipient: Recipient
    manager_id: UUID | None
    roles: frozenset[str]
    active: bool


class StaticDirectory:
    """In-memory directory, for wiring without a database and for tests."""

    def __init__(self) -> None:
        self._people: dict[UUID, _Person] = {}

    def add(
        self,
        person_id: UUID,
        email: str,
        name: str = "",
        *,
        manager_id: UUID | None = None,
        roles: Iterable[str] = (),
        active: bool = True,
    ) -> Recipient:
        recipient = Recipient(id=person_id, email=email, name=name)
        self._people[person_id] = _Person(recipient, manager_id, frozenset(roles), active)
        return recipient

    def _visible(self, person: _Person | None) -> bool:
        return person is not None and person.active and bool(person.recipient.email)

    def get_person(self, person_id: UUID) -> Recipient | None:
        person = self._people.get(person_id)
        return person.recipient if self._visible(person) else None

    def manager_of(self, person_id: UUID) -> Recipient | None:
        person = self._people.get(person_id)
        if person is None or person.manager_id is None:
            return None
        return self.get_person(person.manager_id)

    def people_with_roles(self, roles: Sequence[str]) -> list[Recipient]:
        wanted = set(roles)
        return [p.recipient for p in self._people.values() if self._visible(p) and p.roles & wanted]

    def team_of(self, manager_id: UUID) -> list[Recipient]:
        return [p.recipient for p in self._people.values() if self._visible(p) and p.manager_id == manager_id]
