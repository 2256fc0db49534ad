"""Employee and role directory models.

Owned by the HR record-keeping side; the notification pipeline only reads them.
"""

import enum
import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Index, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database.base import Base
from ..database.types import UTCDateTime, utcnow


class EmployeeStatus(enum.StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Employee(Base):
    __tablename__ = "employees"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), default="", index=True)
    full_name = Column(String(255), default="")
    manager_id = Column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status = Column(
        SQLEnum(EmployeeStatus, values_callable=lambda e: [s.value for s in e]),
        default=EmployeeStatus.ACTIVE,
    )
    created_at = Column(UTCDateTime, default=utcnow)

    manager = relationship("Employee", remote_side=[id])
    roles = relationship("EmployeeRole", back_populates="employee", cascade="all, delete-orphan")


class Role(Base):
    __tablename__ = "roles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), unique=True, nullable=False)


class EmployeeRole(Base):
    """An employee can hold several roles at once."""

    __tablename__ = "employee_roles"

    employee_id = Column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        primary_key=True,
    )
    role_id = Column(
        UUID(as_uuid=True),
        ForeignKey("roles.id", ondelete="CASCADE"),
        primary_key=True,
    )
    is_active = Column(Boolean, default=True)

    employee = relationship("Employee", back_populates="roles")
    role = relationship("Role")

    __table_args__ = (Index("idx_employee_roles_role", "role_id"),)
