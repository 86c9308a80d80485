# models/lease.py
import enum
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import Column, Integer, Numeric, Date, Text, ForeignKey, Enum, Index, text
from sqlalchemy.orm import relationship

from errors import InvalidStateError
from .base import Base, TimestampMixin


class LeaseStatus(str, enum.Enum):
     """Lease lifecycle: PENDING -> ACTIVE -> (TERMINATED | EXPIRED)."""
     PENDING = "pending"
     ACTIVE = "active"
     TERMINATED = "terminated"
     EXPIRED = "expired"


LEASE_TRANSITIONS = {
     LeaseStatus.PENDING: {LeaseStatus.ACTIVE},
     LeaseStatus.ACTIVE: {LeaseStatus.TERMINATED, LeaseStatus.EXPIRED},
     LeaseStatus.TERMINATED: set(),
     LeaseStatus.EXPIRED: set(),
}

ACTIVE_ONLY = text("status = 'active'")


class Lease(TimestampMixin, Base):
     """
     Lease model - binds one tenant to one unit for a date range.

     Rows are never deleted; termination and expiry are status changes so the
     unit and tenant keep their history. At most one ACTIVE lease may exist per
     unit, enforced by the ``one_active_lease_per_unit`` partial unique index.
     """
     __tablename__ = "leases"
     __table_args__ = (
          Index(
               "one_active_lease_per_unit",
               "unit_id",
               "status",
               unique=True,
               postgresql_where=ACTIVE_ONLY,
               sqlite_where=ACTIVE_ONLY,
               mssql_where=ACTIVE_ONLY,
          ),
     )

     id = Column(Integer, primary_key=True, autoincrement=True)
     tenant_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
     unit_id = Column(Integer, ForeignKey("units.id"), nullable=False, index=True)
     landlord_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

     # Lease period
     start_date = Column(Date, nullable=False)
     end_date = Column(Date, nullable=False)

     # Pricing (snapshot at creation; later unit rent changes do not apply)
     monthly_rent = Column(Numeric(12, 2), nullable=False)
     security_deposit = Column(Numeric(12, 2), nullable=False, default=0)

     status = Column(
          Enum(LeaseStatus, name="lease_status", native_enum=False, create_constraint=True,
               values_callable=lambda e: [m.value for m in e]),
          default=LeaseStatus.PENDING,
          nullable=False,
          index=True,
     )

     move_in_date = Column(Date, nullable=True)
     move_out_date = Column(Date, nullable=True)
     termination_reason = Column(Text, nullable=True)
     notes = Column(Text, nullable=True)

     # Relationships
     tenant = relationship("User", back_populates="leases", foreign_keys=[tenant_id])
     landlord = relationship("User", foreign_keys=[landlord_id])
     unit = relationship("Unit", back_populates="leases")
     payments = relationship("Payment", back_populates="lease")
     history = relationship("LeaseHistory", back_populates="lease", uselist=False)

     def __repr__(self):
          return f"<Lease(id={self.id}, tenant_id={self.tenant_id}, unit_id={self.unit_id}, status='{self.status.value}')>"

     @property
     def is_active(self) -> bool:
          return self.status == LeaseStatus.ACTIVE

     @property
     def duration_days(self) -> int:
          return (self.end_date - self.start_date).days

     def is_expiring(self, days_from_now: int = 30, today: Optional[date] = None) -> bool:
          """Check if an active lease ends within the next ``days_from_now`` days."""
          today = today or date.today()
          return self.is_active and self.end_date <= today + timedelta(days=days_from_now)

     def can_transition_to(self, new_status: LeaseStatus) -> bool:
          return new_status in LEASE_TRANSITIONS[self.status]

     def transition_to(self, new_status: LeaseStatus) -> None:
          """
          Move the lease to ``new_status``.

          Raises:
               InvalidStateError: If the lifecycle does not allow the move
                    (e.g. terminating an expired lease).
          """
          if not self.can_transition_to(new_status):
               raise InvalidStateError(
                    f"Lease {self.id} cannot move from {self.status.value} to {new_status.value}"
               )
          self.status = new_status
