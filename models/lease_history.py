# models/lease_history.py
"""
LeaseHistory model - tenancy record per unit.

One row per lease, written by the lease service in the same transaction as the
lease change itself: opened as ACTIVE when the lease starts, closed as
TERMINATED or COMPLETED when it ends.
"""
import enum

from sqlalchemy import Column, Integer, Numeric, Date, Text, ForeignKey, Enum
from sqlalchemy.orm import relationship
from .base import Base, TimestampMixin


class TenancyStatus(str, enum.Enum):
     ACTIVE = "active"
     COMPLETED = "completed"
     TERMINATED = "terminated"


class LeaseHistory(TimestampMixin, Base):
     __tablename__ = "lease_history"

     id = Column(Integer, primary_key=True, autoincrement=True)
     lease_id = Column(Integer, ForeignKey("leases.id"), nullable=False, unique=True)
     unit_id = Column(Integer, ForeignKey("units.id"), nullable=False, index=True)
     tenant_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

     lease_start_date = Column(Date, nullable=False)
     lease_end_date = Column(Date, nullable=True)  # actual end: move-out or expiry date
     rent_amount = Column(Numeric(12, 2), nullable=False)
     security_deposit = Column(Numeric(12, 2), nullable=False, default=0)
     termination_reason = Column(Text, nullable=True)
     status = Column(
          Enum(TenancyStatus, name="tenancy_status", native_enum=False, create_constraint=True,
               values_callable=lambda e: [m.value for m in e]),
          default=TenancyStatus.ACTIVE,
          nullable=False,
     )

     # Relationships
     lease = relationship("Lease", back_populates="history")

     def __repr__(self):
          return f"<LeaseHistory(lease_id={self.lease_id}, unit_id={self.unit_id}, status='{self.status.value}')>"
