# models/unit.py
import builtins
import enum

from sqlalchemy import Column, Integer, String, Numeric, Text, ForeignKey, Enum
from sqlalchemy.orm import relationship
from .base import Base, TimestampMixin


class UnitStatus(str, enum.Enum):
     """Occupancy status of a unit. Only lease transitions move it between VACANT and OCCUPIED."""
     VACANT = "vacant"
     OCCUPIED = "occupied"
     MAINTENANCE = "maintenance"
     UNAVAILABLE = "unavailable"


class Unit(TimestampMixin, Base):
     """
     Unit model - an individual rentable space within a property.
     The occupancy core reads units and writes only ``status``.
     """

     id = Column(Integer, primary_key=True, autoincrement=True)
     property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True)

     name = Column(String(100), nullable=False)
     unit_type = Column(String(50), nullable=True)
     rent_amount = Column(Numeric(12, 2), nullable=False)
     description = Column(Text, nullable=True)
     status = Column(
          Enum(UnitStatus, name="unit_status", native_enum=False, create_constraint=True,
               values_callable=lambda e: [m.value for m in e]),
          default=UnitStatus.VACANT,
          nullable=False,
          index=True,
     )

     # Relationships
     property = relationship("Property", back_populates="units")
     leases = relationship("Lease", back_populates="unit")
     payments = relationship("Payment", back_populates="unit")

     @builtins.property
     def landlord_id(self):
          return self.property.landlord_id if self.property else None

     def __repr__(self):
          return f"<Unit(id={self.id}, name='{self.name}', status='{self.status.value}')>"
