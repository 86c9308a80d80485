# models/user.py
import enum

from sqlalchemy import Column, Integer, String, DateTime, Enum, func
from sqlalchemy.orm import relationship
from .base import Base


class UserRole(str, enum.Enum):
     ADMIN = "admin"
     LANDLORD = "landlord"
     TENANT = "tenant"


class User(Base):
     """
     User model - landlords and tenants.
     Owned by the account subsystem; the occupancy core only reads it.
     """

     id = Column(Integer, primary_key=True, autoincrement=True)
     email = Column(String(255), unique=True, nullable=False, index=True)
     first_name = Column(String(100), nullable=False)
     last_name = Column(String(100), nullable=False)
     phone = Column(String(20), nullable=True)
     role = Column(
          Enum(UserRole, name="user_role", native_enum=False, create_constraint=True,
               values_callable=lambda e: [m.value for m in e]),
          nullable=False,
          index=True,
     )
     created_at = Column(DateTime, server_default=func.now(), nullable=False)

     # Relationships
     properties = relationship("Property", back_populates="landlord")
     leases = relationship("Lease", back_populates="tenant", foreign_keys="Lease.tenant_id")
     payments = relationship("Payment", back_populates="tenant")

     @property
     def full_name(self) -> str:
          return f"{self.first_name} {self.last_name}"

     def __repr__(self):
          return f"<User(id={self.id}, email='{self.email}', role='{self.role.value}')>"
