# models/payment.py
"""
Payment model - one rent payment attempt.

An M-Pesa payment is created PENDING before the gateway is called, receives
the gateway's correlation ids once the push request is acknowledged, and moves
exactly once to SUCCESSFUL or FAILED. Bank, cash and other payments are
recorded PENDING and settled by the landlord. Terminal payments are never
modified.
"""
import enum

from sqlalchemy import Column, Integer, String, Numeric, Text, DateTime, ForeignKey, Enum, Index, func, text
from sqlalchemy.orm import relationship
from .base import Base

CORRELATED_ONLY = text("checkout_request_id IS NOT NULL")


class PaymentStatus(str, enum.Enum):
     PENDING = "pending"
     SUCCESSFUL = "successful"
     FAILED = "failed"

     @property
     def is_terminal(self) -> bool:
          return self is not PaymentStatus.PENDING


class PaymentMethod(str, enum.Enum):
     """How the tenant pays. Only MPESA goes through the gateway; the rest are settled by the landlord."""
     MPESA = "mpesa"
     BANK = "bank"
     CASH = "cash"
     OTHER = "other"


class Payment(Base):
     __tablename__ = "payments"
     __table_args__ = (
          # One payment per gateway checkout request; NULL until the gateway acknowledges
          Index(
               "uq_payments_checkout_request_id",
               "checkout_request_id",
               unique=True,
               postgresql_where=CORRELATED_ONLY,
               sqlite_where=CORRELATED_ONLY,
               mssql_where=CORRELATED_ONLY,
          ),
     )

     id = Column(Integer, primary_key=True, autoincrement=True)
     tenant_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
     unit_id = Column(Integer, ForeignKey("units.id"), nullable=False, index=True)
     lease_id = Column(Integer, ForeignKey("leases.id", ondelete="SET NULL"), nullable=True, index=True)

     amount = Column(Numeric(12, 2), nullable=False)
     phone_number = Column(String(20), nullable=True)
     status = Column(
          Enum(PaymentStatus, name="payment_status", native_enum=False, create_constraint=True,
               values_callable=lambda e: [m.value for m in e]),
          default=PaymentStatus.PENDING,
          nullable=False,
          index=True,
     )
     payment_method = Column(
          Enum(PaymentMethod, name="payment_method", native_enum=False, create_constraint=True,
               values_callable=lambda e: [m.value for m in e]),
          default=PaymentMethod.MPESA,
          nullable=False,
     )

     # Internal reference handed to the payer and shown on statements
     transaction_ref = Column(String(64), nullable=False, unique=True)
     # Gateway correlation ids, assigned when the push request is acknowledged
     merchant_request_id = Column(String(100), nullable=True)
     checkout_request_id = Column(String(100), nullable=True)
     # Settlement receipt, assigned only on success
     mpesa_receipt_number = Column(String(50), nullable=True)
     settled_amount = Column(Numeric(12, 2), nullable=True)
     # Proof of a manually settled payment
     receipt_url = Column(String(500), nullable=True)

     notes = Column(Text, nullable=True)

     # Timestamps
     created_at = Column(DateTime, server_default=func.now(), nullable=False)
     completed_at = Column(DateTime, nullable=True)

     # Relationships
     tenant = relationship("User", back_populates="payments")
     unit = relationship("Unit", back_populates="payments")
     lease = relationship("Lease", back_populates="payments")

     def __repr__(self):
          return f"<Payment(id={self.id}, amount={self.amount}, status='{self.status.value}', checkout='{self.checkout_request_id}')>"

     def append_note(self, note: str) -> None:
          self.notes = f"{self.notes}\n{note}" if self.notes else note
