# schemas/payment.py
"""
Pydantic schemas for the payment API.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict

from models.payment import PaymentMethod, PaymentStatus


class PaymentInitiateRequest(BaseModel):
     """Request body for POST /api/payments."""

     tenant_id: int = Field(..., gt=0, description="Tenant paying the rent")
     unit_id: int = Field(..., gt=0, description="Unit the rent is for")
     amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
     payment_method: PaymentMethod = Field(
          PaymentMethod.MPESA,
          description="mpesa pushes a prompt to the phone; bank, cash and other are only recorded",
     )
     phone_number: Optional[str] = Field(
          None,
          max_length=20,
          description="M-Pesa number to prompt; defaults to the tenant's phone",
     )
     description: Optional[str] = Field(None, max_length=100)

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "tenant_id": 7,
                    "unit_id": 3,
                    "amount": 25000.00,
                    "payment_method": "mpesa",
                    "phone_number": "0712345678",
               }
          }
     )


class PaymentResponse(BaseModel):
     id: int
     tenant_id: int
     unit_id: int
     lease_id: Optional[int] = None
     amount: Decimal
     phone_number: Optional[str] = None
     payment_method: PaymentMethod = PaymentMethod.MPESA
     status: PaymentStatus
     transaction_ref: str
     merchant_request_id: Optional[str] = None
     checkout_request_id: Optional[str] = None
     mpesa_receipt_number: Optional[str] = None
     settled_amount: Optional[Decimal] = None
     receipt_url: Optional[str] = None
     notes: Optional[str] = None
     created_at: Optional[datetime] = None
     completed_at: Optional[datetime] = None

     model_config = ConfigDict(from_attributes=True)


class PaymentStatusUpdate(BaseModel):
     """Request body for PUT /api/payments/{id} (landlord settles a pending payment)."""

     status: PaymentStatus = Field(..., description="successful or failed")
     notes: Optional[str] = Field(None, max_length=500)
     receipt_url: Optional[str] = Field(None, max_length=500)

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "status": "successful",
                    "notes": "Cash received at the office",
               }
          }
     )


class PaymentListResponse(BaseModel):
     """Schema for paginated payment list response."""
     payments: List[PaymentResponse]
     total: int
     page: int = 1
     page_size: int = 10
