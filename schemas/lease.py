# schemas/lease.py
"""
Pydantic schemas for Lease API request/response validation.

Cross-field rules (end after start, move-in inside the term) are checked by
the lease service so they apply to every caller, not only the API.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict

from models.lease import LeaseStatus
from models.lease_history import TenancyStatus


class LeaseCreate(BaseModel):
     """Schema for creating a lease. ``activate=False`` stores it as pending."""
     tenant_id: int = Field(..., gt=0, description="Tenant user ID")
     unit_id: int = Field(..., gt=0, description="Unit ID (must belong to the landlord)")
     start_date: date
     end_date: date
     monthly_rent: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
     security_deposit: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
     move_in_date: Optional[date] = None
     notes: Optional[str] = None
     activate: bool = True

     model_config = ConfigDict(
          json_schema_extra={
               "example": {
                    "tenant_id": 7,
                    "unit_id": 3,
                    "start_date": "2026-01-01",
                    "end_date": "2026-12-31",
                    "monthly_rent": 25000.00,
                    "security_deposit": 25000.00,
               }
          }
     )


class LeaseTerminate(BaseModel):
     reason: Optional[str] = Field(None, max_length=1000)
     move_out_date: Optional[date] = None


class LeaseResponse(BaseModel):
     """Schema for lease response."""
     id: int
     tenant_id: int
     unit_id: int
     landlord_id: int
     start_date: date
     end_date: date
     monthly_rent: Decimal
     security_deposit: Decimal
     status: LeaseStatus
     move_in_date: Optional[date] = None
     move_out_date: Optional[date] = None
     termination_reason: Optional[str] = None
     notes: Optional[str] = None
     created_at: Optional[datetime] = None
     updated_at: Optional[datetime] = None

     model_config = ConfigDict(from_attributes=True)


class LeaseListResponse(BaseModel):
     """Schema for paginated lease list response."""
     leases: List[LeaseResponse]
     total: int
     page: int = 1
     page_size: int = 10


class LeaseHistoryResponse(BaseModel):
     id: int
     lease_id: int
     unit_id: int
     tenant_id: int
     lease_start_date: date
     lease_end_date: Optional[date] = None
     rent_amount: Decimal
     security_deposit: Decimal
     termination_reason: Optional[str] = None
     status: TenancyStatus

     model_config = ConfigDict(from_attributes=True)


class UnitLeaseHistoryResponse(BaseModel):
     unit_id: int
     unit_name: str
     leases: List[LeaseResponse]
     history: List[LeaseHistoryResponse]
