# routers/leases.py
"""
Lease API routes.

Role-based access:
- Landlord: create, list, activate and terminate leases on own units
- Tenant: view own current lease
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from auth import Principal, require_role
from database import get_session
from models import LeaseStatus, UserRole
from schemas.lease import (
     LeaseCreate,
     LeaseTerminate,
     LeaseResponse,
     LeaseListResponse,
     LeaseHistoryResponse,
     UnitLeaseHistoryResponse,
)
from services.lease_service import LeaseService

router = APIRouter(prefix="/api/leases", tags=["leases"])

landlord_only = require_role(UserRole.LANDLORD)
tenant_only = require_role(UserRole.TENANT)


@router.post(
     "",
     response_model=LeaseResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Create a lease",
)
def create_lease(
     body: LeaseCreate,
     db: Session = Depends(get_session),
     principal: Principal = Depends(landlord_only),
):
     """
     Assign a tenant to one of the landlord's units.

     Returns 409 with code ``conflict`` when the unit already has an active
     lease, including when another request took it a moment earlier.
     """
     return LeaseService.create_lease(
          db,
          tenant_id=body.tenant_id,
          unit_id=body.unit_id,
          landlord_id=principal.id,
          start_date=body.start_date,
          end_date=body.end_date,
          monthly_rent=body.monthly_rent,
          deposit_amount=body.security_deposit,
          move_in_date=body.move_in_date,
          notes=body.notes,
          activate=body.activate,
     )


@router.get("", response_model=LeaseListResponse, summary="List the landlord's leases")
def list_leases(
     status_filter: Optional[LeaseStatus] = Query(None, alias="status"),
     unit_id: Optional[int] = Query(None, gt=0),
     page: int = Query(1, ge=1),
     page_size: int = Query(10, ge=1, le=100),
     db: Session = Depends(get_session),
     principal: Principal = Depends(landlord_only),
):
     leases, total = LeaseService.list_leases(
          db,
          landlord_id=principal.id,
          status=status_filter,
          unit_id=unit_id,
          page=page,
          page_size=page_size,
     )
     return LeaseListResponse(
          leases=[LeaseResponse.model_validate(lease) for lease in leases],
          total=total,
          page=page,
          page_size=page_size,
     )


@router.get("/tenant/current", response_model=LeaseResponse, summary="Current tenant's active lease")
def get_current_lease(
     db: Session = Depends(get_session),
     principal: Principal = Depends(tenant_only),
):
     return LeaseService.get_current_tenant_lease(db, principal.id)


@router.get(
     "/unit/{unit_id}/history",
     response_model=UnitLeaseHistoryResponse,
     summary="Lease history of a unit",
)
def get_unit_history(
     unit_id: int,
     db: Session = Depends(get_session),
     principal: Principal = Depends(landlord_only),
):
     unit, leases = LeaseService.get_unit_lease_history(db, unit_id, principal.id)
     return UnitLeaseHistoryResponse(
          unit_id=unit.id,
          unit_name=unit.name,
          leases=[LeaseResponse.model_validate(lease) for lease in leases],
          history=[LeaseHistoryResponse.model_validate(lease.history) for lease in leases if lease.history],
     )


@router.put("/{lease_id}/terminate", response_model=LeaseResponse, summary="Terminate an active lease")
def terminate_lease(
     lease_id: int,
     body: Optional[LeaseTerminate] = None,
     db: Session = Depends(get_session),
     principal: Principal = Depends(landlord_only),
):
     body = body or LeaseTerminate()
     return LeaseService.terminate_lease(
          db,
          lease_id,
          landlord_id=principal.id,
          reason=body.reason,
          move_out_date=body.move_out_date,
     )


@router.put("/{lease_id}/activate", response_model=LeaseResponse, summary="Activate a pending lease")
def activate_lease(
     lease_id: int,
     db: Session = Depends(get_session),
     principal: Principal = Depends(landlord_only),
):
     return LeaseService.activate_lease(db, lease_id, principal.id)
