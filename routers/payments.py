# routers/payments.py
"""
Payment API.

POST /api/payments: start an M-Pesa STK push for a tenant's rent, or record
a bank, cash or other payment.
PUT /api/payments/{id}: landlord settles a pending payment by hand.
POST /api/payments/mpesa/callback: gateway result webhook. Public, signed,
and always answered with the gateway acknowledgement so it stops retrying.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from auth import Principal, get_current_principal, require_role
from database import get_session
from models import PaymentStatus, UserRole
from schemas.payment import PaymentInitiateRequest, PaymentResponse, PaymentListResponse, PaymentStatusUpdate
from services.payment_service import PaymentReconciler

router = APIRouter(prefix="/api/payments", tags=["payments"])

landlord_only = require_role(UserRole.LANDLORD)


def get_gateway(request: Request):
     """The application's M-Pesa client, created in the lifespan handler."""
     return request.app.state.mpesa_client


def get_reconciler(
     db: Session = Depends(get_session),
     gateway=Depends(get_gateway),
) -> PaymentReconciler:
     return PaymentReconciler(
          db,
          gateway,
          webhook_secret=gateway.config.webhook_secret,
          allow_unsigned_callbacks=gateway.config.allow_unsigned_callbacks,
     )


@router.post(
     "",
     response_model=PaymentResponse,
     status_code=status.HTTP_201_CREATED,
     summary="Initiate a rent payment",
)
def initiate_payment(
     body: PaymentInitiateRequest,
     reconciler: PaymentReconciler = Depends(get_reconciler),
     principal: Principal = Depends(get_current_principal),
):
     """
     Record a pending payment and push a payment prompt to the payer's phone.

     The result arrives later through the callback; poll
     ``GET /api/payments/{id}`` for the final status. A 503 means the gateway
     was unreachable and the payment has been stored as failed.
     """
     return reconciler.initiate(
          principal,
          tenant_id=body.tenant_id,
          unit_id=body.unit_id,
          amount=body.amount,
          phone_number=body.phone_number,
          description=body.description,
          payment_method=body.payment_method,
     )


@router.get("", response_model=PaymentListResponse, summary="List visible payments")
def list_payments(
     status_filter: Optional[PaymentStatus] = Query(None, alias="status"),
     unit_id: Optional[int] = Query(None, gt=0),
     page: int = Query(1, ge=1),
     page_size: int = Query(10, ge=1, le=100),
     reconciler: PaymentReconciler = Depends(get_reconciler),
     principal: Principal = Depends(get_current_principal),
):
     payments, total = reconciler.list_payments(
          principal,
          status=status_filter,
          unit_id=unit_id,
          page=page,
          page_size=page_size,
     )
     return PaymentListResponse(
          payments=[PaymentResponse.model_validate(p) for p in payments],
          total=total,
          page=page,
          page_size=page_size,
     )


@router.get("/{payment_id}", response_model=PaymentResponse, summary="Get a payment")
def get_payment(
     payment_id: int,
     reconciler: PaymentReconciler = Depends(get_reconciler),
     principal: Principal = Depends(get_current_principal),
):
     return reconciler.get_payment(principal, payment_id)


@router.put("/{payment_id}", response_model=PaymentResponse, summary="Settle a pending payment")
def update_payment_status(
     payment_id: int,
     body: PaymentStatusUpdate,
     reconciler: PaymentReconciler = Depends(get_reconciler),
     principal: Principal = Depends(landlord_only),
):
     """
     Mark a pending payment on one of the landlord's units as successful or
     failed. Payments that already left pending answer 409.
     """
     return reconciler.update_status(
          principal,
          payment_id,
          body.status,
          notes=body.notes,
          receipt_url=body.receipt_url,
     )


@router.post("/mpesa/callback", summary="M-Pesa STK push result webhook")
async def mpesa_callback(
     request: Request,
     reconciler: PaymentReconciler = Depends(get_reconciler),
):
     # Signature covers the exact bytes received
     raw_body = await request.body()
     return await run_in_threadpool(reconciler.handle_callback, dict(request.headers), raw_body)
