# services/payment_service.py
"""
Payment Reconciler - rent payments through M-Pesa STK push.

A payment goes through two independent requests:

1. ``initiate``: checks the payer has an active lease on the unit, records a
   PENDING payment, asks the gateway to push a prompt to the payer's phone and
   stores the checkout request id the gateway hands back.
2. ``handle_callback``: the gateway later posts the result. The callback is
   authenticated, parsed, matched to exactly one PENDING payment by checkout
   request id and applied with a guarded UPDATE, so duplicate or concurrent
   deliveries change the payment at most once.

Bank, cash and other payments skip the gateway. They stay PENDING until the
landlord settles them with ``update_status``, which uses the same guarded
UPDATE so a payment leaves PENDING only once.

The gateway is always answered with the fixed acknowledgement; anything wrong
with a callback is logged, never returned.
"""
import json
import logging
import secrets
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from auth import Principal
from errors import (
     AppError,
     AuthenticityError,
     InvalidStateError,
     NotFoundError,
     PermissionDeniedError,
     UpstreamUnavailableError,
     ValidationError,
)
from models import Payment, PaymentMethod, PaymentStatus, Property, Unit, User, UserRole
from services.lease_service import LeaseService
from services.mpesa_client import normalize_phone_number, verify_signature
from services.reconciliation import ACK, PaymentState, parse_callback, reconcile

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Rent payment"


def generate_transaction_ref() -> str:
     return f"RNT_{int(time.time() * 1000)}_{secrets.token_hex(4).upper()}"


def _ack() -> dict:
     return dict(ACK)


class PaymentReconciler:
     """
     Args:
          db: Session for this request.
          gateway: Object with ``initiate_payment(amount, phone_number,
               account_reference, description)`` (normally MpesaClient).
          webhook_secret: Shared secret for callback signatures.
          allow_unsigned_callbacks: Accept callbacks when no secret is
               configured. Development only.
     """

     def __init__(
          self,
          db: Session,
          gateway,
          webhook_secret: Optional[str] = None,
          allow_unsigned_callbacks: bool = False,
     ):
          self.db = db
          self.gateway = gateway
          self.webhook_secret = webhook_secret
          self.allow_unsigned_callbacks = allow_unsigned_callbacks

     # ------------------------------------------------------------------
     # Initiation
     # ------------------------------------------------------------------

     @staticmethod
     def _parse_amount(amount) -> Decimal:
          try:
               value = Decimal(str(amount))
          except (InvalidOperation, ValueError):
               raise ValidationError("Amount must be a number.")
          if not value.is_finite() or value < 1:
               raise ValidationError("Amount must be at least 1.")
          return value.quantize(Decimal("0.01"))

     def _authorize_initiate(self, principal: Principal, tenant_id: int, unit: Unit) -> None:
          if principal.is_admin:
               return
          if principal.is_tenant and principal.id == tenant_id:
               return
          if principal.is_landlord and unit.landlord_id == principal.id:
               return
          raise PermissionDeniedError("Not allowed to initiate payments for this tenant and unit.")

     def initiate(
          self,
          principal: Principal,
          tenant_id: int,
          unit_id: int,
          amount,
          phone_number: Optional[str],
          description: Optional[str] = None,
          payment_method: PaymentMethod = PaymentMethod.MPESA,
     ) -> Payment:
          """
          Start a rent payment.

          M-Pesa payments push a prompt to the payer's phone. Other methods
          are only recorded; the landlord settles them with ``update_status``.

          Returns:
               The payment, PENDING. For M-Pesa its checkout request id is set.

          Raises:
               ValidationError: Bad amount or phone number
               NotFoundError: Tenant or unit does not exist
               PermissionDeniedError: Caller may not pay for this tenant/unit
               InvalidStateError: No active lease binds the tenant to the unit
               UpstreamUnavailableError: Gateway failed; the payment is stored
                    as FAILED with a note
          """
          db = self.db
          value = self._parse_amount(amount)
          payment_method = PaymentMethod(payment_method)
          is_mpesa = payment_method == PaymentMethod.MPESA

          tenant = db.query(User).filter(User.id == tenant_id, User.role == UserRole.TENANT).first()
          if not tenant:
               raise NotFoundError("Tenant not found.")
          unit = db.query(Unit).filter(Unit.id == unit_id).first()
          if not unit:
               raise NotFoundError("Unit not found.")
          self._authorize_initiate(principal, tenant_id, unit)

          if is_mpesa:
               phone = normalize_phone_number(phone_number or tenant.phone or "")
          else:
               phone = normalize_phone_number(phone_number) if phone_number else None

          try:
               # Unit then lease stay locked until the pending payment is committed
               lease = LeaseService.get_active_lease(db, tenant_id, unit_id, lock=True)
               if lease is None:
                    raise InvalidStateError("No active lease found for this tenant and unit.")

               payment = Payment(
                    tenant_id=tenant_id,
                    unit_id=unit_id,
                    lease_id=lease.id,
                    amount=value,
                    phone_number=phone,
                    payment_method=payment_method,
                    status=PaymentStatus.PENDING,
                    transaction_ref=generate_transaction_ref(),
                    notes=None if is_mpesa else description,
               )
               db.add(payment)
               db.commit()
          except Exception:
               db.rollback()
               raise

          logger.info(
               "Payment %s (%s) created for lease %s (%s)",
               payment.id,
               payment_method.value,
               lease.id,
               payment.transaction_ref,
          )
          if not is_mpesa:
               return payment

          try:
               result = self.gateway.initiate_payment(
                    amount=value,
                    phone_number=phone,
                    account_reference=f"UNIT{unit_id}",
                    description=description or DEFAULT_DESCRIPTION,
               )
               payment.merchant_request_id = result.merchant_request_id
               payment.checkout_request_id = result.checkout_request_id
               db.commit()
          except Exception as exc:
               db.rollback()
               reason = exc.message if isinstance(exc, AppError) else f"{type(exc).__name__}: {exc}"
               self._mark_initiation_failed(payment, reason)
               if isinstance(exc, AppError):
                    raise
               raise UpstreamUnavailableError("Failed to initiate M-Pesa payment") from exc

          logger.info(
               "Payment %s awaiting confirmation (checkout=%s)",
               payment.id,
               result.checkout_request_id,
          )
          return payment

     def _mark_initiation_failed(self, payment: Payment, reason: str) -> None:
          db = self.db
          payment.merchant_request_id = None
          payment.checkout_request_id = None
          payment.status = PaymentStatus.FAILED
          payment.completed_at = datetime.utcnow()
          payment.append_note(f"Gateway request failed: {reason}")
          db.commit()
          logger.error("STK push for payment %s failed: %s", payment.id, reason)

     # ------------------------------------------------------------------
     # Manual settlement
     # ------------------------------------------------------------------

     def update_status(
          self,
          principal: Principal,
          payment_id: int,
          status: PaymentStatus,
          notes: Optional[str] = None,
          receipt_url: Optional[str] = None,
     ) -> Payment:
          """
          Settle a pending payment by hand (bank, cash, or an M-Pesa payment
          whose result never arrived).

          Raises:
               PermissionDeniedError: Caller is not a landlord
               ValidationError: ``status`` is not SUCCESSFUL or FAILED
               NotFoundError: Payment missing or on another landlord's unit
               InvalidStateError: Payment is no longer pending
          """
          if not principal.is_landlord:
               raise PermissionDeniedError("Only landlords can update payment status.")
          status = PaymentStatus(status)
          if not status.is_terminal:
               raise ValidationError("Payment status can only be set to successful or failed.")

          db = self.db
          payment = self._visible_payments(principal).filter(Payment.id == payment_id).first()
          if not payment:
               raise NotFoundError("Payment not found or access denied.")

          note = f"Marked {status.value} by landlord {principal.id}"
          if notes:
               note = f"{note}: {notes}"
          values = {
               Payment.status: status,
               Payment.notes: f"{payment.notes}\n{note}" if payment.notes else note,
               Payment.completed_at: datetime.utcnow(),
          }
          if status == PaymentStatus.SUCCESSFUL:
               values[Payment.settled_amount] = payment.amount
          if receipt_url:
               values[Payment.receipt_url] = receipt_url

          try:
               updated = (
                    db.query(Payment)
                    .filter(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING)
                    .update(values, synchronize_session=False)
               )
               if updated != 1:
                    db.rollback()
                    db.refresh(payment)
                    raise InvalidStateError(f"Payment is already {payment.status.value}.")
               db.commit()
          except InvalidStateError:
               raise
          except Exception:
               db.rollback()
               raise

          db.refresh(payment)
          logger.info("Payment %s marked %s by landlord %s", payment.id, status.value, principal.id)
          return payment


     # ------------------------------------------------------------------
     # Callback
     # ------------------------------------------------------------------

     def _verify_authenticity(self, headers: Mapping[str, str], raw_body: bytes) -> None:
          if not self.webhook_secret:
               if self.allow_unsigned_callbacks:
                    logger.warning("M-Pesa webhook secret not configured; accepting unsigned callback")
                    return
               raise AuthenticityError("M-Pesa webhook secret not configured")
          if not verify_signature(self.webhook_secret, headers, raw_body):
               raise AuthenticityError("Invalid M-Pesa callback signature")

     def handle_callback(self, raw_headers: Mapping[str, str], raw_body: bytes) -> dict:
          """
          Apply a gateway callback. Always returns the acknowledgement body,
          whatever happened to the callback.
          """
          try:
               self._apply_callback(raw_headers, raw_body)
          except AuthenticityError as exc:
               logger.warning("Rejected M-Pesa callback: %s", exc.message)
          except Exception:
               self.db.rollback()
               logger.exception("Error handling M-Pesa callback")
          return _ack()

     def _apply_callback(self, raw_headers: Mapping[str, str], raw_body: bytes) -> None:
          self._verify_authenticity(raw_headers, raw_body)

          try:
               result = parse_callback(json.loads(raw_body))
          except ValueError as exc:
               # json.JSONDecodeError is a ValueError
               logger.warning("Ignoring malformed M-Pesa callback: %s", exc)
               return

          db = self.db
          checkout_id = result.checkout_request_id
          payment = (
               db.query(Payment)
               .filter(Payment.checkout_request_id == checkout_id, Payment.status == PaymentStatus.PENDING)
               .first()
          )
          if payment is None:
               existing = db.query(Payment).filter(Payment.checkout_request_id == checkout_id).first()
               if existing is not None:
                    logger.info(
                         "Duplicate M-Pesa callback for payment %s (already %s)",
                         existing.id,
                         existing.status.value,
                    )
               else:
                    logger.warning("No pending payment found for M-Pesa checkout request %s", checkout_id)
               db.rollback()
               return

          state = PaymentState(
               status=payment.status,
               amount=payment.amount,
               mpesa_receipt_number=payment.mpesa_receipt_number,
               settled_amount=payment.settled_amount,
               notes=payment.notes,
          )
          outcome = reconcile(state, result)
          if not outcome.changed:
               db.rollback()
               return

          new_state = outcome.new_state
          notes = new_state.notes
          if new_state.status == PaymentStatus.SUCCESSFUL:
               if payment.lease is not None and not payment.lease.is_active:
                    # Money has moved; record it and flag for follow-up
                    notes = f"{notes}\nWarning: lease {payment.lease_id} was {payment.lease.status.value} at settlement"
                    logger.warning(
                         "Payment %s settled against %s lease %s",
                         payment.id,
                         payment.lease.status.value,
                         payment.lease_id,
                    )
               if new_state.settled_amount is not None and new_state.settled_amount != payment.amount:
                    logger.warning(
                         "Payment %s settled %s, requested %s",
                         payment.id,
                         new_state.settled_amount,
                         payment.amount,
                    )

          updated = (
               db.query(Payment)
               .filter(Payment.checkout_request_id == checkout_id, Payment.status == PaymentStatus.PENDING)
               .update(
                    {
                         Payment.status: new_state.status,
                         Payment.mpesa_receipt_number: new_state.mpesa_receipt_number,
                         Payment.settled_amount: new_state.settled_amount,
                         Payment.notes: notes,
                         Payment.completed_at: datetime.utcnow(),
                    },
                    synchronize_session=False,
               )
          )
          if updated != 1:
               db.rollback()
               logger.info("M-Pesa callback for %s lost to a concurrent delivery", checkout_id)
               return

          db.commit()
          db.expire(payment)
          logger.info("Payment %s marked as %s", payment.id, outcome.reason)

     # ------------------------------------------------------------------
     # Queries
     # ------------------------------------------------------------------

     def _visible_payments(self, principal: Principal):
          query = self.db.query(Payment)
          if principal.is_admin:
               return query
          if principal.is_tenant:
               return query.filter(Payment.tenant_id == principal.id)
          if principal.is_landlord:
               return (
                    query.join(Unit, Payment.unit_id == Unit.id)
                    .join(Property, Unit.property_id == Property.id)
                    .filter(Property.landlord_id == principal.id)
               )
          raise PermissionDeniedError("Not allowed to view payments.")

     def get_payment(self, principal: Principal, payment_id: int) -> Payment:
          payment = self._visible_payments(principal).filter(Payment.id == payment_id).first()
          if not payment:
               raise NotFoundError("Payment not found or access denied.")
          return payment

     def list_payments(
          self,
          principal: Principal,
          status: Optional[PaymentStatus] = None,
          unit_id: Optional[int] = None,
          page: int = 1,
          page_size: int = 10,
     ) -> Tuple[List[Payment], int]:
          query = self._visible_payments(principal)
          if status is not None:
               query = query.filter(Payment.status == status)
          if unit_id is not None:
               query = query.filter(Payment.unit_id == unit_id)
          total = query.count()
          payments = (
               query.order_by(Payment.created_at.desc(), Payment.id.desc())
               .offset((page - 1) * page_size)
               .limit(page_size)
               .all()
          )
          return payments, total
