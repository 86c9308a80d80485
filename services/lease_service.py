# services/lease_service.py
"""
Lease Service - lease lifecycle and the one-active-lease-per-unit rule.

Every state change runs in a single transaction that also updates the unit's
occupancy status and the lease history row. The race between two landlords
(or two requests) creating a lease for the same unit is decided by the
``one_active_lease_per_unit`` unique index: the loser's insert fails with an
IntegrityError, which is reported as a ConflictError after rolling back.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from models import Lease, LeaseHistory, LeaseStatus, TenancyStatus, Unit, UnitStatus, User, UserRole

logger = logging.getLogger(__name__)

# Units in these states cannot take a new tenant
UNLETTABLE_UNIT_STATUSES = (UnitStatus.MAINTENANCE, UnitStatus.UNAVAILABLE)


class LeaseService:
     """Service class for lease lifecycle business logic."""

     # ------------------------------------------------------------------
     # Lookups
     # ------------------------------------------------------------------

     @staticmethod
     def _get_owned_unit(db: Session, unit_id: int, landlord_id: int, lock: bool = False) -> Unit:
          query = db.query(Unit).filter(Unit.id == unit_id)
          if lock:
               query = query.with_for_update()
          unit = query.first()
          # Same message for "missing" and "not yours" so ownership is not leaked
          if not unit or unit.landlord_id != landlord_id:
               raise NotFoundError("Unit not found or access denied.")
          return unit

     @staticmethod
     def _get_tenant(db: Session, tenant_id: int) -> User:
          tenant = db.query(User).filter(User.id == tenant_id, User.role == UserRole.TENANT).first()
          if not tenant:
               raise NotFoundError("Tenant not found or invalid role.")
          return tenant

     @staticmethod
     def _get_owned_lease(db: Session, lease_id: int, landlord_id: int) -> Lease:
          lease = db.query(Lease).filter(Lease.id == lease_id, Lease.landlord_id == landlord_id).first()
          if not lease:
               raise NotFoundError("Lease not found or access denied.")
          return lease

     @staticmethod
     def _lock_unit(db: Session, unit_id: int) -> Unit:
          return db.query(Unit).filter(Unit.id == unit_id).with_for_update().populate_existing().one()

     @staticmethod
     def _lock_owned_lease(db: Session, lease_id: int, landlord_id: int) -> Tuple[Lease, Unit]:
          """
          Lock a landlord's lease together with its unit.

          Locks are always taken unit first, then lease, the same order
          create_lease uses, so concurrent create/terminate/activate calls on
          one unit queue up instead of deadlocking.
          """
          lease = LeaseService._get_owned_lease(db, lease_id, landlord_id)
          unit = LeaseService._lock_unit(db, lease.unit_id)
          lease = (
               db.query(Lease)
               .filter(Lease.id == lease_id)
               .with_for_update()
               .populate_existing()
               .one()
          )
          return lease, unit

     @staticmethod
     def get_active_lease(db: Session, tenant_id: int, unit_id: int, lock: bool = False) -> Optional[Lease]:
          """
          Find the active lease binding ``tenant_id`` to ``unit_id``.

          With ``lock=True`` the unit row and then the lease row stay locked
          until the caller's transaction ends, so a concurrent termination
          waits for it. The unit must exist.
          """
          query = db.query(Lease).filter(
               Lease.tenant_id == tenant_id,
               Lease.unit_id == unit_id,
               Lease.status == LeaseStatus.ACTIVE,
          )
          if lock:
               LeaseService._lock_unit(db, unit_id)
               query = query.with_for_update()
          return query.first()

     # ------------------------------------------------------------------
     # Validation
     # ------------------------------------------------------------------

     @staticmethod
     def _validate_terms(
          start_date: date,
          end_date: date,
          monthly_rent: Decimal,
          deposit_amount: Decimal,
          move_in_date: Optional[date],
     ) -> None:
          if end_date <= start_date:
               raise ValidationError("end_date must be after start_date")
          if Decimal(monthly_rent) <= 0:
               raise ValidationError("monthly_rent must be greater than zero")
          if Decimal(deposit_amount) < 0:
               raise ValidationError("deposit_amount cannot be negative")
          if move_in_date is not None and move_in_date > end_date:
               raise ValidationError("move_in_date cannot be after end_date")

     # ------------------------------------------------------------------
     # Transitions
     # ------------------------------------------------------------------

     @staticmethod
     def _occupy(db: Session, lease: Lease, unit: Unit) -> None:
          """Flush an ACTIVE lease, then mark the unit occupied and open its history row."""
          unit_id, tenant_id = lease.unit_id, lease.tenant_id
          try:
               db.flush()
          except IntegrityError as exc:
               db.rollback()
               logger.warning("Active lease conflict on unit %s (tenant %s): %s", unit_id, tenant_id, exc.orig)
               raise ConflictError(f"Unit {unit_id} already has an active lease.") from exc

          unit.status = UnitStatus.OCCUPIED
          db.add(LeaseHistory(
               lease_id=lease.id,
               unit_id=lease.unit_id,
               tenant_id=lease.tenant_id,
               lease_start_date=lease.move_in_date or lease.start_date,
               rent_amount=lease.monthly_rent,
               security_deposit=lease.security_deposit,
               status=TenancyStatus.ACTIVE,
          ))

     @staticmethod
     def _vacate(db: Session, lease: Lease, unit: Unit, end_date: date, history_status: TenancyStatus) -> None:
          """Free the (locked) unit and close the lease's history row."""
          if unit.status == UnitStatus.OCCUPIED:
               unit.status = UnitStatus.VACANT

          history = db.query(LeaseHistory).filter(LeaseHistory.lease_id == lease.id).first()
          if history is None:
               logger.warning("Lease %s had no history row; creating it on close", lease.id)
               history = LeaseHistory(
                    lease_id=lease.id,
                    unit_id=lease.unit_id,
                    tenant_id=lease.tenant_id,
                    lease_start_date=lease.move_in_date or lease.start_date,
                    rent_amount=lease.monthly_rent,
                    security_deposit=lease.security_deposit,
               )
               db.add(history)
          history.status = history_status
          history.lease_end_date = end_date
          history.termination_reason = lease.termination_reason

     @staticmethod
     def create_lease(
          db: Session,
          tenant_id: int,
          unit_id: int,
          landlord_id: int,
          start_date: date,
          end_date: date,
          monthly_rent: Decimal,
          deposit_amount: Decimal = Decimal("0"),
          move_in_date: Optional[date] = None,
          notes: Optional[str] = None,
          activate: bool = True,
     ) -> Lease:
          """
          Assign a tenant to a unit.

          Inserts the lease as ACTIVE and marks the unit occupied in one
          transaction. With ``activate=False`` the lease is stored as PENDING
          and the unit is left alone until ``activate_lease`` is called.

          Args:
               db: SQLAlchemy database session
               tenant_id: User ID of the tenant (role must be tenant)
               unit_id: Unit being let
               landlord_id: Caller; must own the unit's property
               start_date: First day of the term
               end_date: Last day of the term (must be after start_date)
               monthly_rent: Rent snapshot for this lease
               deposit_amount: Security deposit
               move_in_date: Optional actual move-in date
               notes: Free text
               activate: Store as ACTIVE (default) or PENDING

          Returns:
               Created Lease object

          Raises:
               ValidationError: Bad dates or amounts
               NotFoundError: Unit not found / not owned, or tenant not found
               InvalidStateError: Unit is under maintenance or unavailable
               ConflictError: The unit already has an active lease
          """
          LeaseService._validate_terms(start_date, end_date, monthly_rent, deposit_amount, move_in_date)

          try:
               unit = LeaseService._get_owned_unit(db, unit_id, landlord_id, lock=True)
               LeaseService._get_tenant(db, tenant_id)

               if unit.status in UNLETTABLE_UNIT_STATUSES:
                    raise InvalidStateError(f"Unit {unit_id} is {unit.status.value} and cannot be let.")

               lease = Lease(
                    tenant_id=tenant_id,
                    unit_id=unit_id,
                    landlord_id=landlord_id,
                    start_date=start_date,
                    end_date=end_date,
                    monthly_rent=monthly_rent,
                    security_deposit=deposit_amount,
                    move_in_date=move_in_date,
                    notes=notes,
                    status=LeaseStatus.ACTIVE if activate else LeaseStatus.PENDING,
               )
               db.add(lease)

               if activate:
                    LeaseService._occupy(db, lease, unit)
               db.commit()
          except Exception:
               if db.in_transaction():
                    db.rollback()
               raise

          logger.info(
               "Lease created: %s (unit %s, tenant %s, status %s) by landlord: %s",
               lease.id, unit_id, tenant_id, lease.status.value, landlord_id,
          )
          return lease

     @staticmethod
     def activate_lease(db: Session, lease_id: int, landlord_id: int) -> Lease:
          """
          Move a PENDING lease to ACTIVE and occupy its unit.

          Raises:
               NotFoundError: Lease not found or not owned by the landlord
               InvalidStateError: Lease is not pending, or the unit cannot be let
               ConflictError: The unit already has an active lease
          """
          try:
               lease, unit = LeaseService._lock_owned_lease(db, lease_id, landlord_id)
               if unit.status in UNLETTABLE_UNIT_STATUSES:
                    raise InvalidStateError(f"Unit {unit.id} is {unit.status.value} and cannot be let.")

               lease.transition_to(LeaseStatus.ACTIVE)
               LeaseService._occupy(db, lease, unit)
               db.commit()
          except Exception:
               if db.in_transaction():
                    db.rollback()
               raise

          logger.info("Lease activated: %s by landlord: %s", lease.id, landlord_id)
          return lease

     @staticmethod
     def terminate_lease(
          db: Session,
          lease_id: int,
          landlord_id: int,
          reason: Optional[str] = None,
          move_out_date: Optional[date] = None,
     ) -> Lease:
          """
          Terminate an active lease and free its unit.

          The lease row is locked for the duration of the transaction, which
          makes termination wait for any payment initiation holding the same
          lease.

          Args:
               db: SQLAlchemy database session
               lease_id: Lease to terminate
               landlord_id: Caller; must be the lease's landlord
               reason: Optional termination reason
               move_out_date: Defaults to today

          Returns:
               The terminated Lease

          Raises:
               NotFoundError: Lease not found or not owned by the landlord
               InvalidStateError: Lease is not active
          """
          try:
               lease, unit = LeaseService._lock_owned_lease(db, lease_id, landlord_id)
               if lease.status != LeaseStatus.ACTIVE:
                    raise InvalidStateError("Only active leases can be terminated.")

               lease.transition_to(LeaseStatus.TERMINATED)
               lease.move_out_date = move_out_date or date.today()
               lease.termination_reason = reason
               LeaseService._vacate(db, lease, unit, lease.move_out_date, TenancyStatus.TERMINATED)
               db.commit()
          except Exception:
               if db.in_transaction():
                    db.rollback()
               raise

          logger.info("Lease terminated: %s by landlord: %s (reason: %s)", lease.id, landlord_id, reason)
          return lease

     @staticmethod
     def expire_leases(db: Session, as_of: Optional[date] = None) -> List[Lease]:
          """
          Expire every active lease whose end date has passed.

          Safe to run repeatedly and from several workers at once: only ACTIVE
          leases are selected, and rows locked by another sweep or a
          termination are skipped.

          Args:
               db: SQLAlchemy database session
               as_of: Reference date (default: today). Leases ending before it expire.

          Returns:
               List of leases moved to EXPIRED by this call
          """
          as_of = as_of or date.today()
          leases = []
          try:
               candidates = (
                    db.query(Lease.id, Lease.unit_id)
                    .filter(Lease.status == LeaseStatus.ACTIVE, Lease.end_date < as_of)
                    .order_by(Lease.id)
                    .all()
               )
               for lease_id, unit_id in candidates:
                    unit = LeaseService._lock_unit(db, unit_id)
                    lease = (
                         db.query(Lease)
                         .filter(Lease.id == lease_id, Lease.status == LeaseStatus.ACTIVE)
                         .with_for_update(skip_locked=True)
                         .populate_existing()
                         .first()
                    )
                    if lease is None:
                         # Terminated or picked up by another sweep in the meantime
                         continue
                    lease.transition_to(LeaseStatus.EXPIRED)
                    if lease.move_out_date is None:
                         lease.move_out_date = lease.end_date
                    LeaseService._vacate(db, lease, unit, lease.end_date, TenancyStatus.COMPLETED)
                    leases.append(lease)
               db.commit()
          except Exception:
               if db.in_transaction():
                    db.rollback()
               raise

          for lease in leases:
               logger.info("Lease expired: %s (unit %s, ended %s)", lease.id, lease.unit_id, lease.end_date)
          return leases

     # ------------------------------------------------------------------
     # Queries
     # ------------------------------------------------------------------

     @staticmethod
     def list_leases(
          db: Session,
          landlord_id: int,
          status: Optional[LeaseStatus] = None,
          unit_id: Optional[int] = None,
          page: int = 1,
          page_size: int = 10,
     ) -> Tuple[List[Lease], int]:
          """Paginated leases of a landlord, newest first. Returns (leases, total)."""
          query = db.query(Lease).filter(Lease.landlord_id == landlord_id)
          if status is not None:
               query = query.filter(Lease.status == status)
          if unit_id is not None:
               query = query.filter(Lease.unit_id == unit_id)

          total = query.count()
          leases = (
               query.order_by(Lease.created_at.desc(), Lease.id.desc())
               .offset((page - 1) * page_size)
               .limit(page_size)
               .all()
          )
          return leases, total

     @staticmethod
     def get_current_tenant_lease(db: Session, tenant_id: int) -> Lease:
          lease = (
               db.query(Lease)
               .filter(Lease.tenant_id == tenant_id, Lease.status == LeaseStatus.ACTIVE)
               .order_by(Lease.start_date.desc())
               .first()
          )
          if not lease:
               raise NotFoundError("No active lease found.")
          return lease

     @staticmethod
     def get_unit_lease_history(db: Session, unit_id: int, landlord_id: int) -> Tuple[Unit, List[Lease]]:
          """All leases ever held on a unit, newest start date first."""
          unit = LeaseService._get_owned_unit(db, unit_id, landlord_id)
          leases = (
               db.query(Lease)
               .filter(Lease.unit_id == unit_id)
               .order_by(Lease.start_date.desc(), Lease.id.desc())
               .all()
          )
          return unit, leases
