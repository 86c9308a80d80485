"""Tests for the lease lifecycle service."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from conftest import create_lease
from errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from models import Lease, LeaseHistory, LeaseStatus, TenancyStatus, Unit, UnitStatus
from services.lease_service import LeaseService


class TestCreateLease:
    """Assigning a tenant to a unit."""

    def test_new_lease_is_active_and_occupies_unit(self, db_session, landlord, tenant, unit):
        lease = create_lease(db_session, landlord, tenant, unit, monthly_rent=Decimal("25000"))

        db_session.refresh(unit)
        assert lease.status == LeaseStatus.ACTIVE
        assert lease.monthly_rent == Decimal("25000")
        assert unit.status == UnitStatus.OCCUPIED

    def test_history_row_opened(self, db_session, active_lease):
        history = db_session.query(LeaseHistory).filter_by(lease_id=active_lease.id).one()
        assert history.status == TenancyStatus.ACTIVE
        assert history.lease_start_date == date(2024, 1, 1)
        assert history.lease_end_date is None

    def test_second_lease_on_occupied_unit_conflicts(self, db_session, landlord, tenant2, unit, active_lease):
        with pytest.raises(ConflictError):
            create_lease(db_session, landlord, tenant2, unit)

        db_session.refresh(unit)
        assert unit.status == UnitStatus.OCCUPIED
        leases = db_session.query(Lease).filter_by(unit_id=unit.id).all()
        assert [l.id for l in leases] == [active_lease.id]
        assert db_session.query(LeaseHistory).count() == 1

    def test_same_tenant_can_rent_two_units(self, db_session, landlord, tenant, unit, unit2):
        create_lease(db_session, landlord, tenant, unit)
        create_lease(db_session, landlord, tenant, unit2)
        assert db_session.query(Lease).filter_by(tenant_id=tenant.id, status=LeaseStatus.ACTIVE).count() == 2

    def test_pending_lease_leaves_unit_vacant(self, db_session, landlord, tenant, unit):
        lease = create_lease(db_session, landlord, tenant, unit, activate=False)

        db_session.refresh(unit)
        assert lease.status == LeaseStatus.PENDING
        assert unit.status == UnitStatus.VACANT
        assert db_session.query(LeaseHistory).count() == 0

    def test_unit_of_another_landlord_not_found(self, db_session, landlord, tenant, other_unit):
        with pytest.raises(NotFoundError):
            create_lease(db_session, landlord, tenant, other_unit)

    def test_unknown_tenant_not_found(self, db_session, landlord, landlord_as_tenant, unit):
        with pytest.raises(NotFoundError):
            create_lease(db_session, landlord, landlord_as_tenant, unit)

    def test_unit_under_maintenance_rejected(self, db_session, landlord, tenant, unit):
        unit.status = UnitStatus.MAINTENANCE
        db_session.commit()

        with pytest.raises(InvalidStateError):
            create_lease(db_session, landlord, tenant, unit)
        assert db_session.query(Lease).count() == 0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"end_date": date(2024, 1, 1)},
            {"end_date": date(2023, 12, 31)},
            {"monthly_rent": Decimal("0")},
            {"deposit_amount": Decimal("-1")},
            {"move_in_date": date(2025, 1, 1)},
        ],
    )
    def test_invalid_terms_rejected(self, db_session, landlord, tenant, unit, overrides):
        with pytest.raises(ValidationError):
            create_lease(db_session, landlord, tenant, unit, **overrides)
        assert db_session.query(Lease).count() == 0


@pytest.fixture
def landlord_as_tenant(landlord):
    """A user that exists but is not a tenant."""
    return landlord


class TestTerminateLease:
    """Ending a lease early."""

    def test_terminate_frees_unit(self, db_session, landlord, unit, active_lease):
        lease = LeaseService.terminate_lease(
            db_session, active_lease.id, landlord.id, reason="non-renewal", move_out_date=date(2024, 6, 30)
        )

        db_session.refresh(unit)
        assert lease.status == LeaseStatus.TERMINATED
        assert lease.termination_reason == "non-renewal"
        assert lease.move_out_date == date(2024, 6, 30)
        assert unit.status == UnitStatus.VACANT

    def test_history_row_closed(self, db_session, landlord, active_lease):
        LeaseService.terminate_lease(db_session, active_lease.id, landlord.id, reason="non-renewal")

        history = db_session.query(LeaseHistory).filter_by(lease_id=active_lease.id).one()
        assert history.status == TenancyStatus.TERMINATED
        assert history.lease_end_date == date.today()
        assert history.termination_reason == "non-renewal"

    def test_unit_can_be_let_again(self, db_session, landlord, tenant2, unit, active_lease):
        LeaseService.terminate_lease(db_session, active_lease.id, landlord.id)

        second = create_lease(db_session, landlord, tenant2, unit, start_date=date(2025, 1, 1), end_date=date(2025, 12, 31))

        db_session.refresh(unit)
        assert second.status == LeaseStatus.ACTIVE
        assert unit.status == UnitStatus.OCCUPIED
        assert db_session.query(LeaseHistory).filter_by(unit_id=unit.id).count() == 2

    def test_terminating_twice_is_invalid(self, db_session, landlord, active_lease):
        LeaseService.terminate_lease(db_session, active_lease.id, landlord.id)

        with pytest.raises(InvalidStateError):
            LeaseService.terminate_lease(db_session, active_lease.id, landlord.id)

    def test_pending_lease_cannot_be_terminated(self, db_session, landlord, tenant, unit):
        lease = create_lease(db_session, landlord, tenant, unit, activate=False)

        with pytest.raises(InvalidStateError):
            LeaseService.terminate_lease(db_session, lease.id, landlord.id)

    def test_other_landlord_gets_not_found(self, db_session, other_landlord, unit, active_lease):
        with pytest.raises(NotFoundError):
            LeaseService.terminate_lease(db_session, active_lease.id, other_landlord.id)

        db_session.refresh(unit)
        assert unit.status == UnitStatus.OCCUPIED

    def test_missing_lease_not_found(self, db_session, landlord):
        with pytest.raises(NotFoundError):
            LeaseService.terminate_lease(db_session, 9999, landlord.id)

    def test_unit_under_maintenance_keeps_status(self, db_session, landlord, unit, active_lease):
        unit.status = UnitStatus.MAINTENANCE
        db_session.commit()

        LeaseService.terminate_lease(db_session, active_lease.id, landlord.id)

        db_session.refresh(unit)
        assert unit.status == UnitStatus.MAINTENANCE


class TestActivateLease:
    """Pending -> active."""

    def test_activate_occupies_unit(self, db_session, landlord, tenant, unit):
        lease = create_lease(db_session, landlord, tenant, unit, activate=False)

        lease = LeaseService.activate_lease(db_session, lease.id, landlord.id)

        db_session.refresh(unit)
        assert lease.status == LeaseStatus.ACTIVE
        assert unit.status == UnitStatus.OCCUPIED
        assert db_session.query(LeaseHistory).filter_by(lease_id=lease.id).one().status == TenancyStatus.ACTIVE

    def test_activate_conflicts_with_existing_active_lease(self, db_session, landlord, tenant2, unit, active_lease):
        pending = create_lease(db_session, landlord, tenant2, unit, activate=False)

        with pytest.raises(ConflictError):
            LeaseService.activate_lease(db_session, pending.id, landlord.id)

        db_session.refresh(pending)
        assert pending.status == LeaseStatus.PENDING

    def test_activate_active_lease_is_invalid(self, db_session, landlord, active_lease):
        with pytest.raises(InvalidStateError):
            LeaseService.activate_lease(db_session, active_lease.id, landlord.id)


class TestExpireLeases:
    """Daily sweep of leases past their end date."""

    def test_past_end_date_expires(self, db_session, unit, active_lease):
        expired = LeaseService.expire_leases(db_session, as_of=date(2025, 1, 1))

        db_session.refresh(unit)
        assert [l.id for l in expired] == [active_lease.id]
        assert expired[0].status == LeaseStatus.EXPIRED
        assert expired[0].move_out_date == date(2024, 12, 31)
        assert unit.status == UnitStatus.VACANT

        history = db_session.query(LeaseHistory).filter_by(lease_id=active_lease.id).one()
        assert history.status == TenancyStatus.COMPLETED
        assert history.lease_end_date == date(2024, 12, 31)

    def test_lease_ending_today_is_kept(self, db_session, active_lease):
        assert LeaseService.expire_leases(db_session, as_of=date(2024, 12, 31)) == []
        db_session.refresh(active_lease)
        assert active_lease.status == LeaseStatus.ACTIVE

    def test_sweep_is_idempotent(self, db_session, active_lease):
        first = LeaseService.expire_leases(db_session, as_of=date(2025, 1, 1))
        second = LeaseService.expire_leases(db_session, as_of=date(2025, 1, 1))

        assert len(first) == 1
        assert second == []
        assert db_session.query(LeaseHistory).count() == 1

    def test_terminated_leases_are_ignored(self, db_session, landlord, active_lease):
        LeaseService.terminate_lease(db_session, active_lease.id, landlord.id)

        assert LeaseService.expire_leases(db_session, as_of=date(2025, 1, 1)) == []
        db_session.refresh(active_lease)
        assert active_lease.status == LeaseStatus.TERMINATED

    def test_only_due_leases_expire(self, db_session, landlord, tenant, tenant2, unit, unit2):
        due = create_lease(db_session, landlord, tenant, unit)
        current = create_lease(db_session, landlord, tenant2, unit2, end_date=date(2025, 6, 30))

        expired = LeaseService.expire_leases(db_session, as_of=date(2025, 1, 1))

        db_session.refresh(current)
        assert [l.id for l in expired] == [due.id]
        assert current.status == LeaseStatus.ACTIVE


class TestQueries:
    """Read-side helpers."""

    def test_list_leases_filters_and_paginates(self, db_session, landlord, tenant, tenant2, unit, unit2, other_unit, other_landlord):
        create_lease(db_session, landlord, tenant, unit)
        create_lease(db_session, landlord, tenant2, unit2, activate=False)
        create_lease(db_session, other_landlord, tenant, other_unit)

        leases, total = LeaseService.list_leases(db_session, landlord.id)
        assert total == 2
        assert all(l.landlord_id == landlord.id for l in leases)

        active, total_active = LeaseService.list_leases(db_session, landlord.id, status=LeaseStatus.ACTIVE)
        assert total_active == 1
        assert active[0].unit_id == unit.id

        page, total_paged = LeaseService.list_leases(db_session, landlord.id, page=2, page_size=1)
        assert total_paged == 2
        assert len(page) == 1

    def test_current_tenant_lease(self, db_session, tenant, active_lease):
        assert LeaseService.get_current_tenant_lease(db_session, tenant.id).id == active_lease.id

    def test_current_tenant_lease_missing(self, db_session, tenant2):
        with pytest.raises(NotFoundError):
            LeaseService.get_current_tenant_lease(db_session, tenant2.id)

    def test_unit_history_newest_first(self, db_session, landlord, tenant, tenant2, unit, active_lease):
        LeaseService.terminate_lease(db_session, active_lease.id, landlord.id)
        second = create_lease(db_session, landlord, tenant2, unit, start_date=date(2025, 1, 1), end_date=date(2025, 12, 31))

        found_unit, leases = LeaseService.get_unit_lease_history(db_session, unit.id, landlord.id)

        assert found_unit.id == unit.id
        assert [l.id for l in leases] == [second.id, active_lease.id]
        assert leases[1].history.status == TenancyStatus.TERMINATED

    def test_active_lease_lookup(self, db_session, tenant, tenant2, unit, active_lease):
        assert LeaseService.get_active_lease(db_session, tenant.id, unit.id).id == active_lease.id
        assert LeaseService.get_active_lease(db_session, tenant2.id, unit.id) is None


class TestLeaseModel:
    """Lifecycle rules on the model itself."""

    def test_transitions(self):
        lease = Lease(status=LeaseStatus.PENDING)
        assert lease.can_transition_to(LeaseStatus.ACTIVE)
        assert not lease.can_transition_to(LeaseStatus.EXPIRED)

        lease.transition_to(LeaseStatus.ACTIVE)
        lease.transition_to(LeaseStatus.EXPIRED)

        with pytest.raises(InvalidStateError):
            lease.transition_to(LeaseStatus.ACTIVE)

    def test_is_expiring(self):
        today = date(2024, 12, 1)
        lease = Lease(status=LeaseStatus.ACTIVE, start_date=date(2024, 1, 1), end_date=today + timedelta(days=10))

        assert lease.is_expiring(days_from_now=30, today=today)
        assert not lease.is_expiring(days_from_now=5, today=today)
        assert lease.duration_days == 345


class TestUnitModel:

    def test_landlord_id_follows_property(self, landlord, other_landlord, unit, other_unit):
        assert unit.landlord_id == landlord.id
        assert other_unit.landlord_id == other_landlord.id

    def test_landlord_id_without_property(self):
        assert Unit(name="Loose").landlord_id is None
