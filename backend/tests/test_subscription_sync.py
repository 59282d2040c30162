# tests/test_subscription_sync.py
from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from app.core.billing_snapshot import SnapshotSource, SubscriptionSnapshot
from app.core.subscription_sync import SyncResult, apply_snapshot
from app.core.tier import SubscriptionStatus
from app.models.tenant import Tenant


def make_tenant(**overrides) -> Tenant:
    fields = dict(
        id=uuid.uuid4(),
        name="Sync Studio",
        owner_id=uuid.uuid4(),
        tier="basic",
        subscription_status="pending",
        max_artists=1,
        max_managers=1,
        extra_slots=0,
        is_active=True,
        billing_subscription_ref=None,
        billing_customer_ref=None,
        billing_state_marker=None,
        billing_state_source=None,
        current_period_end=None,
        currency=None,
    )
    fields.update(overrides)
    return Tenant(**fields)


def snap(marker: int, **overrides) -> SubscriptionSnapshot:
    fields = dict(status=SubscriptionStatus.ACTIVE, marker=marker, subscription_ref="sub_1", customer_ref="cus_1")
    fields.update(overrides)
    return SubscriptionSnapshot(**fields)


def state(tenant: Tenant) -> tuple:
    return (
        tenant.subscription_status,
        tenant.tier,
        tenant.max_artists,
        tenant.max_managers,
        tenant.extra_slots,
        tenant.current_period_end,
        tenant.billing_state_marker,
    )


def test_updates_commute_regardless_of_delivery_order():
    period_1 = datetime(2030, 1, 1, tzinfo=timezone.utc)
    period_2 = period_1 + timedelta(days=30)
    g1 = snap(100, status=SubscriptionStatus.PAST_DUE, tier="pro", current_period_end=period_1)
    g2 = snap(200, status=SubscriptionStatus.ACTIVE, tier="plus", extra_slots=2, current_period_end=period_2)

    in_order = make_tenant(billing_subscription_ref="sub_1")
    for s in (g1, g2):
        apply_snapshot(in_order, s, attach=False, overwrite_period_end=True)

    reversed_order = make_tenant(billing_subscription_ref="sub_1")
    results = [apply_snapshot(reversed_order, s, attach=False, overwrite_period_end=True) for s in (g2, g1)]

    assert results == [SyncResult.APPLIED, SyncResult.STALE]
    assert state(in_order) == state(reversed_order)
    assert reversed_order.subscription_status == "active"
    assert (reversed_order.max_artists, reversed_order.max_managers, reversed_order.extra_slots) == (4, 4, 2)


def test_redelivered_snapshot_is_stale_and_changes_nothing():
    tenant = make_tenant()
    s = snap(100, tier="pro")

    apply_snapshot(tenant, s, attach=True, overwrite_period_end=True)
    first = state(tenant)
    result = apply_snapshot(tenant, s, attach=True, overwrite_period_end=True)

    assert result is SyncResult.STALE
    assert state(tenant) == first


def test_same_second_snapshots_ordered_by_source():
    tenant = make_tenant(billing_subscription_ref="sub_1")
    deletion = snap(100, status=SubscriptionStatus.CANCELED, source=SnapshotSource.SUBSCRIPTION_DELETION)
    update = snap(100, status=SubscriptionStatus.PAST_DUE, source=SnapshotSource.SUBSCRIPTION_UPDATE)

    results = [apply_snapshot(tenant, s, attach=False, overwrite_period_end=True) for s in (deletion, update)]

    assert results == [SyncResult.APPLIED, SyncResult.STALE]
    assert tenant.subscription_status == "canceled"
    assert tenant.billing_state_source == SnapshotSource.SUBSCRIPTION_DELETION


def test_stored_marker_without_source_wins_ties():
    tenant = make_tenant(billing_subscription_ref="sub_1", billing_state_marker=100, subscription_status="active")

    result = apply_snapshot(tenant, snap(100, status=SubscriptionStatus.PAST_DUE), attach=False, overwrite_period_end=True)

    assert result is SyncResult.STALE
    assert tenant.subscription_status == "active"


def test_newer_live_subscription_is_adopted():
    tenant = make_tenant(billing_subscription_ref="sub_old", billing_state_marker=100, subscription_status="canceled")
    period = datetime(2032, 1, 1, tzinfo=timezone.utc)

    result = apply_snapshot(
        tenant,
        snap(200, subscription_ref="sub_new", current_period_end=period),
        attach=False,
        overwrite_period_end=False,
        adopt=True,
    )

    assert result is SyncResult.APPLIED
    assert tenant.billing_subscription_ref == "sub_new"
    assert tenant.current_period_end == period


def test_adoption_needs_live_and_newer_snapshot():
    tenant = make_tenant(billing_subscription_ref="sub_current", billing_state_marker=500, subscription_status="active")

    older = apply_snapshot(tenant, snap(400, subscription_ref="sub_other"), attach=False, overwrite_period_end=True, adopt=True)
    ended = apply_snapshot(
        tenant,
        snap(900, subscription_ref="sub_other", status=SubscriptionStatus.CANCELED),
        attach=False,
        overwrite_period_end=True,
        adopt=True,
    )

    assert (older, ended) == (SyncResult.FOREIGN, SyncResult.FOREIGN)
    assert tenant.billing_subscription_ref == "sub_current"


def test_attaching_new_subscription_replaces_period_end():
    old_period = datetime(2030, 6, 1, tzinfo=timezone.utc)
    tenant = make_tenant(billing_subscription_ref="sub_old", current_period_end=old_period, subscription_status="canceled")

    apply_snapshot(tenant, snap(300, subscription_ref="sub_new"), attach=True, overwrite_period_end=False)

    assert tenant.current_period_end is None


def test_new_subscription_attaches_with_lower_marker():
    # a fresh checkout resets the marker to the new subscription's events
    tenant = make_tenant(billing_subscription_ref="sub_old", billing_state_marker=500, subscription_status="canceled")

    result = apply_snapshot(tenant, snap(400, subscription_ref="sub_new"), attach=True, overwrite_period_end=False)

    assert result is SyncResult.APPLIED
    assert tenant.billing_subscription_ref == "sub_new"
    assert tenant.subscription_status == "active"
    assert tenant.billing_state_marker == 400


def test_foreign_subscription_ignored_without_attach():
    tenant = make_tenant(billing_subscription_ref="sub_current", billing_state_marker=100, subscription_status="active")

    result = apply_snapshot(
        tenant,
        snap(900, subscription_ref="sub_other", status=SubscriptionStatus.CANCELED),
        attach=False,
        overwrite_period_end=True,
    )

    assert result is SyncResult.FOREIGN
    assert tenant.subscription_status == "active"
    assert tenant.billing_state_marker == 100


def test_invoice_style_update_keeps_period_end():
    period = datetime(2031, 5, 1, tzinfo=timezone.utc)
    tenant = make_tenant(billing_subscription_ref="sub_1", current_period_end=period, subscription_status="past_due")

    apply_snapshot(tenant, snap(50), attach=False, overwrite_period_end=False)

    assert tenant.subscription_status == "active"
    assert tenant.current_period_end == period


def test_snapshot_without_items_keeps_tier_and_slots():
    tenant = make_tenant(tier="plus", extra_slots=3, max_artists=4, max_managers=4)

    apply_snapshot(tenant, snap(10), attach=True, overwrite_period_end=False)

    assert tenant.tier == "plus"
    assert tenant.extra_slots == 3
    assert (tenant.max_artists, tenant.max_managers) == (4, 4)
