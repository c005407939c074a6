import threading

import pytest

from escrow.core.engine import FIRE_DISCARDED, FIRE_RELEASED
from escrow.core.errors import IllegalTransition, Unauthorized


def test_non_admin_is_rejected(engine):
    c = engine.create_and_fund(["payer", "payee"], "10", "USD")
    engine.raise_dispute(c.id, "payee", "never delivered")
    with pytest.raises(Unauthorized):
        engine.force_release(c.id, "payer")
    with pytest.raises(Unauthorized):
        engine.force_refund(c.id, "")
    assert engine.get(c.id).escrow_status == "disputed"


def test_admin_release_resolves_dispute(engine, dispatcher):
    c = engine.create_and_fund(["payer", "payee"], "10", "USD")
    engine.raise_dispute(c.id, "payer", "quality issue")
    r = engine.force_release(c.id, "admin-1")
    assert r.escrow_status == "released"
    assert r.confirmation_status == "confirmed"
    assert r.admin_override is True
    assert r.resolved_by == "admin-1"
    last = dispatcher.events[-1]
    assert last.type == "released"
    assert last.detail["admin_override"] is True
    assert last.detail["previous_status"] == "disputed"
    assert last.detail["dispute_reason"] == "quality issue"
    assert engine.get(c.id).dispute_reason is None
    assert sorted(last.recipients) == ["payee", "payer"]


def test_admin_refund_of_locked_contract_cancels_timer(engine, scheduler, clock):
    c = engine.create_and_fund(["payer", "payee"], "10", "USD")
    r = engine.force_refund(c.id, "admin-1")
    assert r.escrow_status == "refunded"
    assert r.confirmation_status == "pending"
    assert scheduler.is_armed(c.id) is False
    clock.advance(hours=100)
    assert engine.fire_auto_release(c.id) == FIRE_DISCARDED


def test_admin_on_pending_is_illegal(engine, rail):
    from escrow.core.errors import LedgerUnavailable

    rail.fail = LedgerUnavailable("rail down")
    with pytest.raises(LedgerUnavailable) as exc:
        engine.create_and_fund(["payer", "payee"], "10", "USD")
    with pytest.raises(IllegalTransition):
        engine.force_release(exc.value.contract_id, "admin-1")


def test_second_override_reports_first_resolution(engine, clock):
    c = engine.create_and_fund(["payer", "payee"], "10", "USD")
    clock.advance(hours=1)
    engine.force_release(c.id, "admin-1")
    with pytest.raises(IllegalTransition) as exc:
        engine.force_refund(c.id, "admin-1")
    assert "already released at 2026-01-01T01:00:00Z" in exc.value.message


@pytest.mark.parametrize("round_", range(10))
def test_dispute_and_auto_release_race_has_one_winner(engine, clock, dispatcher, round_):
    c = engine.create_and_fund(["payer", "payee"], "10", "USD")
    clock.advance(hours=72)
    barrier = threading.Barrier(2)
    outcome = {}

    def dispute():
        barrier.wait()
        try:
            engine.raise_dispute(c.id, "payer", "late delivery")
            outcome["dispute"] = "won"
        except IllegalTransition:
            outcome["dispute"] = "lost"

    def fire():
        barrier.wait()
        outcome["fire"] = engine.fire_auto_release(c.id)

    threads = [threading.Thread(target=dispute), threading.Thread(target=fire)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    final = engine.get(c.id)
    if outcome["dispute"] == "won":
        assert outcome["fire"] == FIRE_DISCARDED
        assert final.escrow_status == "disputed"
    else:
        assert outcome["fire"] == FIRE_RELEASED
        assert final.escrow_status == "released"
    assert len([t for t in dispatcher.types() if t in ("released", "disputed")]) == 1
