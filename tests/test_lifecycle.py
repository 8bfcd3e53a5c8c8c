from insider_signals.compute.lifecycle import plan_lifecycle


def test_plan_splits_add_update_retire() -> None:
    existing = {1: True, 2: True, 3: False}
    plan = plan_lifecycle([2, 3, 4], existing)
    assert plan.add == [4]
    assert plan.update == [2, 3]
    assert plan.retire == [1]


def test_plan_ignores_duplicates_and_keeps_order() -> None:
    plan = plan_lifecycle([(1, "2026-03-09"), (2, "2026-03-08"), (1, "2026-03-09")], {})
    assert plan.add == [(1, "2026-03-09"), (2, "2026-03-08")]
    assert plan.update == []
    assert plan.retire == []


def test_plan_never_retires_already_inactive_rows() -> None:
    plan = plan_lifecycle([], {7: False, 8: True})
    assert plan.retire == [8]
