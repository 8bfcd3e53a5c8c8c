"""Lifecycle planning for recomputed signal tables.

A signal row moves candidate -> active -> retired. Each cycle the
processor hands over the keys it detected plus what is stored, and gets
back what to insert, what to refresh, and what to retire.
"""

from __future__ import annotations

from typing import Hashable, Iterable, Mapping

from insider_signals.models import LifecyclePlan


def plan_lifecycle(detected_keys: Iterable[Hashable], existing: Mapping[Hashable, bool]) -> LifecyclePlan:
    """Map this cycle's detected keys against stored rows.

    existing maps key -> is_active for rows currently in the table.

    - add: detected, not stored
    - update: detected and stored (active or previously retired)
    - retire: stored, active, not detected this cycle

    Ordering of add/update follows detection order so callers process
    candidates in the order their query returned them.
    """
    seen = set()
    add = []
    update = []
    for key in detected_keys:
        if key in seen:
            continue
        seen.add(key)
        if key in existing:
            update.append(key)
        else:
            add.append(key)

    retire = [k for k, active in existing.items() if active and k not in seen]
    return LifecyclePlan(add=add, update=update, retire=retire)
