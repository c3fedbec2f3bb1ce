"""
Overall status rollup - worst verdict wins.

NOT_ACCEPTABLE > PERMISSIBLE > ACCEPTABLE. Order-independent and
idempotent, so it is always safe to recompute.
"""

from typing import Iterable

from waterlab.models import ParameterSnapshot, ParameterStatus


_SEVERITY: dict[ParameterStatus, int] = {
    ParameterStatus.ACCEPTABLE: 0,
    ParameterStatus.PERMISSIBLE: 1,
    ParameterStatus.NOT_ACCEPTABLE: 2,
}


def aggregate(snapshots: Iterable[ParameterSnapshot]) -> ParameterStatus | None:
    """
    Overall verdict for a sample.

    - No snapshots at all → None (nothing measured yet)
    - Only informational or unscored snapshots → ACCEPTABLE
    - Otherwise the most severe status among affects_overall snapshots
    """
    snapshots = list(snapshots)
    if not snapshots:
        return None

    scored = [
        snapshot.status
        for snapshot in snapshots
        if snapshot.affects_overall and snapshot.status is not None
    ]
    return worst_status(scored)


def worst_status(statuses: Iterable[ParameterStatus]) -> ParameterStatus:
    """Most severe of the given statuses. ACCEPTABLE for an empty input."""
    return max(statuses, key=_SEVERITY.__getitem__, default=ParameterStatus.ACCEPTABLE)
