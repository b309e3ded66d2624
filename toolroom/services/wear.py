"""
Wear & priority calculations.

Pure functions over plain numbers with no session or Flask access. The report
service (``wear_service``) gathers the usage data and calls these.

Near-expiry threshold:
    Usage quantities of every SN are laid out in SN order. For an SN X the
    window is every quantity belonging to an SN <= X (all of X's own
    entries included). With ``avg``/``stddev`` of that window and ``n`` its
    size::

        threshold = trunc(age - (avg + 1.96 * stddev / sqrt(n)))

    i.e. the age minus the upper bound of a 95% confidence interval on the
    per-event consumption. Erratic consumption widens the margin so the SN
    is flagged earlier.
"""

import math
import statistics
from dataclasses import dataclass

Z_95 = 1.96

PRIORITY_EXPIRED = "1"
PRIORITY_NEAR_EXPIRY = "2"
PRIORITY_GOOD = "3"

PRIORITY_LABELS = {
    PRIORITY_EXPIRED: "expired",
    PRIORITY_NEAR_EXPIRY: "near_expiry",
    PRIORITY_GOOD: "good",
}


@dataclass(frozen=True)
class UsageWindow:
    """Cumulative statistics of the usage window ending at one SN."""

    count: int
    avg: float
    stddev: float

    @property
    def margin(self) -> float:
        if self.count <= 0:
            return 0.0
        return self.avg + Z_95 * (self.stddev / math.sqrt(self.count))


def total_used(quantities) -> int:
    """Sum of the positive quantities; zero and negative events are ignored."""
    return sum(q for q in quantities if q and q > 0)


def running_windows(usage_by_sn: dict) -> dict:
    """Return ``{sn: UsageWindow}`` for every SN with at least one quantity.

    ``usage_by_sn`` maps SN → iterable of positive quantities. SNs are
    visited in ascending string order and each window covers all quantities
    seen so far, the current SN's entries included. The standard deviation
    is the sample deviation; a single observation has a deviation of 0.
    """
    windows = {}
    seen = []
    for sn in sorted(usage_by_sn):
        quantities = [q for q in usage_by_sn[sn] if q and q > 0]
        if not quantities:
            continue
        seen.extend(quantities)
        stddev = statistics.stdev(seen) if len(seen) > 1 else 0.0
        windows[sn] = UsageWindow(
            count=len(seen),
            avg=statistics.fmean(seen),
            stddev=stddev,
        )
    return windows


def near_expiry_threshold(age: int, used: int, window: UsageWindow | None) -> int:
    """Usage-adjusted cutoff below which remaining life counts as near expiry.

    - zero budget → 0 (never near expiry, only expired or good)
    - no usage    → the full age (no margin subtracted)
    - otherwise   → age minus the window margin, truncated toward zero
    """
    age = age or 0
    if age == 0:
        return 0
    if not used or window is None:
        return age
    return int(age - window.margin)


def remaining(age: int, used: int | None) -> int:
    """Remaining life, clamped at 0. Unknown usage leaves the full age."""
    age = age or 0
    if used is None:
        return age
    return max(0, age - used)


def classify_priority(remain: int, threshold: int, used: int | None) -> str:
    """Return "1" expired, "2" near expiry or "3" good.

    An SN without recorded usage is good whatever its budget.
    """
    if not used:
        return PRIORITY_GOOD
    if remain <= 0:
        return PRIORITY_EXPIRED
    if remain <= threshold:
        return PRIORITY_NEAR_EXPIRY
    return PRIORITY_GOOD


def assess(age: int, quantities, window: UsageWindow | None = None) -> dict:
    """Compute used / remain / threshold / priority for one SN.

    Convenience wrapper used by tests and by single-SN lookups; when no
    shared ``window`` is given the SN's own quantities form the window.
    """
    positive = [q for q in quantities if q and q > 0]
    used = total_used(positive)
    if window is None and positive:
        window = running_windows({"_": positive})["_"]
    remain = remaining(age, used)
    threshold = near_expiry_threshold(age, used, window)
    return {
        "age": age or 0,
        "used": used,
        "remain": remain,
        "near_expiry_threshold": threshold,
        "priority": classify_priority(remain, threshold, used),
    }
