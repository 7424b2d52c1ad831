"""Comparison partner resolution for a just-completed run.

Two runs are captured per week: "1" (start of week) and "7" (end of week).
Run "7" diffs against run "1" of the same week; run "1" diffs against run
"7" of the previous week. Week "01" wraps to "52" regardless of whether the
previous year had 53 weeks; stored history was produced under that rule.
"""
from __future__ import annotations

from typing import NamedTuple

from rivalwatch.paths import normalize_week

START_OF_WEEK_RUN = "1"
END_OF_WEEK_RUN = "7"
WRAPAROUND_WEEK = "52"


class Comparison(NamedTuple):
    comparison_week: str
    comparison_run_id: str


def resolve(week_number: str | int, run_id: str) -> Comparison:
    week = normalize_week(week_number)
    if str(run_id) == END_OF_WEEK_RUN:
        return Comparison(comparison_week=week, comparison_run_id=START_OF_WEEK_RUN)

    previous = int(week) - 1
    prev_week = f"{previous:02d}" if previous > 0 else WRAPAROUND_WEEK
    return Comparison(comparison_week=prev_week, comparison_run_id=END_OF_WEEK_RUN)
