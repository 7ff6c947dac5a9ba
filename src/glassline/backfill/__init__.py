"""Historical backfill: day windows, window tracking and concurrent replay."""

from glassline.backfill.windows import BackfillWindow, generate_windows, parse_instant
from glassline.backfill.tracker import BackfillTracker, WINDOW_STATUSES
from glassline.backfill.runner import BackfillRunner, WindowResult

__all__ = [
    'BackfillWindow',
    'generate_windows',
    'parse_instant',
    'BackfillTracker',
    'WINDOW_STATUSES',
    'BackfillRunner',
    'WindowResult',
]
