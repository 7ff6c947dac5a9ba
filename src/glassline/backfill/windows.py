"""Day-aligned backfill windows.

A backfill range ``[overall_start, overall_end]`` is cut at every UTC
midnight. Each window is half-open, ``[start, end)``, except the last, which
is closed at ``overall_end`` so the true end instant is copied exactly once.
The first window starts at ``overall_start`` even if that is mid-day.

Every window carries its own creation time, midnight UTC of the day it
covers, so the rows it copies age like the original data did. Window
generation is pure: nothing here reads the wall clock.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from glassline.decode import decode_time, format_time

__all__ = ['BackfillWindow', 'generate_windows', 'parse_instant']

logger = logging.getLogger(__name__)


def parse_instant(value) -> datetime:
    """Decode an ISO string, epoch number or datetime to an aware UTC datetime.

    Raises
    ------
    ValueError
        If ``value`` is not an instant.
    """
    decoded = decode_time(value)
    if not decoded.ok:
        raise ValueError(f"Not a valid instant: {value!r} ({decoded.reason})")
    return decoded.value


def _kql_datetime(value: datetime) -> str:
    return f"datetime({value.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')})"


@dataclass(frozen=True)
class BackfillWindow:
    """One window of a backfill.

    Attributes
    ----------
    index : int
        Position in the backfill, from 0.
    start, end : datetime
        Bounds of the ingestion-time filter (UTC).
    closed : bool
        True for the final window only: ``end`` is included.
    creation_time : datetime
        Midnight UTC of the day the window covers.
    """
    index: int
    start: datetime
    end: datetime
    closed: bool
    creation_time: datetime

    @property
    def day(self) -> str:
        return self.creation_time.strftime("%Y-%m-%d")

    @property
    def extent_id(self) -> str:
        """Deterministic identity; resubmitting the window reuses it."""
        return f"backfill:{format_time(self.start)}:{format_time(self.end)}"

    @property
    def label(self) -> str:
        bracket = "]" if self.closed else ")"
        return f"[{format_time(self.start)}, {format_time(self.end)}{bracket}"

    def contains(self, instant: datetime) -> bool:
        if instant < self.start:
            return False
        return instant <= self.end if self.closed else instant < self.end

    def render_command(self, table: str, cluster: str, database: str,
                       source_table: Optional[str] = None) -> str:
        """Control command that copies this window from the mirror.

        Examples
        --------
        >>> w = generate_windows("2024-03-01T12:00:00Z", "2024-03-02T06:00:00Z")[0]
        >>> print(w.render_command("Envelopes", "https://mirror", "telemetry"))
        .set-or-append async Envelopes with (creationTime="2024-03-01T00:00:00Z") <|
            cluster('https://mirror').database('telemetry').Envelopes
            | where ingestion_time() >= datetime(2024-03-01T12:00:00Z) and ingestion_time() < datetime(2024-03-02T00:00:00Z)
        """
        upper = "<=" if self.closed else "<"
        source = source_table or table
        return (
            f'.set-or-append async {table} with (creationTime="{self.day}T00:00:00Z") <|\n'
            f"    cluster('{cluster}').database('{database}').{source}\n"
            f"    | where ingestion_time() >= {_kql_datetime(self.start)}"
            f" and ingestion_time() {upper} {_kql_datetime(self.end)}"
        )


def generate_windows(overall_start, overall_end) -> List[BackfillWindow]:
    """Cut ``[overall_start, overall_end]`` into day-aligned windows.

    Parameters
    ----------
    overall_start, overall_end : datetime, str or number
        Bounds of the backfill; naive datetimes are taken as UTC.

    Returns
    -------
    list of BackfillWindow
        Contiguous, non-overlapping, in time order.

    Raises
    ------
    ValueError
        If a bound is not an instant or ``overall_end`` precedes ``overall_start``.

    Examples
    --------
    >>> windows = generate_windows("2024-03-01T12:00:00Z", "2024-03-03T18:00:00Z")
    >>> [w.day for w in windows]
    ['2024-03-01', '2024-03-02', '2024-03-03']
    """
    start = parse_instant(overall_start)
    end = parse_instant(overall_end)
    if end < start:
        raise ValueError(f"Backfill end {format_time(end)} precedes start {format_time(start)}")

    windows = []
    cursor = start
    while True:
        day = datetime(cursor.year, cursor.month, cursor.day, tzinfo=timezone.utc)
        next_day = day + timedelta(days=1)
        if next_day >= end:
            windows.append(BackfillWindow(len(windows), cursor, end, True, day))
            break
        windows.append(BackfillWindow(len(windows), cursor, next_day, False, day))
        cursor = next_day

    logger.debug("Generated %d backfill windows from %s to %s",
                 len(windows), format_time(start), format_time(end))
    return windows
