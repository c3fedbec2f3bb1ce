"""
Sample identity - human-readable, sortable sample ids.

Format: SMP-YYMM-NNNNN. Each month draws from its own counter, which the
storage layer hands out atomically, so the number restarts at 1 every
month and ids of a month sort in creation order.
"""

from datetime import datetime

from waterlab.config import SAMPLE_ID_PREFIX, SAMPLE_ID_SEQUENCE_WIDTH, SAMPLE_SEQUENCE_NAME

MAX_SEQUENCE = 10 ** SAMPLE_ID_SEQUENCE_WIDTH - 1


def sequence_name(created_at: datetime) -> str:
    """Counter name for the month of created_at, e.g. "sample-2503"."""
    return f"{SAMPLE_SEQUENCE_NAME}-{created_at.strftime('%y%m')}"


def generate_sample_id(created_at: datetime, sequence: int) -> str:
    """
    Builds the sample id for the given creation time and sequence number.

    Raises:
        ValueError: If sequence is not a positive integer or needs more
            digits than the id format holds.
    """
    if isinstance(sequence, bool) or not isinstance(sequence, int) or sequence < 1:
        raise ValueError(f"Sequence must be a positive integer, got {sequence!r}")
    if sequence > MAX_SEQUENCE:
        # Fixed width keeps ids of a month in sort order
        raise ValueError(f"Sequence {sequence} exceeds {MAX_SEQUENCE} for one month")

    period = created_at.strftime("%y%m")
    return f"{SAMPLE_ID_PREFIX}-{period}-{sequence:0{SAMPLE_ID_SEQUENCE_WIDTH}d}"
