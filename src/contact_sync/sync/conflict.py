"""Last-writer-wins conflict resolution between the two sides.

A pure function of its inputs: the same timestamps, inbound side and
tie-break policy always produce the same decision.

Rules:
- Both timestamps known: the later one wins; the reason carries the delta.
- Exactly equal: the tie-break policy decides (inbound by default).
- Only one known: that side wins.
- Neither known: the tie-break policy decides.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from src.contact_sync.schemas import ConflictDecision, Side, TieBreak
from src.contact_sync.sync.field_mapping import first_non_empty, path

MODIFIED_AT_EXTRACTORS = {
    Side.A: (
        path("_updatedDate"),
        path("updatedDate"),
        path("info", "_updatedDate"),
        path("updatedAt"),
    ),
    Side.B: (
        path("properties", "hs_lastmodifieddate"),
        path("properties", "lastmodifieddate"),
        path("updatedAt"),
        path("hs_lastmodifieddate"),
    ),
}


def extract_modified_at(raw: Mapping[str, Any] | None, side: Side) -> str | None:
    """Raw last-modified value from a record of either side, if it carries one."""
    if not raw:
        return None
    return first_non_empty(raw, MODIFIED_AT_EXTRACTORS[side]) or None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a modification timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (``Z`` suffix allowed) and epoch
    milliseconds as int or numeric string. Anything else returns None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _from_epoch_ms(value)
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return _from_epoch_ms(int(text))
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _from_epoch_ms(value: float) -> datetime | None:
    try:
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _tie_winner(inbound_side: Side, tie_break: TieBreak) -> Side:
    if tie_break == TieBreak.SIDE_A:
        return Side.A
    if tie_break == TieBreak.SIDE_B:
        return Side.B
    return inbound_side


def resolve_conflict(
    side_a_timestamp: Any,
    side_b_timestamp: Any,
    inbound_side: Side,
    tie_break: TieBreak = TieBreak.INBOUND,
) -> ConflictDecision:
    """Decide which side's version of a contact should win.

    Args:
        side_a_timestamp: Side A's last-modified time (any parseable form).
        side_b_timestamp: Side B's last-modified time (any parseable form).
        inbound_side: The side whose change triggered this sync.
        tie_break: Policy for equal or entirely missing timestamps.

    Returns:
        ConflictDecision with the winning side, a human-readable reason and
        both parsed timestamps.
    """
    ts_a = parse_timestamp(side_a_timestamp)
    ts_b = parse_timestamp(side_b_timestamp)

    if ts_a is None and ts_b is None:
        winner = _tie_winner(inbound_side, tie_break)
        reason = f"no timestamps available, {winner.value} wins by {tie_break.value} tie-break"
    elif ts_a is None:
        winner = Side.B
        reason = "side_a timestamp unavailable, side_b wins"
    elif ts_b is None:
        winner = Side.A
        reason = "side_b timestamp unavailable, side_a wins"
    elif ts_a == ts_b:
        winner = _tie_winner(inbound_side, tie_break)
        reason = f"timestamps equal, {winner.value} wins by {tie_break.value} tie-break"
    else:
        delta_ms = round(abs((ts_a - ts_b).total_seconds()) * 1000)
        winner = Side.A if ts_a > ts_b else Side.B
        reason = f"{winner.value} is newer by {delta_ms}ms"

    return ConflictDecision(
        winner=winner,
        reason=reason,
        side_a_timestamp=ts_a,
        side_b_timestamp=ts_b,
    )
