"""Binary vs multi-outcome classification and legacy position mapping."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

_BINARY_LABEL_SETS = (
    frozenset({"yes", "no"}),
    frozenset({"up", "down"}),
)


def normalize_label(label: str) -> str:
    return label.strip().lower()


def is_binary_market(labels: Iterable[str]) -> bool:
    """True for exactly two outcomes labelled yes/no or up/down (any case/whitespace)."""
    normalized = [normalize_label(label) for label in labels]
    if len(normalized) != 2:
        return False
    return frozenset(normalized) in _BINARY_LABEL_SETS


def outcome_for_position(outcomes: Mapping[int, str], position: str) -> int | None:
    """Map a legacy position string ("yes", "no", "up", "down") to an outcome id.

    Only binary markets accept positions. Returns None when the market is not
    binary or no outcome carries the requested label.
    """
    if not is_binary_market(outcomes.values()):
        return None
    wanted = normalize_label(position)
    for outcome_id, label in outcomes.items():
        if normalize_label(label) == wanted:
            return outcome_id
    return None
