"""Row selectors: a primary-key value or an equality-criteria mapping.

Public connection methods accept either form directly (a scalar id or a
mapping) and convert it once with ``to_selector()``. Backend code only ever
matches on ``ById`` / ``ByCriteria``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

Criteria = Mapping[str, Any]


@dataclass(frozen=True)
class ById:
    """Select the row whose primary key equals ``id``."""

    id: Any


@dataclass(frozen=True)
class ByCriteria:
    """Select every row matching all field = value pairs."""

    criteria: Mapping[str, Any] = field(default_factory=dict)


Selector = ById | ByCriteria


def to_selector(id_or_criteria: Selector | Criteria | Any) -> Selector:
    """Wrap a bare id or criteria mapping in its selector type."""
    if isinstance(id_or_criteria, ById | ByCriteria):
        return id_or_criteria
    if isinstance(id_or_criteria, Mapping):
        return ByCriteria(dict(id_or_criteria))
    if id_or_criteria is None:
        raise ValueError("id_or_criteria must not be None")
    return ById(id_or_criteria)
