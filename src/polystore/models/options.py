"""Query and index options accepted by every connection."""

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

SortDirection = Literal[1, -1]


class FindOptions(BaseModel):
    """Paging and ordering for find_all() / find_one()."""

    model_config = ConfigDict(frozen=True)

    limit: int | None = Field(default=None, ge=1)
    offset: int | None = Field(default=None, ge=0)
    sort: dict[str, SortDirection] = Field(default_factory=dict)

    @field_validator("sort", mode="before")
    @classmethod
    def _normalize_sort(cls, value: Any) -> Any:
        """Accept ``"asc"``/``"desc"`` as well as ``1``/``-1``."""
        if not isinstance(value, Mapping):
            return value
        normalized: dict[str, Any] = {}
        for field, direction in value.items():
            if isinstance(direction, str):
                lowered = direction.lower()
                if lowered in ("asc", "ascending"):
                    direction = 1
                elif lowered in ("desc", "descending"):
                    direction = -1
            normalized[field] = direction
        return normalized

    @classmethod
    def coerce(cls, options: "FindOptions | Mapping[str, Any] | None") -> "FindOptions":
        """Return options as a FindOptions, validating plain mappings."""
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        return cls.model_validate(dict(options))


class IndexOptions(BaseModel):
    """Options for create_index()."""

    model_config = ConfigDict(frozen=True)

    name: str | None = None
    unique: bool = False

    @classmethod
    def coerce(cls, options: "IndexOptions | Mapping[str, Any] | None") -> "IndexOptions":
        """Return options as an IndexOptions, validating plain mappings."""
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        return cls.model_validate(dict(options))

    def index_name(self, table: str, columns: list[str]) -> str:
        """Return the explicit name, or ``idx_<table>_<col1_col2...>``."""
        return self.name or f"idx_{table}_{'_'.join(columns)}"
