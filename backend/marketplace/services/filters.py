# Overview: Composable query filters (typed fragments combined with AND).

"""
List endpoints accept optional filters. Instead of pushing conditions into an
untyped list, each filter is a small fragment that either yields a SQL
condition or nothing, and FilterSet combines what is present with AND.

    filters = (
        FilterSet()
        .add(store_scope(InventoryLocation.store_id, store_ids))
        .add(equals(InventoryLevel.location_id, location_id))
        .add(search_text(term, Listing.name, ListingVariant.sku))
    )
    query = filters.apply(query)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy import and_, or_, true
from sqlalchemy.sql.elements import ColumnElement


@dataclass(frozen=True)
class FilterFragment:
    """One optional condition. `condition` is None when the filter is not set."""
    name: str
    condition: Optional[ColumnElement] = None

    @property
    def is_active(self) -> bool:
        return self.condition is not None


@dataclass
class FilterSet:
    fragments: list[FilterFragment] = field(default_factory=list)

    def add(self, fragment: FilterFragment) -> "FilterSet":
        self.fragments.append(fragment)
        return self

    @property
    def active(self) -> list[FilterFragment]:
        return [f for f in self.fragments if f.is_active]

    def condition(self) -> ColumnElement:
        conditions = [f.condition for f in self.active]
        if not conditions:
            return true()
        return and_(*conditions)

    def apply(self, query):
        active = self.active
        if not active:
            return query
        return query.filter(self.condition())


def equals(column, value: Any) -> FilterFragment:
    name = f"{column.key}="
    if value is None or value == "":
        return FilterFragment(name)
    return FilterFragment(name, column == value)


def one_of(column, values) -> FilterFragment:
    name = f"{column.key} in"
    if not values:
        return FilterFragment(name)
    return FilterFragment(name, column.in_(list(values)))


def store_scope(column, store_ids) -> FilterFragment:
    """
    Tenant scope. store_ids=None means unrestricted (admin); an empty list
    means the caller may see nothing.
    """
    if store_ids is None:
        return FilterFragment("store_scope")
    return FilterFragment("store_scope", column.in_(list(store_ids)))


def search_text(term: Optional[str], *columns) -> FilterFragment:
    """Case-insensitive substring match against any of `columns`."""
    if not term or not term.strip():
        return FilterFragment("search")
    pattern = f"%{term.strip()}%"
    return FilterFragment("search", or_(*[c.ilike(pattern) for c in columns]))
