"""Per-category rules for the unified audit engine.

The five audit categories share one implementation. What differs between them
lives here as data: which boundary scopes a template (team or organization),
which item types and frequencies a template may use, whether a run is about a
specific resident, and where notification links point.

Usage:
    from careaudit.services.category_policy import get_policy

    policy = get_policy("governance")
    scope_key = policy.scope_key(organization_id="org-1", team_id=None)
"""

from __future__ import annotations

from dataclasses import dataclass

from careaudit.core.exceptions import ValidationError
from careaudit.models.audit import AUDIT_CATEGORIES

_STANDARD_ITEM_TYPES = frozenset({"compliance", "checkbox", "notes"})
_PERIODIC_FREQUENCIES = ("monthly", "quarterly", "6months", "yearly")


@dataclass(frozen=True)
class CategoryPolicy:
    """Scope rule and vocabulary for one audit category."""

    category: str
    scope: str
    item_types: frozenset
    frequencies: tuple
    requires_resident: bool = False
    link_prefix: str = "/dashboard/careo-audit"

    @property
    def team_scoped(self) -> bool:
        return self.scope == "team"

    def scope_key(self, *, organization_id: str | None, team_id: str | None) -> str:
        """Return the boundary id templates and runs of this category are keyed by."""
        key = team_id if self.team_scoped else organization_id
        if not key:
            field = "team_id" if self.team_scoped else "organization_id"
            raise ValidationError(
                f"{field} is required for {self.category} audits",
                details={field: "required"},
            )
        return str(key)

    def validate_frequency(self, frequency: str) -> None:
        if frequency not in self.frequencies:
            raise ValidationError(
                f"Frequency '{frequency}' is not allowed for {self.category} audits",
                details={"frequency": f"one of {', '.join(self.frequencies)}"},
            )

    def validate_item_type(self, item_type: str, item_id: str) -> None:
        if item_type not in self.item_types:
            raise ValidationError(
                f"Item '{item_id}' has type '{item_type}' which {self.category} audits do not support",
                details={"items": f"item_type must be one of {', '.join(sorted(self.item_types))}"},
            )

    def run_link(self, run_id: int, resident_id: str | None = None) -> str:
        if self.requires_resident and resident_id:
            return f"{self.link_prefix}/{resident_id}/carefileaudit/{run_id}/view"
        return f"{self.link_prefix}/{self.category}/{run_id}/view"


CATEGORY_POLICIES: dict[str, CategoryPolicy] = {
    "resident": CategoryPolicy(
        category="resident",
        scope="team",
        item_types=frozenset({"compliance", "yesno"}),
        frequencies=("daily", "weekly", "monthly", "quarterly", "yearly", "adhoc"),
    ),
    "carefile": CategoryPolicy(
        category="carefile",
        scope="team",
        item_types=_STANDARD_ITEM_TYPES,
        frequencies=_PERIODIC_FREQUENCIES,
        requires_resident=True,
    ),
    "governance": CategoryPolicy(
        category="governance",
        scope="organization",
        item_types=_STANDARD_ITEM_TYPES,
        frequencies=_PERIODIC_FREQUENCIES,
    ),
    "clinical": CategoryPolicy(
        category="clinical",
        scope="organization",
        item_types=_STANDARD_ITEM_TYPES,
        frequencies=_PERIODIC_FREQUENCIES,
    ),
    "environment": CategoryPolicy(
        category="environment",
        scope="organization",
        item_types=_STANDARD_ITEM_TYPES,
        frequencies=_PERIODIC_FREQUENCIES,
    ),
}


def get_policy(category: str) -> CategoryPolicy:
    """Look up the policy for a category.

    Raises:
        ValidationError: unknown category.
    """
    policy = CATEGORY_POLICIES.get(category)
    if policy is None:
        raise ValidationError(
            f"Unknown audit category: {category}",
            details={"category": f"one of {', '.join(AUDIT_CATEGORIES)}"},
        )
    return policy
