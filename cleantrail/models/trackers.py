"""Pydantic models for tracker statistics and rule-engine entries."""

from __future__ import annotations

import pydantic

from cleantrail.utils.serialization import snake_to_camel


class TrackerRecord(pydantic.BaseModel):
    """Block statistics for one registrable domain that has an installed rule."""

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)

    count: int = pydantic.Field(default=0, ge=0)
    first_blocked: int = 0
    last_seen: int = 0
    total_time_saved_ms: int = 0
    category: str | None = None

    def record_block(self, now_ms: int, time_saved_ms: int) -> TrackerRecord:
        """Return a copy updated for one more blocked request."""
        return self.model_copy(
            update={
                "count": self.count + 1,
                "first_blocked": self.first_blocked or now_ms,
                "last_seen": max(self.last_seen, now_ms),
                "total_time_saved_ms": self.total_time_saved_ms + time_saved_ms,
            }
        )


class PendingTrackerRecord(pydantic.BaseModel):
    """Observation statistics for a domain, independent of enforcement."""

    model_config = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)

    count: int = pydantic.Field(default=0, ge=0)
    first_seen: int = 0
    last_seen: int = 0
    categories: list[str] = pydantic.Field(default_factory=list)

    def record_observation(self, now_ms: int, categories: list[str]) -> PendingTrackerRecord:
        """Return a copy updated for one more observed match.

        Categories are a set union kept in first-seen order.
        """
        merged = list(self.categories)
        for category in categories:
            if category not in merged:
                merged.append(category)
        return self.model_copy(
            update={
                "count": self.count + 1,
                "first_seen": self.first_seen or now_ms,
                "last_seen": max(self.last_seen, now_ms),
                "categories": merged,
            }
        )


class BlockRule(pydantic.BaseModel):
    """A declarative block rule handed to the network rule engine."""

    model_config = pydantic.ConfigDict(frozen=True)

    id: int
    priority: int
    match_pattern: str
    resource_types: tuple[str, ...]

    @classmethod
    def for_domain(cls, rule_id: int, domain: str, *, priority: int, resource_types: tuple[str, ...]) -> BlockRule:
        return cls(id=rule_id, priority=priority, match_pattern=f"||{domain}^", resource_types=resource_types)


class RuleMatch(pydantic.BaseModel):
    """A blocked or observed request reported by the rule engine."""

    url: str
    rule_id: int | None = None
    tab_id: int | None = None
    categories: list[str] = pydantic.Field(default_factory=list)


class ActiveRuleSet(pydantic.BaseModel):
    """Domains currently enforced, with the rule id each one was given."""

    model_config = pydantic.ConfigDict(frozen=True)

    rule_ids: dict[str, int] = pydantic.Field(default_factory=dict)

    @property
    def domains(self) -> frozenset[str]:
        return frozenset(self.rule_ids)

    def __contains__(self, domain: object) -> bool:
        return domain in self.rule_ids

    def __len__(self) -> int:
        return len(self.rule_ids)
