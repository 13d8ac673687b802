"""Entity resolution with graded confidence tiers.

Tiers, evaluated in order (first satisfied wins):

1. No active candidates        -> NoCandidates
2. Exact case-insensitive name -> Resolved, or AmbiguousResolved (most recent wins)
3. Substring either direction  -> FuzzyResolved when exactly one candidate matches
4. Exactly one active candidate -> SuggestedFallback (never auto-applied)
5. Otherwise                   -> NotFound with up to three suggestions
"""

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from taskchat.entities import Goal, Milestone, Project

T = TypeVar("T")

MAX_SUGGESTIONS = 3

_EPOCH = datetime.min


class ResolutionTier(str, Enum):
    """Confidence tier of a resolution outcome."""

    RESOLVED = "resolved"
    AMBIGUOUS_RESOLVED = "ambiguous_resolved"
    FUZZY_RESOLVED = "fuzzy_resolved"
    SUGGESTED_FALLBACK = "suggested_fallback"
    NOT_FOUND = "not_found"
    NO_CANDIDATES = "no_candidates"


@dataclass
class ResolutionResult(Generic[T]):
    """Outcome of resolving a name against a candidate pool.

    ``entity`` is set for the three resolved tiers and, for SuggestedFallback,
    holds the candidate being proposed. ``match_count`` is only meaningful for
    AmbiguousResolved.
    """

    tier: ResolutionTier
    query: str
    entity: T | None = None
    match_count: int = 0
    message: str | None = None
    suggestions: list[str] = field(default_factory=list)

    @property
    def is_resolved(self) -> bool:
        """True when the caller may proceed to mutation."""
        return self.tier in (
            ResolutionTier.RESOLVED,
            ResolutionTier.AMBIGUOUS_RESOLVED,
            ResolutionTier.FUZZY_RESOLVED,
        )


def _name_of(entity: Any) -> str:
    return getattr(entity, "name", "") or ""


def _is_active(entity: Any) -> bool:
    return bool(getattr(entity, "is_active", True))


def _recency_key(entity: Any) -> tuple[datetime, datetime]:
    updated = getattr(entity, "updated_at", None) or _EPOCH
    created = getattr(entity, "created_at", None) or _EPOCH
    # Compare naive and aware timestamps on equal footing
    return (_naive(updated), _naive(created))


def _naive(value: datetime) -> datetime:
    return value.replace(tzinfo=None) if value.tzinfo else value


def resolve(
    query: str,
    candidates: Iterable[T],
    *,
    kind: str = "item",
    is_active: Callable[[Any], bool] = _is_active,
) -> ResolutionResult[T]:
    """Resolve a free-text name against a candidate collection.

    Args:
        query: The name as the user typed it
        candidates: Entities exposing ``name`` (and optionally timestamps)
        kind: Entity kind used in human-readable messages ("project", "goal", ...)
        is_active: Predicate deciding pool membership

    Returns:
        ResolutionResult describing the tier reached
    """
    query = (query or "").strip()
    pool = [candidate for candidate in candidates if is_active(candidate)]

    if not pool:
        return ResolutionResult(
            tier=ResolutionTier.NO_CANDIDATES,
            query=query,
            message=f"You don't have any active {kind}s yet.",
        )

    needle = query.casefold()

    exact = [candidate for candidate in pool if _name_of(candidate).strip().casefold() == needle]
    if len(exact) == 1:
        return ResolutionResult(tier=ResolutionTier.RESOLVED, query=query, entity=exact[0], match_count=1)
    if len(exact) > 1:
        chosen = sorted(exact, key=_recency_key, reverse=True)[0]
        return ResolutionResult(
            tier=ResolutionTier.AMBIGUOUS_RESOLVED,
            query=query,
            entity=chosen,
            match_count=len(exact),
            message=(
                f"I found {len(exact)} {kind}s named \"{_name_of(chosen)}\"; "
                "I used the most recently updated one."
            ),
        )

    partial = _substring_matches(needle, pool) if needle else []
    if len(partial) == 1:
        return ResolutionResult(tier=ResolutionTier.FUZZY_RESOLVED, query=query, entity=partial[0], match_count=1)

    if len(pool) == 1:
        only = pool[0]
        return ResolutionResult(
            tier=ResolutionTier.SUGGESTED_FALLBACK,
            query=query,
            entity=only,
            message=(
                f"I couldn't find a {kind} called \"{query}\". "
                f"Did you mean \"{_name_of(only)}\"?"
            ),
            suggestions=[_name_of(only)],
        )

    suggestions = _suggest(partial, pool)
    if suggestions:
        listing = ", ".join(f"\"{name}\"" for name in suggestions)
        message = f"I couldn't find a {kind} called \"{query}\". Did you mean one of: {listing}?"
    else:
        message = f"I couldn't find a {kind} called \"{query}\"."
    return ResolutionResult(
        tier=ResolutionTier.NOT_FOUND,
        query=query,
        match_count=len(partial),
        message=message,
        suggestions=suggestions,
    )


def _substring_matches(needle: str, pool: Sequence[T]) -> list[T]:
    matches = []
    for candidate in pool:
        name = _name_of(candidate).strip().casefold()
        if not name:
            continue
        if needle in name or name in needle:
            matches.append(candidate)
    return matches


def _suggest(partial: Sequence[Any], pool: Sequence[Any]) -> list[str]:
    """Suggest up to three names, substring matches first."""
    names: list[str] = []
    for candidate in list(partial) + sorted(pool, key=_recency_key, reverse=True):
        name = _name_of(candidate)
        if name and name not in names:
            names.append(name)
        if len(names) == MAX_SUGGESTIONS:
            break
    return names


@dataclass
class ScopedMatch(Generic[T]):
    """A child entity resolution together with its owning project.

    ``project`` is None only when no project could be associated, i.e. the
    result is NotFound or NoCandidates from an unscoped search.
    """

    project: Project | None
    result: ResolutionResult[T]


def resolve_goal(query: str, projects: Sequence[Project], project: Project | None = None) -> ScopedMatch[Goal]:
    """Resolve a goal, scoped to one project or searched across all of them.

    With a project, the goal pool is that project's goals. Without one, the
    first active project whose goals resolve the name wins; if none does, the
    result is computed over every active goal of every active project.
    """
    if project is not None:
        return ScopedMatch(project=project, result=resolve(query, project.goals, kind="goal"))
    return _resolve_across(query, projects, lambda p: p.goals, kind="goal")


def resolve_milestone(
    query: str, projects: Sequence[Project], project: Project | None = None
) -> ScopedMatch[Milestone]:
    """Resolve a milestone the same way goals are resolved."""
    if project is not None:
        return ScopedMatch(project=project, result=resolve(query, project.milestones, kind="milestone"))
    return _resolve_across(query, projects, lambda p: p.milestones, kind="milestone")


def _resolve_across(
    query: str,
    projects: Sequence[Project],
    children: Callable[[Project], list[Any]],
    kind: str,
) -> ScopedMatch[Any]:
    active_projects = [p for p in projects if p.is_active]
    for candidate_project in active_projects:
        result = resolve(query, children(candidate_project), kind=kind)
        if result.tier in (ResolutionTier.RESOLVED, ResolutionTier.AMBIGUOUS_RESOLVED):
            return ScopedMatch(project=candidate_project, result=result)

    # Exact matches anywhere beat a substring match in an earlier project
    for candidate_project in active_projects:
        result = resolve(query, children(candidate_project), kind=kind)
        if result.tier == ResolutionTier.FUZZY_RESOLVED:
            return ScopedMatch(project=candidate_project, result=result)

    every_child = [child for p in active_projects for child in children(p)]
    result = resolve(query, every_child, kind=kind)
    owner = None
    if result.entity is not None:
        owner = next(p for p in active_projects if any(c is result.entity for c in children(p)))
    return ScopedMatch(project=owner, result=result)
