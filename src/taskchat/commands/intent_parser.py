"""Pattern classifier converting chat text to typed commands."""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

import dateparser

from taskchat.entities import EntityStatus, Priority

from .parsed import ParsedCommand, build_command

logger = logging.getLogger(__name__)

# Straight and typographic quotes
_Q = "['\"‘’“”]"
_NOT_Q = "[^'\"‘’“”]"

_PROJECT_REF = rf"(?:the\s+)?(?:project\s+)?{_Q}?(?P<project>.+?){_Q}?(?:\s+project)?"
_DUE = r"(?:\s+(?:due|by|before|on)\s+(?P<date>.+))?"
_STATUS_WORDS = (
    r"(?P<status>done|complete|completed|finished|in[\s-]progress|progress|active|ongoing|"
    r"working|planned|not\s+started|todo|to-do|on\s+hold|paused)"
)
_PRIORITY_WORDS = r"high|highest|urgent|medium|normal|low|lowest|minor"

_POLITE_PREFIX = re.compile(
    r"^(?:(?:please|kindly|hey|ok(?:ay)?)\s*,?\s+|(?:can|could|would)\s+you\s+(?:please\s+)?)+",
    re.IGNORECASE,
)
_TRAILING_PUNCTUATION = re.compile(r"[\s.!?]+$")

CONFIRM_PATTERN = re.compile(
    r"^(?:yes|yep|yeah|y|sure|confirm(?:ed)?|do it|go ahead|sounds good|ok(?:ay)?)$",
    re.IGNORECASE,
)
CANCEL_PATTERN = re.compile(r"^(?:no|nope|nah|n|cancel|never\s*mind|don'?t)$", re.IGNORECASE)

Extractor = Callable[[re.Match[str]], Any] | Any


@dataclass
class PatternEntry:
    """One matcher with the intent it yields and how to pull its fields."""

    matcher: re.Pattern[str]
    intent_tag: str
    field_extractors: dict[str, Extractor] = field(default_factory=dict)


@dataclass
class PatternFamily:
    """An ordered group of patterns tried top-to-bottom."""

    name: str
    patterns: list[PatternEntry]


def normalize_status(value: str | None) -> EntityStatus:
    """Map loose status wording to an EntityStatus.

    ``done|complete|completed`` map to Completed, ``progress|active|ongoing``
    to InProgress, ``on hold|paused`` to OnHold; anything else is Planned.
    """
    if not value:
        return EntityStatus.PLANNED
    text = value.strip().lower()
    if re.search(r"\bnot\s+started\b", text):
        return EntityStatus.PLANNED
    if re.search(r"\b(done|complete|completed|finished)\b", text):
        return EntityStatus.COMPLETED
    if re.search(r"\b(hold|paused?)\b", text):
        return EntityStatus.ON_HOLD
    if re.search(r"(progress|active|ongoing|working)", text):
        return EntityStatus.IN_PROGRESS
    return EntityStatus.PLANNED


def normalize_priority(value: str | None) -> Priority:
    """Map loose priority wording to a Priority, defaulting to Medium."""
    if not value:
        return Priority.MEDIUM
    text = value.strip().lower()
    if text in ("high", "highest", "urgent", "top", "critical"):
        return Priority.HIGH
    if text in ("low", "lowest", "minor"):
        return Priority.LOW
    return Priority.MEDIUM


_IN_N_UNITS = re.compile(r"^in\s+(\d{1,3})\s+(day|week)s?$", re.IGNORECASE)


def normalize_date(value: str | None, today: date | None = None) -> date | None:
    """Resolve a relative or absolute date phrase.

    Args:
        value: Text such as "tomorrow", "next week", "in 3 days" or "March 5"
        today: Reference date (default: the current date)

    Returns:
        The resolved date, or None when the phrase cannot be parsed
    """
    if not value:
        return None
    today = today or date.today()
    text = value.strip().lower()

    if text == "today":
        return today
    if text == "tomorrow":
        return today + timedelta(days=1)
    if text == "next week":
        return today + timedelta(days=7)
    if text == "next month":
        return today + timedelta(days=30)

    match = _IN_N_UNITS.match(text)
    if match:
        amount = int(match.group(1))
        days = amount * 7 if match.group(2).lower() == "week" else amount
        return today + timedelta(days=days)

    try:
        parsed = dateparser.parse(
            value,
            settings={
                "PREFER_DATES_FROM": "future",
                "RELATIVE_BASE": datetime.combine(today, datetime.min.time()),
            },
        )
    except Exception as e:
        logger.debug("Date parsing failed for %r: %s", value, e)
        return None

    return parsed.date() if parsed else None


def _clean(value: str | None) -> str | None:
    """Strip whitespace and stray quotes from an extracted name."""
    if value is None:
        return None
    cleaned = value.strip().strip("'\"‘’“”").strip()
    return cleaned or None


def parse_name_list(text: str | None) -> list[str]:
    """Split "a, b and c" style lists, dropping blanks and duplicates."""
    if not text:
        return []
    parts = re.split(r"\s*(?:,|;|&|\band\b)\s*", text, flags=re.IGNORECASE)
    names: list[str] = []
    seen: set[str] = set()
    for part in parts:
        name = _clean(part)
        if not name or name.casefold() in seen:
            continue
        seen.add(name.casefold())
        names.append(name)
    return names


def _p(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


class IntentParser:
    """Classify chat text against an ordered table of command families.

    Families are tried in priority order (delete, project, growth tracker,
    focus areas, goal, task, milestone); within a family the first matching
    pattern wins. Text that matches nothing yields None, which callers treat
    as a request for the conversational delegate.
    """

    def __init__(self, today_provider: Callable[[], date] = date.today) -> None:
        """Initialize the parser with the family table.

        Args:
            today_provider: Returns the reference date for relative dates
        """
        self.today_provider = today_provider

        def due(m: re.Match[str]) -> date | None:
            return normalize_date(m.group("date"), self.today_provider())

        def project(m: re.Match[str]) -> str | None:
            return _clean(m.group("project"))

        self.families: list[PatternFamily] = [
            PatternFamily(
                "project-delete",
                [
                    PatternEntry(
                        _p(rf"^(?:delete|remove|archive|drop)\s+(?:the\s+)?project\s+{_Q}?(?P<project>.+?){_Q}?$"),
                        "project.delete",
                        {"project_name": project},
                    ),
                    PatternEntry(
                        _p(rf"^(?:delete|remove|archive|drop)\s+(?:the\s+)?{_Q}?(?P<project>.+?){_Q}?\s+project$"),
                        "project.delete",
                        {"project_name": project},
                    ),
                ],
            ),
            PatternFamily(
                "project-create-update",
                [
                    PatternEntry(
                        _p(
                            rf"^rename\s+(?:the\s+)?project\s+{_Q}?(?P<project>.+?){_Q}?\s+to\s+"
                            rf"{_Q}?(?P<new_name>.+?){_Q}?$"
                        ),
                        "project.update",
                        {"project_name": project, "new_name": lambda m: _clean(m.group("new_name"))},
                    ),
                    PatternEntry(
                        _p(
                            rf"^(?:create|add|start|make)\s+(?:a\s+)?(?:new\s+)?project\s+"
                            rf"(?:called\s+|named\s+)?{_Q}(?P<project>{_NOT_Q}+){_Q}"
                            r"(?:\s+(?:for|about|to)\s+(?P<description>.+))?$"
                        ),
                        "project.create",
                        {"project_name": project, "description": lambda m: _clean(m.group("description"))},
                    ),
                    PatternEntry(
                        _p(
                            r"^(?:create|add|start|make)\s+(?:a\s+)?(?:new\s+)?project\s+"
                            r"(?:called\s+|named\s+)?(?P<project>.+?)"
                            r"(?:\s+(?:for|about)\s+(?P<description>.+))?$"
                        ),
                        "project.create",
                        {"project_name": project, "description": lambda m: _clean(m.group("description"))},
                    ),
                    PatternEntry(
                        _p(
                            r"^(?:set|change|update)\s+(?:the\s+)?priority\s+(?:of|for|on)\s+(?:the\s+)?project\s+"
                            rf"{_Q}?(?P<project>.+?){_Q}?\s+to\s+(?P<priority>{_PRIORITY_WORDS})$"
                        ),
                        "project.update",
                        {"project_name": project, "priority": lambda m: normalize_priority(m.group("priority"))},
                    ),
                    PatternEntry(
                        _p(
                            rf"^(?:set|mark|make)\s+(?:the\s+)?project\s+{_Q}?(?P<project>.+?){_Q}?\s+"
                            rf"(?:to\s+|as\s+)?(?:a\s+)?(?P<priority>{_PRIORITY_WORDS})\s+priority$"
                        ),
                        "project.update",
                        {"project_name": project, "priority": lambda m: normalize_priority(m.group("priority"))},
                    ),
                    PatternEntry(
                        _p(
                            rf"^(?:mark|set|update|move|change)\s+(?:the\s+)?project\s+{_Q}?(?P<project>.+?){_Q}?\s+"
                            rf"(?:status\s+)?(?:as|to)\s+{_STATUS_WORDS}$"
                        ),
                        "project.update",
                        {"project_name": project, "status": lambda m: normalize_status(m.group("status"))},
                    ),
                    PatternEntry(
                        _p(rf"^(?:complete|finish|close)\s+(?:the\s+)?project\s+{_Q}?(?P<project>.+?){_Q}?$"),
                        "project.update",
                        {"project_name": project, "status": EntityStatus.COMPLETED},
                    ),
                ],
            ),
            PatternFamily(
                "growth-tracker-update",
                [
                    PatternEntry(
                        _p(
                            r"^(?:update|set|log)\s+(?:my\s+)?growth(?:\s+tracker)?\s+(?:for|in|on)\s+"
                            rf"{_Q}?(?P<area>.+?){_Q}?\s+to\s+(?P<value>\d{{1,3}})\s*(?:%|percent)?$"
                        ),
                        "growth_tracker.update",
                        {"area": lambda m: _clean(m.group("area")), "value": lambda m: int(m.group("value"))},
                    ),
                    PatternEntry(
                        _p(
                            rf"^(?:update|set|log)\s+(?:my\s+)?{_Q}?(?P<area>.+?){_Q}?\s+growth(?:\s+tracker)?\s+"
                            r"to\s+(?P<value>\d{1,3})\s*(?:%|percent)?$"
                        ),
                        "growth_tracker.update",
                        {"area": lambda m: _clean(m.group("area")), "value": lambda m: int(m.group("value"))},
                    ),
                ],
            ),
            PatternFamily(
                "focus-areas-update",
                [
                    PatternEntry(
                        _p(r"^add\s+(?P<areas>.+?)\s+to\s+my\s+focus\s+areas?$"),
                        "focus_areas.update",
                        {"focus_areas": lambda m: parse_name_list(m.group("areas")), "mode": "add"},
                    ),
                    PatternEntry(
                        _p(r"^(?:set|update|change)\s+my\s+focus\s+areas?\s+to(?:\s+(?P<areas>.*))?$"),
                        "focus_areas.update",
                        {"focus_areas": lambda m: parse_name_list(m.group("areas")), "mode": "replace"},
                    ),
                    PatternEntry(
                        _p(r"^my\s+focus\s+areas?\s+(?:are|is)\s*:?(?:\s*(?P<areas>.*))?$"),
                        "focus_areas.update",
                        {"focus_areas": lambda m: parse_name_list(m.group("areas")), "mode": "replace"},
                    ),
                    PatternEntry(
                        _p(r"^(?:set|update)\s+(?:my\s+)?focus(?:\s+areas?)?\s*:(?:\s*(?P<areas>.*))?$"),
                        "focus_areas.update",
                        {"focus_areas": lambda m: parse_name_list(m.group("areas")), "mode": "replace"},
                    ),
                ],
            ),
            PatternFamily(
                "goal-create-update",
                [
                    PatternEntry(
                        _p(
                            r"^(?:add|create|set)\s+(?:a\s+)?(?:new\s+)?goal\s+(?:called\s+|named\s+)?"
                            rf"{_Q}(?P<goal>{_NOT_Q}+){_Q}\s+(?:to|for|in|under|on)\s+{_PROJECT_REF}{_DUE}$"
                        ),
                        "goal.create",
                        {"goal_title": lambda m: _clean(m.group("goal")), "project_name": project, "target_date": due},
                    ),
                    PatternEntry(
                        _p(
                            r"^(?:add|create|set)\s+(?:a\s+)?(?:new\s+)?goal\s+(?:called\s+|named\s+)?"
                            rf"{_Q}(?P<goal>{_NOT_Q}+){_Q}{_DUE}$"
                        ),
                        "goal.create",
                        {"goal_title": lambda m: _clean(m.group("goal")), "target_date": due},
                    ),
                    PatternEntry(
                        _p(
                            r"^(?:add|create)\s+(?:a\s+)?(?:new\s+)?goal\s+(?:called|named)\s+(?P<goal>.+?)\s+"
                            rf"(?:to|for|in|under)\s+{_PROJECT_REF}{_DUE}$"
                        ),
                        "goal.create",
                        {"goal_title": lambda m: _clean(m.group("goal")), "project_name": project, "target_date": due},
                    ),
                    PatternEntry(
                        _p(
                            r"^(?:set|change|move|update)\s+(?:the\s+)?(?:target|due)\s+date\s+(?:of|for)\s+(?:the\s+)?"
                            rf"goal\s+{_Q}?(?P<goal>.+?){_Q}?(?:\s+in\s+{_PROJECT_REF})?\s+to\s+(?P<date>.+)$"
                        ),
                        "goal.update",
                        {"goal_title": lambda m: _clean(m.group("goal")), "project_name": project, "target_date": due},
                    ),
                    PatternEntry(
                        _p(
                            rf"^(?:mark|set|update|move|change)\s+(?:the\s+)?goal\s+{_Q}?(?P<goal>.+?){_Q}?"
                            rf"(?:\s+(?:in|for|on)\s+{_PROJECT_REF})?\s+(?:status\s+)?(?:as|to)\s+{_STATUS_WORDS}$"
                        ),
                        "goal.update",
                        {
                            "goal_title": lambda m: _clean(m.group("goal")),
                            "project_name": project,
                            "status": lambda m: normalize_status(m.group("status")),
                        },
                    ),
                    PatternEntry(
                        _p(
                            rf"^(?:complete|finish)\s+(?:the\s+)?goal\s+{_Q}?(?P<goal>.+?){_Q}?"
                            rf"(?:\s+(?:in|for)\s+{_PROJECT_REF})?$"
                        ),
                        "goal.update",
                        {
                            "goal_title": lambda m: _clean(m.group("goal")),
                            "project_name": project,
                            "status": EntityStatus.COMPLETED,
                        },
                    ),
                ],
            ),
            PatternFamily(
                "task-create-prioritize",
                [
                    PatternEntry(
                        _p(
                            rf"^(?:add|create)\s+(?:a\s+)?(?:new\s+)?(?:(?P<priority>{_PRIORITY_WORDS})[\s-]priority\s+)?"
                            rf"task\s+(?:called\s+|named\s+)?{_Q}(?P<task>{_NOT_Q}+){_Q}\s+(?:to|for|under|in)\s+"
                            rf"(?:the\s+)?(?:goal\s+)?{_Q}?(?P<goal>.+?){_Q}?(?:\s+goal)?"
                            rf"(?:\s+(?:in|of)\s+(?:the\s+)?(?:project\s+)?{_Q}?(?P<project>.+?){_Q}?)?"
                            rf"(?:\s+(?:with|at|as)\s+(?P<priority2>{_PRIORITY_WORDS})\s+priority)?$"
                        ),
                        "task.create",
                        {
                            "task_name": lambda m: _clean(m.group("task")),
                            "goal_title": lambda m: _clean(m.group("goal")),
                            "project_name": project,
                            "priority": lambda m: (
                                normalize_priority(m.group("priority") or m.group("priority2"))
                                if (m.group("priority") or m.group("priority2"))
                                else None
                            ),
                        },
                    ),
                    PatternEntry(
                        _p(
                            r"^(?:set|change|update|make)\s+(?:the\s+)?priority\s+(?:of|for|on)\s+(?:the\s+)?task\s+"
                            rf"{_Q}?(?P<task>.+?){_Q}?\s+to\s+(?P<priority>{_PRIORITY_WORDS})$"
                        ),
                        "task.prioritize",
                        {
                            "task_name": lambda m: _clean(m.group("task")),
                            "priority": lambda m: normalize_priority(m.group("priority")),
                        },
                    ),
                    PatternEntry(
                        _p(
                            rf"^(?:mark|set|make)\s+(?:the\s+)?task\s+{_Q}?(?P<task>.+?){_Q}?\s+(?:as\s+|to\s+)?"
                            rf"(?:a\s+)?(?P<priority>{_PRIORITY_WORDS})(?:\s+priority)?$"
                        ),
                        "task.prioritize",
                        {
                            "task_name": lambda m: _clean(m.group("task")),
                            "priority": lambda m: normalize_priority(m.group("priority")),
                        },
                    ),
                    PatternEntry(
                        _p(
                            rf"^prioriti[sz]e\s+(?:the\s+)?(?:task\s+)?{_Q}?(?P<task>.+?){_Q}?"
                            rf"(?:\s+(?:as|to)\s+(?P<priority>{_PRIORITY_WORDS}))?$"
                        ),
                        "task.prioritize",
                        {
                            "task_name": lambda m: _clean(m.group("task")),
                            "priority": lambda m: (
                                normalize_priority(m.group("priority")) if m.group("priority") else Priority.HIGH
                            ),
                        },
                    ),
                ],
            ),
            PatternFamily(
                "milestone-create-complete",
                [
                    PatternEntry(
                        _p(
                            r"^(?:add|create|set)\s+(?:a\s+)?(?:new\s+)?milestone\s+(?:called\s+|named\s+)?"
                            rf"{_Q}(?P<milestone>{_NOT_Q}+){_Q}\s+(?:to|for|in|on)\s+{_PROJECT_REF}{_DUE}$"
                        ),
                        "milestone.create",
                        {
                            "milestone_name": lambda m: _clean(m.group("milestone")),
                            "project_name": project,
                            "target_date": due,
                        },
                    ),
                    PatternEntry(
                        _p(
                            r"^(?:add|create|set)\s+(?:a\s+)?(?:new\s+)?milestone\s+(?:called\s+|named\s+)?"
                            rf"{_Q}(?P<milestone>{_NOT_Q}+){_Q}{_DUE}$"
                        ),
                        "milestone.create",
                        {"milestone_name": lambda m: _clean(m.group("milestone")), "target_date": due},
                    ),
                    PatternEntry(
                        _p(
                            rf"^(?:mark|set)\s+(?:the\s+)?milestone\s+{_Q}?(?P<milestone>.+?){_Q}?"
                            rf"(?:\s+(?:in|for|of)\s+{_PROJECT_REF})?\s+(?:as\s+)?(?:done|complete|completed|finished)$"
                        ),
                        "milestone.complete",
                        {"milestone_name": lambda m: _clean(m.group("milestone")), "project_name": project},
                    ),
                    PatternEntry(
                        _p(
                            rf"^(?:complete|finish|close)\s+(?:the\s+)?milestone\s+{_Q}?(?P<milestone>.+?){_Q}?"
                            rf"(?:\s+(?:in|for|of)\s+{_PROJECT_REF})?$"
                        ),
                        "milestone.complete",
                        {"milestone_name": lambda m: _clean(m.group("milestone")), "project_name": project},
                    ),
                ],
            ),
        ]

    def parse(self, text: str) -> ParsedCommand | None:
        """Classify text into a typed command.

        Args:
            text: Raw chat message

        Returns:
            The first matching command, or None when no family matches
        """
        text = _normalize_text(text)
        if not text:
            return None

        for family in self.families:
            for entry in family.patterns:
                match = entry.matcher.search(text)
                if not match:
                    continue

                command = self._build(entry, match)
                if command is not None:
                    logger.debug("Matched %s via family %s", entry.intent_tag, family.name)
                    return command

        return None

    def _build(self, entry: PatternEntry, match: re.Match[str]) -> ParsedCommand | None:
        entities: dict[str, Any] = {}
        try:
            for entity_key, extractor in entry.field_extractors.items():
                if callable(extractor):
                    value = extractor(match)
                    if value is not None:
                        entities[entity_key] = value
                else:
                    entities[entity_key] = extractor
            return build_command(entry.intent_tag, entities)
        except (TypeError, ValueError, IndexError) as e:
            # Matched text with unusable fields; treat as no match for this entry
            logger.debug("Pattern for %s matched but extraction failed: %s", entry.intent_tag, e)
            return None


def _normalize_text(text: str) -> str:
    text = (text or "").strip()
    text = _POLITE_PREFIX.sub("", text)
    text = _TRAILING_PUNCTUATION.sub("", text)
    return re.sub(r"\s+", " ", text)


def is_confirmation(text: str) -> bool:
    """Check whether a reply confirms a pending suggestion."""
    return bool(CONFIRM_PATTERN.match(_normalize_text(text)))


def is_cancellation(text: str) -> bool:
    """Check whether a reply declines a pending suggestion."""
    return bool(CANCEL_PATTERN.match(_normalize_text(text)))
