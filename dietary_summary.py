# -*- coding: utf-8 -*-
"""
dietary_summary.py

Meal summaries over a synced roster.

- summarize(): pick attendees, group their restrictions (airborne vs other),
  sort the other groups (priority items first, "None" last, count in between)
- format_summary_as_text(): canonical plain-text rendering used for copy,
  download and share
- query string helpers so a shared link rebuilds the same summary
- directory / autocomplete member search

Everything here is pure; no I/O, no logging.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qs, quote, unquote, urlencode

from sync_dietary_data import (
    SEVERITY_AIRBORNE,
    SEVERITY_SMALL_AMOUNTS,
    SEVERITY_YES,
    Member,
    Restriction,
    Roster,
)


# -------------
# Configuration
# -------------

DEFAULT_PRIORITY_ITEMS = ("vegetarian", "vegan", "gluten")
DEFAULT_BOTTOM_ITEMS = ("none",)

# Sheet rows that are bookkeeping, not restrictions
SUMMARY_EXCLUDED_WORDS = ("attending",)
DIRECTORY_EXCLUDED_WORDS = ("attending", "approved")

NO_RESTRICTIONS_ITEM = "None"

SEVERITY_LABELS = {
    SEVERITY_YES: "yes",
    SEVERITY_SMALL_AMOUNTS: "small amounts",
    SEVERITY_AIRBORNE: "airborne",
}

TEXT_TITLE = "Dietary Summary"
TEXT_AIRBORNE_HEADER = "⚠️  AIRBORNE ALLERGIES ⚠️"
TEXT_AIRBORNE_RULE = "=" * 42
DEFAULT_EXPORT_FILENAME = "dietary-dashboard.txt"
EXPORT_FILENAME_SUFFIX = "-dietary-dashboard.txt"

WHITESPACE_RUN = re.compile(r"\s+")
PERCENT_ESCAPE = re.compile(r"%[0-9A-Fa-f]{2}")

RestrictionFilter = Callable[[Restriction], bool]


@dataclass(frozen=True)
class SortConfig:
    priority_items: Sequence[str] = DEFAULT_PRIORITY_ITEMS
    bottom_items: Sequence[str] = DEFAULT_BOTTOM_ITEMS


DEFAULT_SORT_CONFIG = SortConfig()


@dataclass
class Summary:
    meal_name: str
    attendees: List[str]
    airborne: Dict[str, List[Dict[str, str]]] = field(default_factory=dict)
    other: Dict[str, List[Dict[str, str]]] = field(default_factory=dict)
    by_person: List[Member] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """
        JSON shape of the dashboard summary. Groups are [item, people] pairs so
        the sorted order survives serialization.
        """
        return {
            "mealName": self.meal_name,
            "attendees": list(self.attendees),
            "airborne": [[item, [dict(p) for p in people]] for item, people in self.airborne.items()],
            "other": [[item, [dict(p) for p in people]] for item, people in self.other.items()],
            "byPerson": [m.to_dict() for m in self.by_person],
        }


def severity_label(severity: str) -> str:
    return SEVERITY_LABELS.get(severity, severity)


def make_item_filter(excluded_words: Iterable[str]) -> RestrictionFilter:
    """
    Predicate that keeps a restriction unless its item contains one of the
    words (case-insensitive).
    """
    words = tuple(w.lower() for w in excluded_words)

    def keep(restriction: Restriction) -> bool:
        item = restriction.item.lower()
        return not any(w in item for w in words)

    return keep


def filtered_restrictions(member: Member, restriction_filter: Optional[RestrictionFilter]) -> List[Restriction]:
    if restriction_filter is None:
        return list(member.restrictions)
    return [r for r in member.restrictions if restriction_filter(r)]


# -------
# Sorting
# -------

def _priority_rank(item_lower: str, config: SortConfig) -> int:
    # Last matching entry wins, so "Vegan (gluten free)" ranks with "gluten"
    rank = -1
    for idx, priority in enumerate(config.priority_items):
        p = priority.lower()
        if item_lower == p or p in item_lower:
            rank = idx
    return rank


def _bottom_rank(item_lower: str, config: SortConfig) -> int:
    for idx, bottom in enumerate(config.bottom_items):
        if item_lower == bottom.lower():
            return idx
    return -1


def sort_restriction_groups(
    groups: Dict[str, List[Dict[str, str]]],
    config: SortConfig = DEFAULT_SORT_CONFIG,
) -> Dict[str, List[Dict[str, str]]]:
    """
    Priority items (config order), then everything else by number of people
    (most first, ties keep insertion order), then bottom items (config order).
    """

    def sort_key(entry):
        item, people = entry
        item_lower = item.lower()
        priority = _priority_rank(item_lower, config)
        if priority != -1:
            return (0, priority)
        bottom = _bottom_rank(item_lower, config)
        if bottom != -1:
            return (2, bottom)
        return (1, -len(people))

    return dict(sorted(groups.items(), key=sort_key))


# -----------
# Aggregation
# -----------

def summarize(
    roster: Roster,
    attendee_names: Iterable[str],
    meal_name: str = "",
    sort_config: SortConfig = DEFAULT_SORT_CONFIG,
    restriction_filter: Optional[RestrictionFilter] = None,
) -> Optional[Summary]:
    """
    Build the summary for the members named in `attendee_names` (matched
    case-insensitively). Members appear in roster order, whatever order they
    were selected in. Returns None when nobody matches.

    `attendee_names` is a collection of names; a single string is rejected.
    """
    if isinstance(attendee_names, str):
        raise TypeError("attendee_names must be a collection of names, not a single string")

    wanted = {name.strip().lower() for name in attendee_names if name and name.strip()}

    selected = [
        Member(name=m.name, restrictions=filtered_restrictions(m, restriction_filter))
        for m in roster.members
        if m.name.lower() in wanted
    ]
    if not selected:
        return None

    airborne: Dict[str, List[Dict[str, str]]] = {}
    other: Dict[str, List[Dict[str, str]]] = {}

    for person in selected:
        for r in person.restrictions:
            if r.severity == SEVERITY_AIRBORNE:
                airborne.setdefault(r.item, []).append({"name": person.name, "notes": r.notes})

    for person in selected:
        for r in person.restrictions:
            if r.severity != SEVERITY_AIRBORNE:
                other.setdefault(r.item, []).append(
                    {"name": person.name, "severity": r.severity, "notes": r.notes}
                )

    for person in selected:
        if not person.restrictions:
            other.setdefault(NO_RESTRICTIONS_ITEM, []).append(
                {"name": person.name, "severity": SEVERITY_YES, "notes": NO_RESTRICTIONS_ITEM}
            )

    return Summary(
        meal_name=meal_name,
        attendees=[p.name for p in selected],
        airborne=airborne,
        other=sort_restriction_groups(other, sort_config),
        by_person=selected,
    )


# ---------
# Rendering
# ---------

def _person_restriction_label(r: Restriction) -> str:
    if r.severity == SEVERITY_AIRBORNE:
        return f"{r.item} (AIRBORNE)"
    if r.severity != SEVERITY_YES:
        return f"{r.item} ({severity_label(r.severity)})"
    return r.item


def format_summary_as_text(summary: Summary) -> str:
    lines: List[str] = []

    lines.append(f"{TEXT_TITLE} - {summary.meal_name}" if summary.meal_name else TEXT_TITLE)
    lines.append("")
    lines.append(f"Attendees: {len(summary.attendees)} ({', '.join(summary.attendees)})")
    lines.append("")

    if summary.airborne:
        lines.append(TEXT_AIRBORNE_HEADER)
        lines.append(TEXT_AIRBORNE_RULE)
        for item, people in summary.airborne.items():
            lines.append(item)
            for p in people:
                notes = f" ({p['notes']})" if p.get("notes") else ""
                lines.append(f"  - {p['name']}{notes}")
        lines.append("")

    if summary.other:
        lines.append("Dietary Restrictions:")
        for item, people in summary.other.items():
            lines.append(item)
            for p in people:
                detail = f" ({severity_label(p['severity'])})" if p["severity"] != SEVERITY_YES else ""
                lines.append(f"  - {p['name']}{detail}")
        lines.append("")

    lines.append("Restrictions by Person:")
    for person in summary.by_person:
        labels = ", ".join(_person_restriction_label(r) for r in person.restrictions)
        lines.append(f"- {person.name}: {labels or 'None'}")

    return "\n".join(lines) + "\n"


def export_filename(meal_name: str) -> str:
    if not meal_name:
        return DEFAULT_EXPORT_FILENAME
    return WHITESPACE_RUN.sub("-", meal_name) + EXPORT_FILENAME_SUFFIX


# ------------------
# Shareable links
# ------------------

def build_query_string(attendees: Iterable[str], meal_name: str = "") -> str:
    params = {"attendees": ",".join(a.strip().lower() for a in attendees if a and a.strip())}
    if meal_name:
        params["meal"] = meal_name
    return urlencode(params, quote_via=quote, safe=",")


def parse_query_string(query: str) -> Tuple[List[str], str]:
    """
    Returns (attendee names, meal name). Accepts a leading "?" or a full URL.
    """
    if "?" in query:
        query = query.split("?", 1)[1]
    params = parse_qs(query, keep_blank_values=True)

    raw_attendees = params.get("attendees", [""])[0]
    attendees = [a.strip().lower() for a in raw_attendees.split(",") if a.strip()]
    meal_name = params.get("meal", [""])[0]
    # Older links encoded the meal twice
    if PERCENT_ESCAPE.search(meal_name):
        meal_name = unquote(meal_name)
    return attendees, meal_name


def summary_from_query(
    roster: Roster,
    query: str,
    sort_config: SortConfig = DEFAULT_SORT_CONFIG,
    restriction_filter: Optional[RestrictionFilter] = None,
) -> Optional[Summary]:
    attendees, meal_name = parse_query_string(query)
    if not attendees:
        return None
    return summarize(roster, attendees, meal_name, sort_config, restriction_filter)


# --------------
# Member search
# --------------

def search_members(
    roster: Roster,
    query: str,
    restriction_filter: Optional[RestrictionFilter] = None,
) -> List[Member]:
    """Directory view: match on name or on any restriction item."""
    q = query.strip().lower()
    out: List[Member] = []
    for m in roster.members:
        restrictions = filtered_restrictions(m, restriction_filter)
        if q and q not in m.name.lower() and not any(q in r.item.lower() for r in restrictions):
            continue
        out.append(Member(name=m.name, restrictions=restrictions))
    return out


def candidate_members(roster: Roster, selected: Iterable[str], search: str = "") -> List[Member]:
    chosen = {s.lower() for s in selected}
    q = search.strip().lower()
    out = [
        m for m in roster.members
        if m.name.lower() not in chosen and (not q or q in m.name.lower())
    ]
    return sorted(out, key=lambda m: m.name.lower())


def member_slug(name: str) -> str:
    return WHITESPACE_RUN.sub("-", name.lower())
