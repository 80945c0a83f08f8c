import pytest

from dietary_summary import (
    DIRECTORY_EXCLUDED_WORDS,
    SUMMARY_EXCLUDED_WORDS,
    SortConfig,
    build_query_string,
    candidate_members,
    export_filename,
    format_summary_as_text,
    make_item_filter,
    member_slug,
    parse_query_string,
    search_members,
    sort_restriction_groups,
    summarize,
    summary_from_query,
)
from sync_dietary_data import Member, Restriction, Roster, parse_sheet_data


def _people(n):
    return [{"name": f"p{i}", "severity": "yes", "notes": "Yes"} for i in range(n)]


@pytest.fixture
def roster():
    return parse_sheet_data([
        ["", "Alice", "Bob", "Carol", "Dan"],
        ["Attending?", "Yes", "Yes", "Yes", "Yes"],
        ["Vegan", "Yes", "", "", ""],
        ["Nuts", "Airborne (even smell)", "Yes", "", ""],
        ["Dairy", "Small amounts ok", "Yes", "", ""],
        ["Sesame", "", "Airborne", "", ""],
        ["Gluten-Free", "", "", "Yes", ""],
    ])


# ============================================
# Sorting
# ============================================
class TestSortRestrictionGroups:
    def test_priority_then_count_then_bottom(self):
        groups = {
            "Nuts": _people(3),
            "Vegan": _people(1),
            "None": _people(1),
            "Gluten-Free": _people(2),
        }
        assert list(sort_restriction_groups(groups)) == ["Vegan", "Gluten-Free", "Nuts", "None"]

    def test_vegetarian_before_vegan(self):
        groups = {"Vegan": _people(5), "Vegetarian": _people(1)}
        assert list(sort_restriction_groups(groups)) == ["Vegetarian", "Vegan"]

    def test_count_ties_keep_insertion_order(self):
        groups = {"Soy": _people(2), "Eggs": _people(2), "Fish": _people(4)}
        assert list(sort_restriction_groups(groups)) == ["Fish", "Soy", "Eggs"]

    def test_bottom_requires_exact_match(self):
        groups = {"None": _people(1), "Nonesuch": _people(1)}
        assert list(sort_restriction_groups(groups)) == ["Nonesuch", "None"]

    def test_custom_config(self):
        config = SortConfig(priority_items=("kosher",), bottom_items=("other", "none"))
        groups = {"None": _people(1), "Other": _people(9), "Kosher style": _people(1), "Soy": _people(2)}
        assert list(sort_restriction_groups(groups, config)) == ["Kosher style", "Soy", "Other", "None"]

    def test_values_are_untouched(self):
        groups = {"Soy": _people(2)}
        assert sort_restriction_groups(groups)["Soy"] == _people(2)


# ============================================
# Summaries
# ============================================
class TestSummarize:
    def test_no_match_returns_none(self, roster):
        assert summarize(roster, ["zelda", "nobody"], "Lunch") is None
        assert summarize(roster, [], "Lunch") is None

    def test_case_insensitive_and_roster_order(self, roster):
        summary = summarize(roster, ["CAROL", "alice"], "Lunch")
        assert summary.attendees == ["Alice", "Carol"]
        assert summary.meal_name == "Lunch"

    def test_airborne_grouping(self, roster):
        summary = summarize(roster, ["alice", "bob"])
        assert summary.airborne == {
            "Nuts": [{"name": "Alice", "notes": "even smell"}],
            "Sesame": [{"name": "Bob", "notes": ""}],
        }

    def test_other_grouping_and_order(self, roster):
        keep = make_item_filter(SUMMARY_EXCLUDED_WORDS)
        summary = summarize(roster, ["alice", "bob", "carol", "dan"], restriction_filter=keep)

        assert list(summary.other) == ["Vegan", "Gluten-Free", "Dairy", "Nuts", "None"]
        assert summary.other["Dairy"] == [
            {"name": "Alice", "severity": "small_amounts", "notes": "Small amounts ok"},
            {"name": "Bob", "severity": "yes", "notes": "Yes"},
        ]
        assert summary.other["None"] == [{"name": "Dan", "severity": "yes", "notes": "None"}]

    def test_without_filter_attending_row_is_kept(self, roster):
        summary = summarize(roster, ["dan"])
        assert list(summary.other) == ["Attending?"]
        assert summary.by_person[0].restrictions[0].item == "Attending?"

    def test_filter_applies_to_by_person(self, roster):
        keep = make_item_filter(SUMMARY_EXCLUDED_WORDS)
        summary = summarize(roster, ["dan", "carol"], restriction_filter=keep)
        assert [m.name for m in summary.by_person] == ["Carol", "Dan"]
        assert summary.by_person[1].restrictions == []
        # the roster itself is not modified
        assert len(roster.members[3].restrictions) == 1

    def test_single_string_selection_is_rejected(self, roster):
        with pytest.raises(TypeError):
            summarize(roster, "alice")

    def test_to_dict_keeps_group_order(self, roster):
        keep = make_item_filter(SUMMARY_EXCLUDED_WORDS)
        data = summarize(roster, ["carol", "alice"], "Lunch", restriction_filter=keep).to_dict()

        assert set(data) == {"mealName", "attendees", "airborne", "other", "byPerson"}
        assert data["mealName"] == "Lunch"
        assert data["attendees"] == ["Alice", "Carol"]
        assert data["airborne"] == [["Nuts", [{"name": "Alice", "notes": "even smell"}]]]
        assert [item for item, _ in data["other"]] == ["Vegan", "Gluten-Free", "Dairy"]
        assert data["byPerson"][1] == {
            "name": "Carol",
            "restrictions": [{"item": "Gluten-Free", "severity": "yes", "notes": "Yes"}],
        }

    def test_airborne_only_member_is_not_none(self, roster):
        roster.members.append(Member("Eve", [Restriction("Fish", "airborne", "")]))
        summary = summarize(roster, ["eve"])
        assert summary.other == {}
        assert list(summary.airborne) == ["Fish"]


# ============================================
# Text rendering
# ============================================
EXPECTED_TEXT = (
    "Dietary Summary - Shabbos Dinner\n"
    "\n"
    "Attendees: 3 (Alice, Bob, Dan)\n"
    "\n"
    "⚠️  AIRBORNE ALLERGIES ⚠️\n"
    "==========================================\n"
    "Nuts\n"
    "  - Alice (even smell)\n"
    "Sesame\n"
    "  - Bob\n"
    "\n"
    "Dietary Restrictions:\n"
    "Vegan\n"
    "  - Alice\n"
    "Dairy\n"
    "  - Alice (small amounts)\n"
    "  - Bob\n"
    "Nuts\n"
    "  - Bob\n"
    "None\n"
    "  - Dan\n"
    "\n"
    "Restrictions by Person:\n"
    "- Alice: Vegan, Nuts (AIRBORNE), Dairy (small amounts)\n"
    "- Bob: Nuts, Dairy, Sesame (AIRBORNE)\n"
    "- Dan: None\n"
)


class TestFormatSummaryAsText:
    def test_full_rendering(self, roster):
        keep = make_item_filter(SUMMARY_EXCLUDED_WORDS)
        summary = summarize(roster, ["dan", "bob", "alice"], "Shabbos Dinner", restriction_filter=keep)
        assert format_summary_as_text(summary) == EXPECTED_TEXT

    def test_deterministic(self, roster):
        summary = summarize(roster, ["alice", "bob"], "Lunch")
        assert format_summary_as_text(summary) == format_summary_as_text(summary)

    def test_generic_title_and_no_airborne_section(self, roster):
        keep = make_item_filter(SUMMARY_EXCLUDED_WORDS)
        text = format_summary_as_text(summarize(roster, ["carol"], restriction_filter=keep))
        assert text == (
            "Dietary Summary\n"
            "\n"
            "Attendees: 1 (Carol)\n"
            "\n"
            "Dietary Restrictions:\n"
            "Gluten-Free\n"
            "  - Carol\n"
            "\n"
            "Restrictions by Person:\n"
            "- Carol: Gluten-Free\n"
        )


class TestExportFilename:
    def test_with_meal(self):
        assert export_filename("Rosh Hashana  Day 1\tLunch") == "Rosh-Hashana-Day-1-Lunch-dietary-dashboard.txt"

    def test_without_meal(self):
        assert export_filename("") == "dietary-dashboard.txt"


# ============================================
# Query strings
# ============================================
class TestQueryString:
    def test_build(self):
        assert build_query_string(["Alice", "Mary Ann"], "Shabbos Dinner & Kiddush") == (
            "attendees=alice,mary%20ann&meal=Shabbos%20Dinner%20%26%20Kiddush"
        )

    def test_build_without_meal(self):
        assert build_query_string(["Bob"]) == "attendees=bob"

    def test_parse(self):
        assert parse_query_string("?attendees=alice,,BOB&meal=Shabbos%20Dinner") == (["alice", "bob"], "Shabbos Dinner")

    def test_parse_double_encoded_meal(self):
        assert parse_query_string("attendees=alice&meal=Seder%2520Night%2520%2526%2520Kiddush") == (
            ["alice"],
            "Seder Night & Kiddush",
        )

    def test_parse_full_url(self):
        assert parse_query_string("https://example.org/?attendees=dan") == (["dan"], "")

    def test_round_trip_reproduces_summary(self, roster):
        keep = make_item_filter(SUMMARY_EXCLUDED_WORDS)
        selection = ["Dan", "alice", "Bob"]
        direct = summarize(roster, selection, "Lunch & Learn", restriction_filter=keep)
        rebuilt = summary_from_query(roster, build_query_string(selection, "Lunch & Learn"), restriction_filter=keep)
        assert rebuilt == direct
        assert format_summary_as_text(rebuilt) == format_summary_as_text(direct)

    def test_no_attendees_gives_no_summary(self, roster):
        assert summary_from_query(roster, "meal=Lunch") is None


# ============================================
# Member search
# ============================================
class TestMemberSearch:
    def test_blank_query_returns_everyone(self, roster):
        assert [m.name for m in search_members(roster, "  ")] == ["Alice", "Bob", "Carol", "Dan"]

    def test_matches_name_or_item(self, roster):
        assert [m.name for m in search_members(roster, "car")] == ["Carol"]
        assert [m.name for m in search_members(roster, "SESAME")] == ["Bob"]

    def test_filtered_items_do_not_match(self, roster):
        keep = make_item_filter(DIRECTORY_EXCLUDED_WORDS)
        assert search_members(roster, "attending", keep) == []
        assert search_members(roster, "dan", keep)[0].restrictions == []

    def test_candidates_exclude_selected_and_sort(self):
        roster = Roster(members=[Member("carol"), Member("Bob"), Member("alice"), Member("Abe")])
        assert [m.name for m in candidate_members(roster, ["BOB"])] == ["Abe", "alice", "carol"]
        assert [m.name for m in candidate_members(roster, [], "a")] == ["Abe", "alice", "carol"]
        assert [m.name for m in candidate_members(roster, ["abe"], "AL")] == ["alice"]

    def test_member_slug(self):
        assert member_slug("Mary  Ann Smith") == "mary-ann-smith"
