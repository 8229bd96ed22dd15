"""Tests for status-page parsing and keyword classification."""

import pytest

from icewatch.classifier import (
    GENERIC_NO_ICE_MESSAGE,
    StatusPageParser,
    classify_status,
    extract_last_updated,
    extract_surface,
    extract_thickness,
    parse_ice_reports,
)
from icewatch.lakes import LakeResolver
from icewatch.models import IceStatus, Lake, SurfaceCondition
from icewatch.text import fold_diacritics, normalize_text, slugify

from conftest import STATUS_PAGE


def _by_name(reports):
    return {r.lake_name: r for r in reports}


class TestNormalizeText:

    def test_strips_tags_and_collapses_whitespace(self):
        assert normalize_text("<p>Isen   är\n<b>plogad</b></p>") == "Isen är plogad"

    def test_drops_script_content(self):
        text = normalize_text('<script>var x = "Flaten";</script><p>Drevviken</p>')
        assert "Flaten" not in text
        assert text == "Drevviken"

    def test_decodes_entities(self):
        assert normalize_text("Isen &auml;r 10&nbsp;cm") == "Isen är 10 cm"

    def test_empty(self):
        assert normalize_text("") == ""

    def test_fold_keeps_length(self):
        original = "Ältasjön är stängd"
        folded = fold_diacritics(original)
        assert folded == "Altasjon ar stangd"
        assert len(folded) == len(original)

    def test_slugify(self):
        assert slugify("Tyresö-Flaten") == "tyreso-flaten"
        assert slugify("Långsjön") == "langsjon"


class TestClassifyStatus:

    @pytest.mark.parametrize("message,expected", [
        ("Isen är inte tillräckligt tjock.", IceStatus.NO_ICE),
        ("Banan är stängd.", IceStatus.NO_ICE),
        ("Öppet vatten vid bryggan.", IceStatus.NO_ICE),
        ("Isen är plogad och preparerad.", IceStatus.SAFE),
        ("Banan är godkänd.", IceStatus.SAFE),
        ("Varning för tunn is.", IceStatus.WARNING),
        ("Undvik norra delen.", IceStatus.WARNING),
        ("Vi återkommer med information.", IceStatus.UNCERTAIN),
        ("", IceStatus.UNCERTAIN),
    ])
    def test_categories(self, message, expected):
        assert classify_status(message) == expected

    def test_safe_wins_over_warning(self):
        """A plowed track with a risk note is still classified safe."""
        assert classify_status("Isen är plogad men risk för svaga partier.") == IceStatus.SAFE

    def test_no_ice_wins_over_safe(self):
        assert classify_status("Plogad tidigare, nu stängd.") == IceStatus.NO_ICE

    def test_english_markers(self):
        assert classify_status("ice is plowed and prepared") == IceStatus.SAFE
        assert classify_status("thin ice near the inlet") == IceStatus.WARNING
        assert classify_status("open water") == IceStatus.NO_ICE


class TestExtractors:

    def test_thickness(self):
        assert extract_thickness("Isen är plogad, 15 cm.") == 15

    def test_thickness_out_of_range(self):
        assert extract_thickness("Isen är 150 cm tjock.") is None
        assert extract_thickness("0 cm is") is None

    def test_thickness_missing(self):
        assert extract_thickness("Isen är plogad.") is None

    def test_thickness_first_match(self):
        assert extract_thickness("12 cm vid land, 8 cm ute") == 12

    def test_surface_priority(self):
        assert extract_surface("plogad men snö i kanterna") == SurfaceCondition.PLOWED
        assert extract_surface("Snötäckt och ojämn is") == SurfaceCondition.SNOW_COVERED
        assert extract_surface("Ojämn is") == SurfaceCondition.ROUGH
        assert extract_surface("Blank is") == SurfaceCondition.SMOOTH
        assert extract_surface("Ingen info") is None

    def test_last_updated(self):
        text = "Informationen uppdaterad: 5 januari 2026, klockan 15:00"
        assert extract_last_updated(text) == "5 januari 2026 15:00"

    def test_last_updated_missing(self):
        assert extract_last_updated("Isen är plogad.") is None


class TestStatusPageParser:

    def test_reference_page(self):
        reports = _by_name(parse_ice_reports(STATUS_PAGE))

        assert set(reports) == {"Drevviken", "Långsjön", "Magelungen", "Trekanten", "Judarn"}

        drevviken = reports["Drevviken"]
        assert drevviken.status == IceStatus.SAFE
        assert drevviken.surface_condition == SurfaceCondition.PLOWED
        assert drevviken.ice_thickness_cm == 15
        assert drevviken.raw_text == "Isen är plogad och preparerad, 15 cm."
        assert drevviken.last_updated == "5 januari 2026 15:00"

        assert reports["Långsjön"].status == IceStatus.NO_ICE
        assert reports["Magelungen"].status == IceStatus.WARNING
        assert reports["Trekanten"].status == IceStatus.SAFE

    def test_script_names_ignored(self):
        reports = _by_name(parse_ice_reports(STATUS_PAGE))
        assert "Flaten" not in reports
        assert "Bornsjön" not in reports

    def test_generic_fallback(self):
        judarn = _by_name(parse_ice_reports(STATUS_PAGE))["Judarn"]
        assert judarn.raw_text == GENERIC_NO_ICE_MESSAGE
        assert judarn.status == IceStatus.NO_ICE

    def test_no_segment_bleed(self):
        """A lake without its own marker does not borrow the next lake's message."""
        page = (
            "<p>Flaten sjöisbana</p>"
            "<p>Drevviken</p><p>Aktuella upplysningar: Isen är plogad, 20 cm.</p>"
        )
        reports = _by_name(parse_ice_reports(page))
        assert set(reports) == {"Drevviken"}
        assert reports["Drevviken"].ice_thickness_cm == 20

    def test_message_stops_at_next_lake(self):
        page = (
            "Drevviken Aktuella upplysningar: Isen är plogad "
            "Magelungen Aktuella upplysningar: Varning för tunn is."
        )
        reports = _by_name(parse_ice_reports(page))
        assert reports["Drevviken"].raw_text == "Isen är plogad"
        assert reports["Drevviken"].status == IceStatus.SAFE
        assert reports["Magelungen"].status == IceStatus.WARNING

    def test_message_stops_at_track_length(self):
        page = "<p>Drevviken</p><p>Aktuella upplysningar: Isen är plogad Banans längd 3 km.</p>"
        drevviken = _by_name(parse_ice_reports(page))["Drevviken"]
        assert drevviken.raw_text == "Isen är plogad"
        assert drevviken.ice_thickness_cm is None

    def test_ascii_spelling(self):
        page = "<p>Langsjon</p><p>Aktuella upplysningar: Banan ar stangd.</p>"
        reports = _by_name(parse_ice_reports(page))
        assert reports["Långsjön"].status == IceStatus.NO_ICE

    def test_hyphenated_name_not_confused(self):
        page = "<p>Tyresö-Flaten</p><p>Aktuella upplysningar: Isen är plogad, 12 cm.</p>"
        reports = _by_name(parse_ice_reports(page))
        assert set(reports) == {"Tyresö-Flaten"}
        assert reports["Tyresö-Flaten"].ice_thickness_cm == 12

    def test_space_separated_name_not_confused(self):
        page = "<h3>Tyresö Flaten</h3><p>Aktuella upplysningar: Isen är plogad, 12 cm.</p>"
        reports = _by_name(parse_ice_reports(page))
        assert set(reports) == {"Tyresö-Flaten"}

    def test_space_separated_name_ends_other_block(self):
        page = (
            "<h3>Flaten</h3><p>Aktuella upplysningar: Banan är stängd.</p>"
            "<h3>Tyresö Flaten</h3><p>Aktuella upplysningar: Isen är plogad, 12 cm.</p>"
        )
        reports = _by_name(parse_ice_reports(page))
        assert set(reports) == {"Flaten", "Tyresö-Flaten"}
        assert reports["Flaten"].raw_text == "Banan är stängd."
        assert reports["Tyresö-Flaten"].ice_thickness_cm == 12

    def test_prefers_block_with_marker(self):
        page = (
            "<p>Se även Drevviken nedan.</p>"
            "<p>Magelungen</p><p>Aktuella upplysningar: Varning för tunn is.</p>"
            "<p>Drevviken</p><p>Aktuella upplysningar: Isen är plogad.</p>"
        )
        reports = _by_name(parse_ice_reports(page))
        assert reports["Drevviken"].status == IceStatus.SAFE

    def test_mentioned_without_message_skipped(self):
        page = "<p>Drevviken</p><p>Ingen information ännu.</p>"
        assert parse_ice_reports(page) == []

    def test_empty_page(self):
        assert parse_ice_reports("") == []

    def test_custom_aliases_end_to_end(self):
        aliases = {"Lake X": frozenset({"Lake X"}), "Lake Y": frozenset({"Lake Y"})}
        page = (
            "<h3>Lake X</h3><p>Current info: ice is plowed and prepared, 15 cm.</p>"
            "<h3>Lake Y</h3><p>Current info: thin ice, keep off.</p>"
        )
        reports = _by_name(StatusPageParser(aliases).parse(page))

        lake_x = Lake(id=1, name="Lake X", slug="lake-x")
        lake_y = Lake(id=2, name="Lake Y", slug="lake-y")
        resolver = LakeResolver([lake_x, lake_y], aliases)

        report = reports["Lake X"]
        assert resolver.resolve(report.lake_name) is lake_x
        assert report.status == IceStatus.SAFE
        assert report.surface_condition == SurfaceCondition.PLOWED
        assert report.ice_thickness_cm == 15
        assert reports["Lake Y"].status == IceStatus.WARNING
