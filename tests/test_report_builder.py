"""Tests for the report payload builder."""

from datetime import date

import pytest

from schemas.machine import InspectionType, NoDataReason
from services.report_builder import REPORT_PROFILES, build_report_data, parse_number

TODAY = date(2026, 3, 4)


@pytest.fixture
def build():
    def _build(machine):
        return build_report_data(machine, inspector="RH", today=TODAY, date_format="%m/%d/%Y")

    return _build


class TestParseNumber:
    @pytest.mark.parametrize(
        "value, expected",
        [("12.5", 12.5), ("12.5 mR", 12.5), (" 3", 3.0), (".5", 0.5), ("-2", -2.0), ("<1", 0.0), ("", 0.0), (None, 0.0)],
    )
    def test_leading_prefix(self, value, expected):
        assert parse_number(value) == expected


class TestBasePayload:
    def test_common_keys(self, build, make_machine):
        machine = make_machine(location="R-5 (R)", type="Radiographic (R&F)", data={"tube_no": "1", "num_tubes": "2"})
        payload = build(machine)

        assert payload["inspector"] == "RH"
        assert payload["date"] == "03/04/2026"
        assert payload["registration number"] == "R-5"
        assert payload["credential"] == "R-5"
        assert payload["registrant name"] == "Clinic One"
        assert payload["details"] == "Acme - X100 - SN1"
        assert payload["type"] == "RADIOGRAPHIC (R&F)"
        assert (payload["make"], payload["model"], payload["serial"]) == ("Acme", "X100", "SN1")

    def test_tube_defaults(self, build, make_machine):
        payload = build(make_machine(location="R-1"))
        assert payload["tube_no"] == "1"
        assert payload["num_tubes"] == "1"

    def test_single_tube_category_has_no_tube_count(self, build, make_machine):
        payload = build(make_machine(inspection_type=InspectionType.DENTAL))
        assert payload["tube_no"] == "1"
        assert "num_tubes" not in payload

    def test_settings_supply_defaults(self, monkeypatch, make_machine):
        from config import get_settings

        monkeypatch.setenv("REPORT_INSPECTOR", "JD")
        monkeypatch.setenv("REPORT_DATE_FORMAT", "%Y-%m-%d")
        get_settings.cache_clear()

        payload = build_report_data(make_machine(), today=TODAY)
        assert payload["inspector"] == "JD"
        assert payload["date"] == "2026-03-04"


class TestGeneral:
    def test_linearity_ratio(self, build, make_machine):
        payload = build(make_machine(data={"g1_mr": "5"}))
        assert payload["mas1"] == "10"
        assert payload["g1_calc"] == "0.50"

    def test_presets_default(self, build, make_machine):
        payload = build(make_machine())
        assert (payload["preset_kvp1"], payload["preset_kvp2"], payload["preset_kvp3"]) == ("70", "70", "70")
        assert (payload["mas1"], payload["mas2"], payload["mas3"], payload["mas4"]) == ("10", "16", "20", "40")
        assert payload["g5_scatter"] == "<1"
        assert payload["g6_scatter"] == "<1"
        assert payload["g1_calc"] == ""
        assert "g2_avg" not in payload

    def test_reproducibility_ignores_missing_readings(self, build, make_machine):
        payload = build(make_machine(data={"g2a_mr": "4", "g2c_mr": "6", "g2d_mr": "abc"}))
        assert payload["g2_avg"] == "5.00"
        assert payload["g2_calc"] == "0.31"

    def test_operator_presets_win(self, build, make_machine):
        payload = build(make_machine(data={"g3_preset_mas": "25", "g3_mr": "5"}))
        assert payload["mas3"] == "25"
        assert payload["g3_calc"] == "0.20"

    def test_measured_scatter_is_kept(self, build, make_machine):
        payload = build(make_machine(data={"g5_scatter": "0.4"}))
        assert payload["g5_scatter"] == "0.4"

    def test_no_data(self, build, make_machine):
        machine = make_machine(data={"g1_mr": "5", "noDataReason": NoDataReason.NOT_OPERATIONAL.value})
        payload = build(machine)
        assert payload["note"] == "MACHINE NOT OPERATIONAL"
        assert payload["g1_mr"] == ""
        assert payload["g1_calc"] == ""
        assert payload["mas1"] == ""


class TestDental:
    def test_presets_and_scatter_floor(self, build, make_machine):
        machine = make_machine(
            inspection_type=InspectionType.DENTAL,
            data={"preset_kvp": "60", "preset_mas": "7", "6 foot": "0.2"},
        )
        payload = build(machine)
        assert payload["preset kvp"] == "60"
        assert payload["preset mas"] == "7"
        assert payload["preset time"] == ""
        assert payload["6 foot"] == "0.2"
        assert payload["operator location"] == "<1"

    def test_no_data_headline(self, build, make_machine):
        machine = make_machine(
            inspection_type=InspectionType.DENTAL,
            data={"kvp": "60", "noDataReason": NoDataReason.NOT_IN_FACILITY.value},
        )
        payload = build(machine)
        assert payload["preset kvp"] == "MACHINE NOT IN FACILITY"
        assert payload["kvp"] == ""
        assert payload["operator location"] == ""


class TestCabinet:
    def test_floor(self, build, make_machine):
        payload = build(make_machine(inspection_type=InspectionType.CABINET, data={"exit": "0.3"}))
        assert (payload["entrance"], payload["exit"], payload["operator_scatter"]) == ("<1", "0.3", "<1")

    def test_no_data(self, build, make_machine):
        machine = make_machine(
            inspection_type=InspectionType.CABINET,
            data={"noDataReason": NoDataReason.NOT_OPERATIONAL.value},
        )
        payload = build(machine)
        assert payload["entrance"] == "MACHINE NOT OPERATIONAL"
        assert payload["exit"] == ""
        assert payload["operator_scatter"] == ""


class TestFluoroscope:
    def test_hvl_uses_default_kvp(self, build, make_machine):
        machine = make_machine(inspection_type=InspectionType.FLUOROSCOPE, data={"hvl": "3.1", "f1_preset_mas": "2"})
        payload = build(machine)
        assert payload["hvl"] == "3.1 @ 120"
        assert payload["ma"] == "2"

    def test_hvl_uses_preset_kvp(self, build, make_machine):
        machine = make_machine(
            inspection_type=InspectionType.FLUOROSCOPE,
            data={"hvl": "3.1", "f1_preset_kvp": "100", "phvl": "3.4", "phvl_kvp": "80"},
        )
        payload = build(machine)
        assert payload["hvl"] == "3.1 @ 100"
        assert payload["phvl"] == "3.4 @ 80"

    def test_boost_fields_blank_without_hlc(self, build, make_machine):
        machine = make_machine(inspection_type=InspectionType.FLUOROSCOPE, data={"kvp_boost": "110"})
        payload = build(machine)
        assert payload["kvp_boost"] == ""
        assert payload["ma_boost"] == ""

    def test_boost_fields_with_hlc(self, build, make_machine):
        machine = make_machine(
            inspection_type=InspectionType.FLUOROSCOPE,
            data={"has_hlc": "true", "kvp_boost": "110", "f1_boost_preset_mas": "5"},
        )
        payload = build(machine)
        assert payload["kvp_boost"] == "110"
        assert payload["ma_boost"] == "5"
        assert payload["r/min_boost"] == ""

    def test_no_data_keeps_physicist_values(self, build, make_machine):
        machine = make_machine(
            inspection_type=InspectionType.FLUOROSCOPE,
            data={"kvp": "90", "pname": "Dr. Ray", "noDataReason": NoDataReason.NOT_OPERATIONAL.value},
        )
        payload = build(machine)
        assert payload["kvp"] == "MACHINE NOT OPERATIONAL"
        assert payload["pname"] == "Dr. Ray"


class TestOtherCategories:
    def test_ct_blanks_unmeasured_current(self, build, make_machine):
        payload = build(make_machine(inspection_type=InspectionType.CT, data={"mas": "100"}))
        assert payload["mas"] == "100"
        assert payload["ma"] == ""
        assert payload["operator_scatter"] == "<1"

    @pytest.mark.parametrize(
        "category", [InspectionType.ANALYTICAL, InspectionType.BONE_DENSITY, InspectionType.INDUSTRIAL]
    )
    def test_scatter_only(self, build, make_machine, category):
        payload = build(make_machine(inspection_type=category))
        assert payload["scatter_6ft"] == "<1"
        assert payload["scatter_operator"] == "<1"

    def test_accelerator_field_names(self, build, make_machine):
        machine = make_machine(
            inspection_type=InspectionType.ACCELERATOR,
            data={"max_energy": "6 MV", "obi": "Yes", "door_scatter": "0.1"},
        )
        payload = build(machine)
        assert payload["max energy"] == "6 MV"
        assert payload["on board imaging"] == "Yes"
        assert payload["license number"] == ""
        assert payload["door_scatter"] == "0.1"
        assert payload["console_scatter"] == "<1"

    def test_every_category_has_a_profile(self):
        assert set(REPORT_PROFILES) == set(InspectionType)
