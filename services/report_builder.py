"""RayScan Inspections — Report Data Builder.

Flattens one machine into the key -> string map consumed by the document
templates. Each category has a ``ReportProfile``: the fields blanked on
the no-data path, the headline field that carries the no-data reason, and
a pure defaulting function for the normal path.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date

from schemas.machine import MULTI_TUBE_TYPES, NUM_TUBES, TUBE_NO, InspectionType, Machine
from services.machine_queries import clean_location

Payload = dict[str, str]
DefaultsFn = Callable[[Payload, Mapping[str, str]], Payload]

SCATTER_FLOOR = "<1"

_LEADING_NUMBER = re.compile(r"^\s*[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")


def parse_number(value: str | None) -> float:
    """Leading numeric prefix of ``value`` ("12.5 mR" -> 12.5); 0.0 when absent."""
    match = _LEADING_NUMBER.match(value or "")
    return float(match.group(0)) if match else 0.0


def _ratio(numerator: float, denominator: float) -> str:
    if numerator > 0 and denominator > 0:
        return f"{numerator / denominator:.2f}"
    return ""


def _floor_blank(payload: Payload, *keys: str) -> None:
    for key in keys:
        if not payload.get(key):
            payload[key] = SCATTER_FLOOR


@dataclass(frozen=True)
class ReportProfile:
    """Per-category report rules."""
    category: InspectionType
    blank_fields: tuple[str, ...]
    headline_field: str
    apply_defaults: DefaultsFn

    def apply_no_data(self, payload: Payload, reason: str) -> Payload:
        result = dict(payload)
        for key in self.blank_fields:
            result[key] = ""
        result[self.headline_field] = reason
        return result


# ---------------------------------------------------------------------------
# Normal-path defaults (pure: payload and raw data in, new payload out)
# ---------------------------------------------------------------------------

def _dental_defaults(payload: Payload, data: Mapping[str, str]) -> Payload:
    result = dict(payload)
    result["preset kvp"] = data.get("preset_kvp", "")
    result["preset mas"] = data.get("preset_mas", "")
    result["preset time"] = data.get("preset_time", "")
    _floor_blank(result, "operator location")
    return result


def _general_defaults(payload: Payload, data: Mapping[str, str]) -> Payload:
    result = dict(payload)
    result["preset_kvp1"] = data.get("g1_preset_kvp") or "70"
    result["mas1"] = data.get("g1_preset_mas") or "10"
    result["preset_time1"] = data.get("g1_preset_time") or ""
    result["preset_kvp2"] = data.get("g2_preset_kvp") or "70"
    result["mas2"] = data.get("g2_preset_mas") or "16"
    result["preset_time2"] = data.get("g2_preset_time") or ""
    result["preset_kvp3"] = data.get("g3_preset_kvp") or "70"
    result["mas3"] = data.get("g3_preset_mas") or "20"
    result["preset_time3"] = data.get("g3_preset_time") or ""
    result["mas4"] = data.get("g4_preset_mas") or "40"
    _floor_blank(result, "g5_scatter", "g6_scatter")

    result["g1_calc"] = _ratio(parse_number(data.get("g1_mr")), parse_number(result["mas1"]))

    # Reproducibility: mean of the positive readings only
    readings = [parse_number(data.get(key)) for key in ("g2a_mr", "g2b_mr", "g2c_mr", "g2d_mr")]
    readings = [r for r in readings if r > 0]
    if readings:
        average = sum(readings) / len(readings)
        result["g2_avg"] = f"{average:.2f}"
        mas2 = parse_number(result["mas2"])
        if mas2 > 0:
            result["g2_calc"] = f"{average / mas2:.2f}"

    result["g3_calc"] = _ratio(parse_number(data.get("g3_mr")), parse_number(result["mas3"]))
    return result


def _scatter_defaults(payload: Payload, data: Mapping[str, str]) -> Payload:
    result = dict(payload)
    _floor_blank(result, "scatter_6ft", "scatter_operator")
    return result


FLUORO_HVL_DEFAULT_KVP = "120"
FLUORO_BOOST_FIELDS = ("ma_boost", "kvp_boost", "r/min_boost", "pkvp_boost", "pma_boost", "pr/min_boost")


def _fluoroscope_defaults(payload: Payload, data: Mapping[str, str]) -> Payload:
    result = dict(payload)
    result["ma"] = data.get("f1_preset_mas", "")

    hvl = data.get("hvl", "")
    hvl_kvp = data.get("f1_preset_kvp") or FLUORO_HVL_DEFAULT_KVP
    result["hvl"] = f"{hvl} @ {hvl_kvp}" if hvl else ""

    physicist_hvl = data.get("phvl", "")
    if physicist_hvl:
        result["phvl"] = f"{physicist_hvl} @ {data.get('phvl_kvp') or FLUORO_HVL_DEFAULT_KVP}"

    if data.get("has_hlc") == "true":
        result["ma_boost"] = data.get("f1_boost_preset_mas", "")
        for key in FLUORO_BOOST_FIELDS[1:]:
            result[key] = data.get(key, "")
    else:
        for key in FLUORO_BOOST_FIELDS:
            result[key] = ""
    return result


def _ct_defaults(payload: Payload, data: Mapping[str, str]) -> Payload:
    result = dict(payload)
    # Only one of mA / mAs is measured
    for key in ("mas", "ma"):
        if not data.get(key):
            result[key] = ""
    _floor_blank(result, "operator_scatter")
    return result


def _cabinet_defaults(payload: Payload, data: Mapping[str, str]) -> Payload:
    result = dict(payload)
    _floor_blank(result, "entrance", "exit", "operator_scatter")
    return result


ACCELERATOR_FIELD_NAMES = {
    "max_energy": "max energy",
    "license_required": "license required",
    "license_number": "license number",
    "rso_name": "rso name",
    "obi": "on board imaging",
}


def _accelerator_defaults(payload: Payload, data: Mapping[str, str]) -> Payload:
    result = dict(payload)
    _floor_blank(result, "door_scatter", "console_scatter")
    for source, target in ACCELERATOR_FIELD_NAMES.items():
        result[target] = data.get(source, "")
    return result


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

DENTAL_BLANK_FIELDS = (
    "kvp", "mR1", "time1", "hvl", "mR2", "time2", "mR3", "time3", "mR4", "time4",
    "6 foot", "operator location",
    "preset_kvp", "preset_mas", "preset_time",
    "preset kvp", "preset mas", "preset time",
)

GENERAL_BLANK_FIELDS = (
    "g1_kvp", "g1_mr", "g1_time",
    "g2a_kvp", "g2a_mr", "g2a_time",
    "g2b_kvp", "g2b_mr", "g2b_time",
    "g2c_kvp", "g2c_mr", "g2c_time",
    "g2d_kvp", "g2d_mr", "g2d_time",
    "g3_kvp", "g3_mr", "g3_time",
    "g4_kvp", "g4_hvl", "g5_scatter", "g6_scatter",
    "g1_preset_kvp", "g1_preset_mas", "g1_preset_time",
    "g2_preset_kvp", "g2_preset_mas", "g2_preset_time",
    "g3_preset_kvp", "g3_preset_mas", "g3_preset_time",
    "g4_preset_mas",
    "preset_kvp1", "mas1", "preset_time1",
    "preset_kvp2", "mas2", "preset_time2",
    "preset_kvp3", "mas3", "preset_time3",
    "mas4", "g1_calc", "g2_avg", "g2_calc", "g3_calc", "note",
)

SCATTER_BLANK_FIELDS = ("scatter_6ft", "scatter_operator")

# Physicist-reported values (pkvp, pma, phvl, pname, pdate) survive the no-data path.
FLUOROSCOPE_BLANK_FIELDS = ("ma", "kvp", "r/min", "hvl", "ma_boost", "kvp_boost", "r/min_boost")

CT_BLANK_FIELDS = ("time", "kvp", "ma", "mas", "operator_scatter")

CABINET_BLANK_FIELDS = ("entrance", "exit", "operator_scatter")

DENTAL_SCATTER_BLANK_FIELDS = ("6 foot", "operator location")

ACCELERATOR_BLANK_FIELDS = (
    "door_scatter", "console_scatter",
    "max energy", "license required", "license number", "rso name", "on board imaging",
)

REPORT_PROFILES: dict[InspectionType, ReportProfile] = {
    profile.category: profile
    for profile in (
        ReportProfile(InspectionType.DENTAL, DENTAL_BLANK_FIELDS, "preset kvp", _dental_defaults),
        ReportProfile(InspectionType.GENERAL, GENERAL_BLANK_FIELDS, "note", _general_defaults),
        ReportProfile(InspectionType.ANALYTICAL, SCATTER_BLANK_FIELDS, "scatter_6ft", _scatter_defaults),
        ReportProfile(InspectionType.BONE_DENSITY, SCATTER_BLANK_FIELDS, "scatter_6ft", _scatter_defaults),
        ReportProfile(InspectionType.INDUSTRIAL, SCATTER_BLANK_FIELDS, "scatter_6ft", _scatter_defaults),
        ReportProfile(InspectionType.FLUOROSCOPE, FLUOROSCOPE_BLANK_FIELDS, "kvp", _fluoroscope_defaults),
        ReportProfile(InspectionType.CT, CT_BLANK_FIELDS, "time", _ct_defaults),
        ReportProfile(InspectionType.CABINET, CABINET_BLANK_FIELDS, "entrance", _cabinet_defaults),
        ReportProfile(InspectionType.CBCT, DENTAL_SCATTER_BLANK_FIELDS, "6 foot", _dental_defaults),
        ReportProfile(InspectionType.PANORAMIC, DENTAL_SCATTER_BLANK_FIELDS, "6 foot", _dental_defaults),
        ReportProfile(InspectionType.ACCELERATOR, ACCELERATOR_BLANK_FIELDS, "door_scatter", _accelerator_defaults),
    )
}


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

def base_payload(machine: Machine, inspector: str, report_date: str) -> Payload:
    """Keys every report carries, followed by the machine's raw data."""
    registration = clean_location(machine.location)
    payload: Payload = {
        "inspector": inspector,
        "make": machine.make,
        "model": machine.model,
        "serial": machine.serial,
        "registration number": registration,
        "registrant name": machine.registrant_name,
        "date": report_date,
        "details": machine.full_details,
        "credential": registration,
        "type": machine.type.upper(),
    }
    payload.update(machine.data)
    if not payload.get(TUBE_NO):
        payload[TUBE_NO] = "1"
    if machine.inspection_type in MULTI_TUBE_TYPES and not payload.get(NUM_TUBES):
        payload[NUM_TUBES] = "1"
    return payload


def build_report_data(
    machine: Machine,
    inspector: str | None = None,
    today: date | None = None,
    date_format: str | None = None,
) -> Payload:
    """Build the template payload for one machine.

    Args:
        machine: Machine to report on.
        inspector: Inspector tag; defaults to REPORT_INSPECTOR.
        today: Report date; defaults to the current date.
        date_format: strftime format; defaults to REPORT_DATE_FORMAT.
    """
    if inspector is None or date_format is None:
        from config import get_settings
        settings = get_settings().report
        inspector = settings.inspector if inspector is None else inspector
        date_format = settings.date_format if date_format is None else date_format

    report_date = (today or date.today()).strftime(date_format)
    payload = base_payload(machine, inspector, report_date)
    profile = REPORT_PROFILES[machine.inspection_type]

    reason = machine.no_data_reason
    if reason:
        return profile.apply_no_data(payload, reason)
    return profile.apply_defaults(payload, machine.data)
