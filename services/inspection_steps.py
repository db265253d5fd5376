"""RayScan Inspections — Guided-form step catalogs.

Each category walks the operator through a fixed list of steps. A step
names the data fields it fills and, for AI scans, the keys of the
extraction result that map onto those fields (``indices[i]`` -> ``fields[i]``).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from schemas.machine import InspectionType

SCREEN = "screen"
DOCUMENT = "document"


@dataclass(frozen=True)
class InspectionStep:
    id: str
    label: str
    desc: str
    fields: tuple[str, ...]
    indices: tuple[str, ...] = ()
    scan_type: str = SCREEN
    manual_entry: bool = False
    show_settings: bool = False
    settings_group: str | None = None
    default_presets: dict[str, str | None] = field(default_factory=dict)


def _scatter_pair(prefix: str, six_foot: str, operator: str, hint: str = "Order: Dose") -> tuple[InspectionStep, ...]:
    return (
        InspectionStep(f"{prefix}1", "1. Scatter (6ft)", hint, (six_foot,), ("mR",)),
        InspectionStep(f"{prefix}2", "2. Scatter (Operator)", hint, (operator,), ("mR",)),
    )


DENTAL_STEPS = (
    InspectionStep("scan1", "1. Technique Scan", "Order: kVp, Dose, Time, HVL",
                   ("kvp", "mR1", "time1", "hvl"), ("kvp", "mR", "time", "hvl")),
    InspectionStep("scan2", "2. Reproducibility", "Order: Dose (2nd), Time (3rd)", ("mR2", "time2"), ("mR", "time")),
    InspectionStep("scan3", "3. Reproducibility", "Order: Dose (2nd), Time (3rd)", ("mR3", "time3"), ("mR", "time")),
    InspectionStep("scan4", "4. Reproducibility", "Order: Dose (2nd), Time (3rd)", ("mR4", "time4"), ("mR", "time")),
    InspectionStep("scan5", "5. Scatter (6ft)", "Order: Dose (2nd)", ("6 foot",), ("mR",)),
    InspectionStep("scan6", "6. Scatter (Operator)", "Order: Dose (2nd)", ("operator location",), ("mR",)),
)

_EXPOSURE = ("kvp", "mR", "time")

GENERAL_STEPS = (
    InspectionStep("g1", "1. Linearity (Low)", "Exp 1", ("g1_kvp", "g1_mr", "g1_time"), _EXPOSURE,
                   show_settings=True, settings_group="g1",
                   default_presets={"kvp": "70", "mas": "10", "time": ""}),
    InspectionStep("g2a", "2. Reproducibility (1/4)", "Exp 2", ("g2a_kvp", "g2a_mr", "g2a_time"), _EXPOSURE,
                   show_settings=True, settings_group="g2",
                   default_presets={"kvp": "70", "mas": "16", "time": ""}),
    InspectionStep("g2b", "2. Reproducibility (2/4)", "Exp 3", ("g2b_kvp", "g2b_mr", "g2b_time"), _EXPOSURE,
                   settings_group="g2"),
    InspectionStep("g2c", "2. Reproducibility (3/4)", "Exp 4", ("g2c_kvp", "g2c_mr", "g2c_time"), _EXPOSURE,
                   settings_group="g2"),
    InspectionStep("g2d", "2. Reproducibility (4/4)", "Exp 5", ("g2d_kvp", "g2d_mr", "g2d_time"), _EXPOSURE,
                   settings_group="g2"),
    InspectionStep("g3", "3. Linearity (High)", "Exp 6", ("g3_kvp", "g3_mr", "g3_time"), _EXPOSURE,
                   show_settings=True, settings_group="g3",
                   default_presets={"kvp": "70", "mas": "20", "time": ""}),
    InspectionStep("g4", "4. HVL Check", "Exp 7", ("g4_kvp", "g4_hvl"), ("kvp", "hvl"),
                   show_settings=True, settings_group="g4",
                   default_presets={"kvp": "90", "mas": "40", "time": None}),
    InspectionStep("g5", "5. Scatter (6ft)", "Exp 8", ("g5_scatter",), ("mR",), settings_group="g4"),
    InspectionStep("g6", "6. Scatter (Operator)", "Exp 9", ("g6_scatter",), ("mR",), settings_group="g4"),
)

ANALYTICAL_STEPS = _scatter_pair("a", "scatter_6ft", "scatter_operator")
BONE_DENSITY_STEPS = _scatter_pair("bd", "scatter_6ft", "scatter_operator", "Order: Dose (Default <1)")
INDUSTRIAL_STEPS = _scatter_pair("i", "scatter_6ft", "scatter_operator", "Order: Dose (Default <1)")
CBCT_STEPS = _scatter_pair("cbct", "6 foot", "operator location")
PANORAMIC_STEPS = _scatter_pair("pano", "6 foot", "operator location")

FLUORO_MEASURE_STEP = InspectionStep(
    "f1", "1. Max Exposure & HVL (Standard)", "RaySafe: Measure kVp, Rate & HVL.",
    ("kvp", "r/min", "hvl"), ("kvp", "mR", "hvl"),
    show_settings=True, settings_group="f1",
    default_presets={"mas": "Manual mA", "kvp": "120", "time": None},
)

FLUORO_BOOST_MEASURE_STEP = InspectionStep(
    "f1_boost", "1b. Max Exposure (Boost)", "Set Boost mA. Measure kVp & Rate.",
    ("kvp_boost", "r/min_boost"), ("kvp", "mR"),
    show_settings=True, settings_group="f1_boost",
    default_presets={"mas": "Boost mA", "kvp": "120", "time": None},
)

_PHYSICIST_FIELDS = ("pkvp", "pma", "pr/min", "phvl", "phvl_kvp", "pname", "pdate")
_PHYSICIST_BOOST_FIELDS = ("pkvp_boost", "pma_boost", "pr/min_boost")

FLUORO_REPORT_STEP = InspectionStep(
    "f3", "2. Physicist Report Data", "Scan the previous report (multiple pages allowed).",
    _PHYSICIST_FIELDS, _PHYSICIST_FIELDS, scan_type=DOCUMENT,
)

CT_STEPS = (
    InspectionStep("ct1", "1. Technique Data", "Manual Entry (Time, kVp, mA/mAs)",
                   ("time", "kvp", "ma", "mas"), manual_entry=True),
    InspectionStep("ct2", "2. Scatter (Operator)", "Scan Dose (Usually <1)", ("operator_scatter",), ("mR",)),
    InspectionStep("ct3", "3. Physicist Info", "Scan report for Name & Date (no data needed).",
                   ("pname", "pdate"), ("pname", "pdate"), scan_type=DOCUMENT),
)

CABINET_STEPS = (
    InspectionStep("cab1", "1. Entrance Scatter", "Scan Dose (Default <1)", ("entrance",), ("mR",)),
    InspectionStep("cab2", "2. Exit Scatter", "Scan Dose (Default <1)", ("exit",), ("mR",)),
    InspectionStep("cab3", "3. Operator Scatter", "Scan Dose (Default <1)", ("operator_scatter",), ("mR",)),
)

ACCELERATOR_STEPS = (
    InspectionStep("acc1", "1. Door Scatter", "Scan Dose (Default <1)", ("door_scatter",), ("mR",)),
    InspectionStep("acc2", "2. Console Scatter", "Scan Dose (Default <1)", ("console_scatter",), ("mR",)),
    InspectionStep("acc3", "3. Unit Details", "Manual Entry",
                   ("max_energy", "license_required", "license_number", "rso_name", "obi"), manual_entry=True),
)

_STATIC_STEPS: dict[InspectionType, tuple[InspectionStep, ...]] = {
    InspectionType.DENTAL: DENTAL_STEPS,
    InspectionType.GENERAL: GENERAL_STEPS,
    InspectionType.ANALYTICAL: ANALYTICAL_STEPS,
    InspectionType.BONE_DENSITY: BONE_DENSITY_STEPS,
    InspectionType.INDUSTRIAL: INDUSTRIAL_STEPS,
    InspectionType.CBCT: CBCT_STEPS,
    InspectionType.PANORAMIC: PANORAMIC_STEPS,
    InspectionType.CT: CT_STEPS,
    InspectionType.CABINET: CABINET_STEPS,
    InspectionType.ACCELERATOR: ACCELERATOR_STEPS,
}


def fluoroscope_steps(has_hlc: bool) -> tuple[InspectionStep, ...]:
    """Fluoroscope steps; a high-level-control unit adds the boost measurements."""
    if not has_hlc:
        return (FLUORO_MEASURE_STEP, FLUORO_REPORT_STEP)
    report = replace(
        FLUORO_REPORT_STEP,
        label="3. Physicist Report Data",
        fields=FLUORO_REPORT_STEP.fields + _PHYSICIST_BOOST_FIELDS,
        indices=FLUORO_REPORT_STEP.indices + _PHYSICIST_BOOST_FIELDS,
    )
    return (FLUORO_MEASURE_STEP, FLUORO_BOOST_MEASURE_STEP, report)


def steps_for(category: InspectionType, data: dict[str, str] | None = None) -> tuple[InspectionStep, ...]:
    """Steps the guided form shows for a machine of ``category``."""
    if category == InspectionType.FLUOROSCOPE:
        return fluoroscope_steps((data or {}).get("has_hlc") == "true")
    return _STATIC_STEPS[category]


def find_step(category: InspectionType, step_id: str, data: dict[str, str] | None = None) -> InspectionStep | None:
    for step in steps_for(category, data):
        if step.id == step_id:
            return step
    return None


def step_fields(category: InspectionType, data: dict[str, str] | None = None) -> tuple[str, ...]:
    """Every data field the category's steps can fill, in step order."""
    return tuple(f for step in steps_for(category, data) for f in step.fields)


def has_measurement(category: InspectionType, data: dict[str, str]) -> bool:
    """True when any field the category's steps fill holds a non-blank value."""
    return any(str(data.get(f, "")).strip() for f in step_fields(category, data))
