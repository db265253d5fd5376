"""RayScan Inspections — Category Classifier.

Maps a free-text license/credential type to one inspection category.

The rule order is a contract: analytical keywords are tested before the
generic "ct" substring ("diffraction" contains "ct"), and CBCT /
"panoramic ct" before plain panoramic and plain CT.
"""

from __future__ import annotations

from typing import NamedTuple

from schemas.machine import COMBINATION_RF, InspectionType

# (keywords, category) in precedence order; first match wins.
CATEGORY_RULES: tuple[tuple[tuple[str, ...], InspectionType], ...] = (
    (("industrial",), InspectionType.INDUSTRIAL),
    (("fluorescence", "diffraction", "electron microscope"), InspectionType.ANALYTICAL),
    (("bone",), InspectionType.BONE_DENSITY),
    (("cbct", "panoramic ct", "panoramic cephalometric ct"), InspectionType.CBCT),
    (("panoramic",), InspectionType.PANORAMIC),
    (("ct", "tomography"), InspectionType.CT),
    (("cabinet", "security"), InspectionType.CABINET),
    (("intraoral",), InspectionType.DENTAL),
    (("radiographic",), InspectionType.GENERAL),
    (("fluoroscope", "c-arm", "fluoro"), InspectionType.FLUOROSCOPE),
    (("accelerator", "linac"), InspectionType.ACCELERATOR),
)

DEFAULT_CATEGORY = InspectionType.DENTAL

RF_MARKERS = ("r&f", "r & f")

# Labels used when a combination unit is split into its two halves.
RADIOGRAPHIC_RF_LABEL = "Radiographic (R&F)"
FLUOROSCOPIC_RF_LABEL = "Fluoroscopic (R&F)"

# Operator-selectable (category, label) pairs, grouped as presented.
TYPE_OPTIONS: tuple[tuple[str, str], ...] = (
    ("dental", "Intraoral"),
    ("dental", "Intraoral Mobile"),
    ("dental", "Intraoral Hand Held"),
    ("cbct", "CBCT"),
    ("panoramic", "Panoramic"),
    ("panoramic", "Panoramic CT"),
    ("general", "Radiographic"),
    ("general", "Radiographic Mobile"),
    ("general", "U-Arm"),
    (COMBINATION_RF, "Combination R&F"),
    ("fluoroscope", "C-Arm"),
    ("fluoroscope", "Mobile C-Arm"),
    ("fluoroscope", "Fluoroscopic"),
    ("fluoroscope", "O-Arm"),
    ("ct", "CT"),
    ("ct", "CT/PET"),
    ("analytical", "Electron Microscope"),
    ("analytical", "X-Ray Diffraction"),
    ("analytical", "X-Ray Fluorescence"),
    ("bone_density", "Bone Density"),
    ("cabinet", "Cabinet"),
    ("industrial", "Industrial"),
    ("accelerator", "Linear Accelerator"),
)


class Classification(NamedTuple):
    inspection_type: InspectionType
    is_combination_rf: bool


def classify_category(descriptor: str | None) -> InspectionType:
    """Return the inspection category for a credential-type descriptor."""
    text = (descriptor or "").lower()
    for keywords, category in CATEGORY_RULES:
        if any(keyword in text for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def is_combination_rf(descriptor: str | None) -> bool:
    """True for descriptors naming a combination radiographic/fluoroscopic unit."""
    text = (descriptor or "").lower()
    return "combination" in text and any(marker in text for marker in RF_MARKERS)


def classify(descriptor: str | None) -> Classification:
    """Classify a descriptor into its category and dual-role flag."""
    return Classification(classify_category(descriptor), is_combination_rf(descriptor))
