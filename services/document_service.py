"""RayScan Inspections — Report documents.

Fills ``.docx`` templates with report payloads using python-docx. Templates
carry ``{key}`` placeholders; keys missing from the payload render as "".

Features:
    - Template library keyed by inspection category (filename detection)
    - Single machine report: ``Inspection_<location>.docx``
    - Facility bulk export: ``<Facility_Name>_Machine_Pages.zip`` holding
      the completed machines only
"""

from __future__ import annotations

import io
import re
import zipfile
from collections.abc import Callable, Iterable, Iterator, Mapping
from pathlib import Path
from typing import Optional

from docx import Document

from core.exceptions import ExternalServiceError, ResourceNotFound
from logger import get_logger
from schemas.machine import InspectionType, Machine

logger = get_logger(__name__)

PLACEHOLDER = re.compile(r"\{([^{}]+)\}")

# Filename keywords, tested in order against the lower-cased name.
TEMPLATE_KEYWORDS: tuple[tuple[tuple[str, ...], InspectionType], ...] = (
    (("dental",), InspectionType.DENTAL),
    (("gen", "rad"), InspectionType.GENERAL),
    (("bone",), InspectionType.BONE_DENSITY),
    (("industrial", "ir"), InspectionType.INDUSTRIAL),
    (("analytical", "diffraction", "fluorescence"), InspectionType.ANALYTICAL),
    (("fluoro", "c-arm"), InspectionType.FLUOROSCOPE),
    (("ct ", "computed", "tomography"), InspectionType.CT),
    (("cabinet", "baggage", "security"), InspectionType.CABINET),
    (("accelerator", "linac"), InspectionType.ACCELERATOR),
)

# Categories printed on another category's template.
SHARED_TEMPLATES = {
    InspectionType.CBCT: InspectionType.DENTAL,
    InspectionType.PANORAMIC: InspectionType.DENTAL,
}

PayloadBuilder = Callable[[Machine], Mapping[str, str]]


def detect_template_category(filename: str) -> Optional[InspectionType]:
    """Category a template file is for, judged by its name; None if unknown."""
    name = filename.lower()
    for keywords, category in TEMPLATE_KEYWORDS:
        if any(k in name for k in keywords):
            return category
    return None


def template_category_for(category: InspectionType) -> InspectionType:
    return SHARED_TEMPLATES.get(category, category)


def safe_filename(name: str) -> str:
    """Non-alphanumerics become "_", runs of "_" collapse."""
    return re.sub(r"_{2,}", "_", re.sub(r"[^a-z0-9]", "_", name, flags=re.IGNORECASE))


class TemplateLibrary:
    """Report templates by category."""

    def __init__(self, directory: Optional[str] = None):
        self.directory = Path(directory) if directory else None
        self._templates: dict[InspectionType, bytes] = {}
        self._names: dict[InspectionType, str] = {}
        self.logger = logger.bind(service="TemplateLibrary")

    @classmethod
    def from_settings(cls) -> "TemplateLibrary":
        from config import get_settings
        library = cls(get_settings().templates.directory)
        library.load_directory()
        return library

    def load_directory(self) -> int:
        """Register every recognizable ``.docx`` in the directory. Returns the count."""
        if self.directory is None or not self.directory.is_dir():
            return 0
        loaded = 0
        for path in sorted(self.directory.glob("*.docx")):
            if self.add(path.name, path.read_bytes(), persist=False) is not None:
                loaded += 1
        self.logger.info("Templates loaded", directory=str(self.directory), count=loaded)
        return loaded

    def add(self, filename: str, content: bytes, persist: bool = True) -> Optional[InspectionType]:
        """Register a template under the category its filename names.

        Unrecognized names are ignored and return None.
        """
        category = detect_template_category(filename)
        if category is None:
            self.logger.warning("Template name not recognized", filename=filename)
            return None
        self._templates[category] = content
        self._names[category] = filename
        if persist and self.directory is not None:
            self.directory.mkdir(parents=True, exist_ok=True)
            (self.directory / filename).write_bytes(content)
        self.logger.info("Template registered", filename=filename, category=category.value)
        return category

    def names(self) -> dict[str, str]:
        return {category.value: name for category, name in self._names.items()}

    def get(self, category: InspectionType) -> Optional[bytes]:
        return self._templates.get(template_category_for(category))

    def require(self, category: InspectionType) -> bytes:
        template = self.get(category)
        if template is None:
            raise ResourceNotFound("Template", template_category_for(category).value)
        return template


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def _iter_paragraphs(container) -> Iterator:
    yield from container.paragraphs
    for table in container.tables:
        for row in table.rows:
            for cell in row.cells:
                yield from _iter_paragraphs(cell)


def _document_paragraphs(document) -> Iterator:
    yield from _iter_paragraphs(document)
    for section in document.sections:
        for part in (section.header, section.footer):
            if not part.is_linked_to_previous:
                yield from _iter_paragraphs(part)


def _fill_paragraph(paragraph, payload: Mapping[str, str]) -> None:
    runs = paragraph.runs
    if not runs:
        return
    text = "".join(run.text for run in runs)
    if "{" not in text:
        return
    filled = PLACEHOLDER.sub(lambda m: str(payload.get(m.group(1).strip(), "") or ""), text)
    if filled == text:
        return
    # Placeholders may span runs; the first run keeps the paragraph's text.
    runs[0].text = filled
    for run in runs[1:]:
        run.text = ""


def render_document(template: bytes, payload: Mapping[str, str]) -> bytes:
    """Fill a ``.docx`` template.

    Raises:
        ExternalServiceError: The template cannot be opened or saved.
    """
    try:
        document = Document(io.BytesIO(template))
        for paragraph in _document_paragraphs(document):
            _fill_paragraph(paragraph, payload)
        out = io.BytesIO()
        document.save(out)
    except Exception as e:
        logger.error("Document rendering failed", error=str(e), error_type=type(e).__name__)
        raise ExternalServiceError("document-templating", str(e)) from e
    return out.getvalue()


def report_filename(machine: Machine) -> str:
    return f"Inspection_{machine.location}.docx"


def export_filename(facility_name: str) -> str:
    return f"{safe_filename(facility_name or 'Facility')}_Machine_Pages.zip"


class DocumentService:
    """Produces report documents for machines."""

    def __init__(self, templates: TemplateLibrary, build_payload: PayloadBuilder):
        self.templates = templates
        self.build_payload = build_payload
        self.logger = logger.bind(service="DocumentService")

    def generate_report(self, machine: Machine) -> tuple[str, bytes]:
        """Render one machine's report.

        Raises:
            ResourceNotFound: No template for the machine's category.
            ExternalServiceError: Rendering failed.
        """
        template = self.templates.require(machine.inspection_type)
        content = render_document(template, self.build_payload(machine))
        filename = report_filename(machine)
        self.logger.info("Report generated", machine_id=machine.id, filename=filename)
        return filename, content

    def export_facility(self, machines: Iterable[Machine], facility_name: str) -> tuple[str, bytes]:
        """Zip the reports of the completed machines given.

        Machines without a template for their category are skipped.
        """
        buffer = io.BytesIO()
        written = 0
        skipped: list[str] = []
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
            for machine in machines:
                if not machine.is_complete:
                    continue
                template = self.templates.get(machine.inspection_type)
                if template is None:
                    skipped.append(machine.id)
                    continue
                content = render_document(template, self.build_payload(machine))
                archive.writestr(report_filename(machine), content)
                written += 1

        filename = export_filename(facility_name)
        if skipped:
            self.logger.warning("Machines skipped: no template", machine_ids=skipped)
        self.logger.info("Facility exported", filename=filename, documents=written)
        return filename, buffer.getvalue()
