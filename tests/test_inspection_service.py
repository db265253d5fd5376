"""Workflow tests through the InspectionService facade."""

import io
import zipfile
from datetime import date
from types import SimpleNamespace

import pytest
from docx import Document

from core.exceptions import (
    BusinessRuleViolation,
    DuplicateImportError,
    ResourceNotFound,
    ValidationError,
)
from schemas.machine import ExtraMachineRequest, InspectionType, NoDataReason
from services.field_extraction import FieldExtractor, ScanImage
from services.inspection_service import InspectionService, resolve_no_data_reason


def blank_template() -> bytes:
    document = Document()
    document.add_paragraph("{registration number} {note}")
    out = io.BytesIO()
    document.save(out)
    return out.getvalue()


def extractor_replying(reply: str) -> FieldExtractor:
    message = SimpleNamespace(content=reply)
    response = SimpleNamespace(choices=[SimpleNamespace(message=message)])
    completions = SimpleNamespace(create=lambda **kwargs: response)
    return FieldExtractor(client=SimpleNamespace(chat=SimpleNamespace(completions=completions)))


@pytest.fixture
def imported(service, make_row):
    """One facility with a general machine and a combination pair."""
    return service.import_rows([
        make_row(credential="R-1"),
        make_row(credential_type="Combination R&F", credential="R-5", details="Acme - RF - 9"),
        make_row(credential_type="Combination R&F", credential="R-5", details="Acme - RF - 9"),
    ])


class TestImport:
    def test_import_adds_machines(self, service, imported):
        assert len(service.registry) == 3
        (facility,) = service.list_facilities()
        assert facility.entity_id == "100"
        assert facility.machine_count == 3

    def test_duplicate_import_changes_nothing(self, service, imported, make_row):
        with pytest.raises(DuplicateImportError):
            service.import_rows([make_row(credential="R-2", entity_id=300), make_row(credential="R-3")])
        assert len(service.registry) == 3
        assert service.registry.entity_ids() == {"100"}

    def test_store_receives_imported_machines(self, service, store, imported):
        assert len(store.load(service.registry.owner_id)) == 3


class TestFieldEdits:
    def test_update_field(self, service, imported):
        machine = service.update_field(imported[0].id, "g1_mr", "5")
        assert machine.data == {"g1_mr": "5"}

    def test_blank_key_rejected(self, service, imported):
        with pytest.raises(ValidationError):
            service.update_field(imported[0].id, "", "5")

    def test_num_tubes_resizes_group(self, service, imported):
        service.update_field(imported[0].id, "num_tubes", "3")

        locations = [m.location for m in service.list_machines("100")]
        assert locations == ["R-1 (1)", "R-1 (2)", "R-1 (3)", "R-5 (F)", "R-5 (R)"]
        assert service.get_machine(imported[0].id).location == "R-1 (1)"

    def test_num_tubes_on_combination_half_rejected(self, service, imported):
        with pytest.raises(BusinessRuleViolation):
            service.update_field(imported[1].id, "num_tubes", "3")
        assert service.get_machine(imported[1].id).data["num_tubes"] == "2"

    def test_out_of_range_num_tubes_is_ignored(self, service, store, imported):
        service.update_field(imported[0].id, "num_tubes", "2")

        for value in ("9", "0", "two"):
            machine = service.update_field(imported[0].id, "num_tubes", value)
            assert machine.data["num_tubes"] == "2"

        group = [m for m in service.list_machines("100") if m.location.startswith("R-1")]
        assert [(m.location, m.data["num_tubes"]) for m in group] == [("R-1 (1)", "2"), ("R-1 (2)", "2")]
        stored = {r["id"]: r for r in store.load(service.registry.owner_id)}
        assert stored[imported[0].id]["data"]["num_tubes"] == "2"

    def test_failed_tube_sync_leaves_no_partial_write(self, service, store, imported, make_machine):
        service.registry.upsert(make_machine(id="other", location="R-1 (2)", serial="OTHER"))

        with pytest.raises(BusinessRuleViolation):
            service.update_field(imported[0].id, "num_tubes", "2")

        machine = service.get_machine(imported[0].id)
        assert machine.location == "R-1"
        assert "num_tubes" not in machine.data
        stored = {r["id"]: r for r in store.load(service.registry.owner_id)}
        assert "num_tubes" not in stored[imported[0].id]["data"]

    def test_num_tubes_on_single_tube_category_is_plain_data(self, service, imported):
        service.change_type(imported[0].id, "dental", "Intraoral")
        machine = service.update_field(imported[0].id, "num_tubes", "9")
        assert machine.data == {"num_tubes": "9"}
        assert machine.location == "R-1"

    def test_update_fields_applies_in_order(self, service, imported):
        machine = service.update_fields(imported[0].id, {"g1_mr": "5", "g1_kvp": "70"})
        assert machine.data == {"g1_mr": "5", "g1_kvp": "70"}

    def test_update_details(self, service, imported):
        machine = service.update_details(imported[0].id, serial="NEW")
        assert (machine.make, machine.model, machine.serial) == ("Acme", "X100", "NEW")

    def test_change_type_unpairs(self, service, imported):
        service.change_type(imported[1].id, "general", "Radiographic")
        assert sorted(m.location for m in service.list_machines("100")) == ["R-1", "R-5"]

    def test_unknown_machine(self, service):
        with pytest.raises(ResourceNotFound):
            service.update_field("missing", "kvp", "1")


class TestExtraMachines:
    def test_numbering(self, service, imported):
        request = ExtraMachineRequest(make="Gen", model="D1", serial="77")
        first = service.create_extra_machine("100", request)
        second = service.create_extra_machine("100", request)

        assert first.location == "R-1-XX1"
        assert second.location == "R-1-XX2"
        assert first.inspection_type == InspectionType.DENTAL
        assert first.type == "Intraoral"
        assert first.full_details == "Gen - D1 - 77"
        assert first.registrant_name == "Clinic One"

    def test_numbering_after_delete(self, service, imported):
        request = ExtraMachineRequest()
        first = service.create_extra_machine("100", request)
        second = service.create_extra_machine("100", request)
        service.delete_extra_machine(first.id)
        third = service.create_extra_machine("100", request)
        assert third.location == "R-1-XX3"
        assert third.id not in (first.id, second.id)

    def test_unknown_facility(self, service):
        with pytest.raises(ResourceNotFound):
            service.create_extra_machine("404", ExtraMachineRequest())

    def test_imported_machine_cannot_be_deleted(self, service, imported):
        with pytest.raises(BusinessRuleViolation):
            service.delete_extra_machine(imported[0].id)
        assert len(service.registry) == 3


class TestCompletion:
    def test_mark_no_data(self, service, imported):
        machine = service.mark_no_data(imported[0].id, "operational")

        assert machine.is_complete is True
        assert machine.data["noDataReason"] == "MACHINE NOT OPERATIONAL"
        payload = service.build_report_data(machine.id, today=date(2026, 1, 2))
        assert payload["note"] == "MACHINE NOT OPERATIONAL"

    def test_mark_complete_requires_a_measurement(self, service, imported):
        with pytest.raises(BusinessRuleViolation):
            service.mark_complete(imported[0].id)
        assert service.get_machine(imported[0].id).is_complete is False

    def test_tube_bookkeeping_is_not_a_measurement(self, service, imported):
        with pytest.raises(BusinessRuleViolation):
            service.mark_complete(imported[1].id)

    def test_mark_complete_clears_no_data_reason(self, service, imported):
        service.mark_no_data(imported[0].id, NoDataReason.NOT_IN_FACILITY)
        service.update_field(imported[0].id, "g1_mr", "5")

        machine = service.mark_complete(imported[0].id)

        assert machine.is_complete is True
        assert "noDataReason" not in machine.data

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("facility", NoDataReason.NOT_IN_FACILITY),
            ("MACHINE NOT OPERATIONAL", NoDataReason.NOT_OPERATIONAL),
            (NoDataReason.NOT_OPERATIONAL, NoDataReason.NOT_OPERATIONAL),
        ],
    )
    def test_no_data_reason_forms(self, value, expected):
        assert resolve_no_data_reason(value) == expected

    def test_unknown_no_data_reason(self):
        with pytest.raises(ValidationError):
            resolve_no_data_reason("broken")


class TestStepsAndReports:
    def test_fluoroscope_steps_follow_hlc(self, service, imported):
        fluoroscopic = imported[2]
        assert [s.id for s in service.steps(fluoroscopic.id)] == ["f1", "f3"]
        service.update_field(fluoroscopic.id, "has_hlc", "true")
        assert [s.id for s in service.steps(fluoroscopic.id)] == ["f1", "f1_boost", "f3"]

    def test_report_payload_uses_service_inspector(self, service, imported):
        payload = service.build_report_data(imported[1].id, today=date(2026, 1, 2))
        assert payload["inspector"] == "RH"
        assert payload["date"] == "01/02/2026"
        assert payload["registration number"] == "R-5"

    def test_generate_report(self, service, imported):
        service.add_template("General Rad.docx", blank_template())
        filename, content = service.generate_report(imported[0].id)
        assert filename == "Inspection_R-1.docx"
        assert Document(io.BytesIO(content)).paragraphs[0].text.startswith("R-1")

    def test_export_facility(self, service, imported):
        service.add_template("General Rad.docx", blank_template())
        service.mark_no_data(imported[0].id, "operational")

        filename, content = service.export_facility("100")

        assert filename == "Clinic_One_Machine_Pages.zip"
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            assert archive.namelist() == ["Inspection_R-1.docx"]

    def test_export_unknown_facility(self, service):
        with pytest.raises(ResourceNotFound):
            service.export_facility("404")


class TestFacilityLifecycle:
    def test_delete_facility_archives(self, service, imported):
        archive = service.delete_facility("100")
        assert len(archive.machines) == 3
        assert service.list_facilities() == []
        assert service.archives() == [archive]

    def test_delete_unknown_facility(self, service):
        with pytest.raises(ResourceNotFound):
            service.delete_facility("404")

    def test_delete_all(self, service, imported, make_row):
        service.import_rows([make_row(facility="Other", entity_id=200)])
        archives = service.delete_all_facilities()
        assert sorted(a.entity_id for a in archives) == ["100", "200"]
        assert len(service.registry) == 0


class TestExtraction:
    def test_scan_writes_fields(self, registry, imported):
        service = InspectionService(registry, extractor=extractor_replying('{"kvp": "71", "mR": "5.2", "time": null}'),
                                    inspector="RH", date_format="%m/%d/%Y")

        updates = service.apply_scan(imported[0].id, "g1", [ScanImage(b"img")])

        assert updates == {"g1_kvp": "71", "g1_mr": "5.2"}
        assert service.get_machine(imported[0].id).data == updates

    def test_unknown_step(self, registry, imported):
        service = InspectionService(registry, extractor=extractor_replying("{}"))
        with pytest.raises(ResourceNotFound):
            service.apply_scan(imported[0].id, "scan9", [ScanImage(b"img")])

    def test_scan_without_extractor(self, service, imported):
        with pytest.raises(BusinessRuleViolation):
            service.apply_scan(imported[0].id, "g1", [ScanImage(b"img")])

    def test_parse_details_fills_blanks(self, registry, service, make_machine):
        registry.upsert(make_machine(id="x", make="", model="", serial="", full_details="Acme X100 SN1"))
        service.extractor = extractor_replying('{"make": "Acme", "model": "X100", "serial": "SN1"}')

        machine = service.parse_details("x")

        assert (machine.make, machine.model, machine.serial) == ("Acme", "X100", "SN1")


class TestFromSettings:
    def test_wires_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("STORE_BACKEND", "memory")
        monkeypatch.setenv("TEMPLATE_DIRECTORY", str(tmp_path / "templates"))
        monkeypatch.setenv("REPORT_INSPECTOR", "JD")

        service = InspectionService.from_settings()
        try:
            assert len(service.registry) == 0
            assert service.inspector == "JD"
            assert service.extractor.available is False
            assert service.templates.names() == {}
        finally:
            service.registry.close()
