"""Tests for AI field extraction with a stubbed chat client."""

import json
import threading
from types import SimpleNamespace

import pytest

from core.exceptions import ExternalServiceError, ScanInProgressError
from schemas.machine import InspectionType
from services.field_extraction import (
    PHYSICIST_NAME_DATE_PROMPT,
    PHYSICIST_REPORT_PROMPT,
    SCREEN_DOSE_PROMPT,
    SCREEN_DOSE_RATE_PROMPT,
    FieldExtractor,
    ScanImage,
    build_scan_prompt,
    map_scan_result,
    parse_json_reply,
)
from services.inspection_steps import CT_STEPS, DENTAL_STEPS, FLUORO_MEASURE_STEP, FLUORO_REPORT_STEP


class FakeCompletions:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(reply=None, error=None):
    completions = FakeCompletions(reply, error)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


class TestPromptSelection:
    def test_screen_scan(self):
        assert build_scan_prompt(DENTAL_STEPS[0], InspectionType.DENTAL) == SCREEN_DOSE_PROMPT

    def test_fluoroscope_screen_reads_rate(self):
        assert build_scan_prompt(FLUORO_MEASURE_STEP, InspectionType.FLUOROSCOPE) == SCREEN_DOSE_RATE_PROMPT

    def test_physicist_report(self):
        assert build_scan_prompt(FLUORO_REPORT_STEP, InspectionType.FLUOROSCOPE) == PHYSICIST_REPORT_PROMPT

    def test_ct_report_wants_name_and_date_only(self):
        assert build_scan_prompt(CT_STEPS[2], InspectionType.CT) == PHYSICIST_NAME_DATE_PROMPT


class TestReplyParsing:
    def test_code_fences_are_stripped(self):
        assert parse_json_reply('```json\n{"kvp": "70"}\n```') == {"kvp": "70"}

    def test_garbage_raises(self):
        with pytest.raises(ExternalServiceError):
            parse_json_reply("not json")

    def test_non_object_raises(self):
        with pytest.raises(ExternalServiceError):
            parse_json_reply("[1, 2]")

    def test_nulls_and_absent_keys_are_dropped(self):
        updates = map_scan_result({"kvp": 70, "mR": None}, ("kvp", "mR1", "time1"), ("kvp", "mR", "time"))
        assert updates == {"kvp": "70"}


class TestScan:
    def test_maps_result_onto_step_fields(self):
        client, completions = fake_client(json.dumps({"kvp": "70.1", "mR": "12.5", "time": "0.2", "hvl": None}))
        extractor = FieldExtractor(client=client, model="test-model")

        updates = extractor.scan([ScanImage(b"img")], DENTAL_STEPS[0], InspectionType.DENTAL)

        assert updates == {"kvp": "70.1", "mR1": "12.5", "time1": "0.2"}
        call = completions.calls[0]
        assert call["model"] == "test-model"
        assert call["response_format"] == {"type": "json_object"}
        content = call["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": SCREEN_DOSE_PROMPT}
        assert content[1]["image_url"]["url"] == "data:image/jpeg;base64,aW1n"

    def test_several_images_in_one_call(self):
        client, completions = fake_client("{}")
        extractor = FieldExtractor(client=client)
        updates = extractor.scan([ScanImage(b"a"), ScanImage(b"b", "image/png")], FLUORO_REPORT_STEP,
                                 InspectionType.FLUOROSCOPE)
        assert updates == {}
        assert len(completions.calls) == 1
        assert len(completions.calls[0]["messages"][0]["content"]) == 3

    def test_provider_failure(self):
        client, _ = fake_client(error=RuntimeError("rate limited"))
        extractor = FieldExtractor(client=client)
        with pytest.raises(ExternalServiceError) as exc:
            extractor.scan([ScanImage(b"x")], DENTAL_STEPS[0], InspectionType.DENTAL)
        assert "rate limited" in exc.value.message
        assert not extractor.is_pending(DENTAL_STEPS[0].id)

    def test_unconfigured(self):
        extractor = FieldExtractor()
        assert extractor.available is False
        with pytest.raises(ExternalServiceError):
            extractor.scan([ScanImage(b"x")], DENTAL_STEPS[0], InspectionType.DENTAL)

    def test_same_task_cannot_run_twice(self):
        started = threading.Event()
        release = threading.Event()

        class SlowCompletions(FakeCompletions):
            def create(self, **kwargs):
                started.set()
                release.wait(5)
                return super().create(**kwargs)

        completions = SlowCompletions('{"kvp": "70"}')
        extractor = FieldExtractor(client=SimpleNamespace(chat=SimpleNamespace(completions=completions)))
        worker = threading.Thread(
            target=extractor.scan, args=([ScanImage(b"x")], DENTAL_STEPS[0], InspectionType.DENTAL, "m1:scan1")
        )
        worker.start()
        assert started.wait(5)
        try:
            assert extractor.is_pending("m1:scan1")
            with pytest.raises(ScanInProgressError):
                extractor.scan([ScanImage(b"x")], DENTAL_STEPS[0], InspectionType.DENTAL, task_key="m1:scan1")
        finally:
            release.set()
            worker.join(5)
        assert not extractor.is_pending("m1:scan1")


class TestParseDetails:
    def test_splits_details(self):
        client, completions = fake_client('{"make": "Acme", "model": "X100", "serial": null}')
        extractor = FieldExtractor(client=client)

        parsed = extractor.parse_details("Acme X100")

        assert parsed == {"make": "Acme", "model": "X100", "serial": ""}
        assert 'Parse X-ray string: "Acme X100"' in completions.calls[0]["messages"][0]["content"]
