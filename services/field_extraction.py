"""RayScan Inspections — AI field extraction.

Reads measurement values off photos of the dosimeter screen or of a prior
physicist report with a vision model, and parses free-text machine
details into make/model/serial.

The model is asked for a JSON object. Replies wrapped in code fences are
accepted; ``null`` or absent keys mean "not found", never an error.
Only one extraction per task key may be pending at a time.
"""

from __future__ import annotations

import base64
import json
import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Optional

from core.exceptions import ExternalServiceError, ScanInProgressError
from logger import get_logger, log_external_call
from schemas.machine import InspectionType
from services.inspection_steps import DOCUMENT, InspectionStep

logger = get_logger(__name__)

SERVICE_NAME = "field-extraction"

SCREEN_DOSE_PROMPT = """
Analyze the RaySafe screen. Return JSON.
Find "kvp", "mR", "time", "hvl". Ignore pulses. Do not convert units. Do not return units.
If you see "4.50 R/min", return "4.50".

- kVp is in the top left box of the screen.
- mR is the TOTAL DOSE (R, mGy, uGy), not the dose rate. It is in the top middle box.
- Time is in the top right box.
- HVL is in the middle left box.
"""

SCREEN_DOSE_RATE_PROMPT = """
Analyze the RaySafe screen. Return JSON.
Find "kvp", "mR", "time", "hvl". Ignore pulses. Do not convert units. Do not return units.
If you see "4.50 R/min", return "4.50".

- kVp is in the top left box of the screen.
- mR is the DOSE RATE (R/min, mGy/min, uGy/s), not the total dose. It is in the middle middle box.
- Time is in the top right box.
- HVL is in the middle left box.
"""

PHYSICIST_REPORT_PROMPT = """
TASK:
1. Analyze these report images. Return JSON.
2. Find the physicist name and the inspection date as "pname" and "pdate".
3. Scan all pages for the physicist's measurements.
4. Return keys: "pkvp", "pma", "pr/min", "pkvp_boost", "pma_boost", "pr/min_boost", "phvl", "phvl_kvp", "pname", "pdate".

Requirements:
1. For kVp, mA and rate, only extract the values for the maximum output settings. Ignore lower settings (e.g. 70 kVp, 80 kVp).
2. For HVL, extract the value measured at a kVp setting around 80. If none exists, use the HVL at the maximum output setting.
3. Do not convert units. Return values exactly as shown.
4. For dose rate, ignore measurements in Gy. Only R/min, mR/min and similar count.
5. Use null if missing.
"""

PHYSICIST_NAME_DATE_PROMPT = """
Analyze these report images. Return JSON.
TASK: Find the physicist name and the date of inspection.
Ignore all measurement data.
Return keys: "pname", "pdate".
Use null if missing.
"""

DETAILS_PROMPT = 'Parse X-ray string: "{details}". Return JSON: {{ "make": "", "model": "", "serial": "" }}.'


@dataclass(frozen=True)
class ScanImage:
    content: bytes
    mime_type: str = "image/jpeg"

    def data_url(self) -> str:
        encoded = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def build_scan_prompt(step: InspectionStep, category: InspectionType) -> str:
    """Instruction for one scan, by step kind and machine category."""
    if step.scan_type == DOCUMENT:
        if category == InspectionType.CT:
            return PHYSICIST_NAME_DATE_PROMPT
        return PHYSICIST_REPORT_PROMPT
    if category == InspectionType.FLUOROSCOPE:
        return SCREEN_DOSE_RATE_PROMPT
    return SCREEN_DOSE_PROMPT


def strip_code_fences(text: str) -> str:
    return text.replace("```json", "").replace("```", "").strip()


def parse_json_reply(text: Optional[str]) -> dict[str, Any]:
    """Decode a model reply into a JSON object.

    Raises:
        ExternalServiceError: The reply is not a JSON object.
    """
    try:
        data = json.loads(strip_code_fences(text or ""))
    except json.JSONDecodeError as e:
        raise ExternalServiceError(SERVICE_NAME, f"unparsable reply: {e}") from e
    if not isinstance(data, dict):
        raise ExternalServiceError(SERVICE_NAME, "reply is not a JSON object")
    return data


def map_scan_result(data: dict[str, Any], fields: Iterable[str], indices: Iterable[str]) -> dict[str, str]:
    """Pair result keys with step fields; null and absent values are dropped."""
    updates: dict[str, str] = {}
    for field_name, key in zip(fields, indices):
        value = data.get(key)
        if value is not None:
            updates[field_name] = str(value)
    return updates


class FieldExtractor:
    """Vision-model extraction with one pending call per task key."""

    def __init__(self, client: Any = None, model: Optional[str] = None):
        """Initialize the extractor.

        Args:
            client: An ``openai.OpenAI`` compatible client; built from
                EXTRACTION_* settings when omitted and a key is configured.
            model: Model name; defaults to EXTRACTION_MODEL.
        """
        from config import get_settings

        settings = get_settings().extraction
        if client is None and settings.configured:
            from openai import OpenAI
            client = OpenAI(api_key=settings.api_key.get_secret_value(), base_url=settings.base_url)
        self.client = client
        self.model = model or settings.model
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()
        self.logger = logger.bind(service="FieldExtractor")

    @property
    def available(self) -> bool:
        return self.client is not None

    def is_pending(self, task_key: str) -> bool:
        with self._lock:
            return task_key in self._in_flight

    @contextmanager
    def _task(self, task_key: str) -> Iterator[None]:
        with self._lock:
            if task_key in self._in_flight:
                raise ScanInProgressError(task_key)
            self._in_flight.add(task_key)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(task_key)

    def _complete(self, content: Any, operation: str) -> dict[str, Any]:
        if not self.available:
            raise ExternalServiceError(SERVICE_NAME, "no API key configured")
        start = time.perf_counter()
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": content}],
                response_format={"type": "json_object"},
                temperature=0,
            )
            text = response.choices[0].message.content
        except Exception as e:
            log_external_call(
                SERVICE_NAME, operation,
                duration_ms=(time.perf_counter() - start) * 1000,
                error=str(e),
            )
            raise ExternalServiceError(SERVICE_NAME, str(e)) from e
        log_external_call(SERVICE_NAME, operation, duration_ms=(time.perf_counter() - start) * 1000)
        return parse_json_reply(text)

    def scan(
        self,
        images: Iterable[ScanImage],
        step: InspectionStep,
        category: InspectionType,
        task_key: Optional[str] = None,
    ) -> dict[str, str]:
        """Extract the step's fields from one or more images.

        Returns the field updates found (possibly empty).

        Raises:
            ScanInProgressError: The same task is already running.
            ExternalServiceError: The call failed or the reply was unusable.
        """
        images = list(images)
        with self._task(task_key or step.id):
            content: list[dict[str, Any]] = [{"type": "text", "text": build_scan_prompt(step, category)}]
            content.extend(
                {"type": "image_url", "image_url": {"url": image.data_url()}} for image in images
            )
            data = self._complete(content, f"scan:{step.scan_type}")

        updates = map_scan_result(data, step.fields, step.indices)
        if not updates:
            self.logger.info("Scan found no values", step_id=step.id, images=len(images))
        return updates

    def parse_details(self, full_details: str, task_key: str = "details") -> dict[str, str]:
        """Split a free-text machine description into make/model/serial."""
        with self._task(task_key):
            data = self._complete(DETAILS_PROMPT.format(details=full_details), "parse_details")
        return {key: str(data.get(key) or "") for key in ("make", "model", "serial")}
