# records.py
# SPDX-License-Identifier: MIT
"""Helpers for turning ``<Record .../>`` strings into output records."""

from __future__ import annotations

import hashlib
import re
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Any

from .extract import count_record_markers, extract_records
from .interfaces import ChunkContext
from .log import get_logger

__all__ = [
    "RECORD_META_SCHEMA_VERSION",
    "sha256_text",
    "parse_record_attributes",
    "normalize_metric_type",
    "parse_metric_value",
    "parse_health_date",
    "format_record_text",
    "build_health_metric",
    "count_record_markers",
    "build_chunk_record",
]

log = get_logger(__name__)

# Bump when chunk record meta fields change so downstream consumers can detect mixes.
RECORD_META_SCHEMA_VERSION = "1"

# -----------------------
# Hashing utilities
# -----------------------

def sha256_text(text: str) -> str:
    """Return hex sha256 of UTF-8 encoded text (no BOM)."""
    h = hashlib.sha256()
    h.update(text.encode("utf-8", "strict"))
    return h.hexdigest()


# -----------------------
# Record attributes
# -----------------------

_METRIC_TYPES: dict[str, str] = {
    "HKQuantityTypeIdentifierHeartRate": "heart_rate",
    "HKQuantityTypeIdentifierBloodPressureSystolic": "blood_pressure_systolic",
    "HKQuantityTypeIdentifierBloodPressureDiastolic": "blood_pressure_diastolic",
    "HKQuantityTypeIdentifierStepCount": "step_count",
    "HKQuantityTypeIdentifierDistanceWalkingRunning": "distance_walking_running",
    "HKQuantityTypeIdentifierActiveEnergyBurned": "active_energy_burned",
    "HKQuantityTypeIdentifierBasalEnergyBurned": "basal_energy_burned",
    "HKQuantityTypeIdentifierBodyMass": "body_weight",
    "HKQuantityTypeIdentifierHeight": "height",
    "HKQuantityTypeIdentifierBloodGlucose": "blood_glucose",
    "HKQuantityTypeIdentifierOxygenSaturation": "oxygen_saturation",
    "HKQuantityTypeIdentifierBodyTemperature": "body_temperature",
    "HKQuantityTypeIdentifierRespiratoryRate": "respiratory_rate",
    "HKCategoryTypeIdentifierSleepAnalysis": "sleep_analysis",
    "HKWorkoutTypeIdentifier": "workout",
}

_HK_PREFIX_RE = re.compile(r"^HK(?:Quantity|Category|Correlation|Data|Workout)?TypeIdentifier")
_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

_APPLE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S %z"


def parse_record_attributes(record_xml: str) -> dict[str, str]:
    """Return the attributes of a single ``<Record .../>`` element.

    Malformed fragments yield an empty dict rather than raising.
    """
    try:
        elem = ET.fromstring(record_xml)
    except ET.ParseError as exc:
        log.debug("Could not parse record fragment: %s", exc)
        return {}
    return dict(elem.attrib)


def normalize_metric_type(hk_type: str) -> str:
    """Map a HealthKit type identifier to a snake_case metric name.

    Known identifiers use fixed names (``HKQuantityTypeIdentifierBodyMass``
    becomes ``body_weight``); anything else drops the ``HK...TypeIdentifier``
    prefix and converts the CamelCase rest.
    """
    if not hk_type:
        return ""
    known = _METRIC_TYPES.get(hk_type)
    if known:
        return known
    stem = _HK_PREFIX_RE.sub("", hk_type) or hk_type
    return _CAMEL_BOUNDARY_RE.sub("_", stem).lower()


def parse_metric_value(value: str) -> float | str:
    """Return ``value`` as a float when numeric, else unchanged (categorical data)."""
    try:
        return float(value)
    except (TypeError, ValueError):
        return value


def parse_health_date(text: str | None) -> datetime | None:
    """Parse an export timestamp such as ``2024-06-15 14:25:19 +0200``.

    Falls back to ISO 8601. Returns None for missing or unparseable input.
    """
    if not text:
        return None
    try:
        return datetime.strptime(text.strip(), _APPLE_DATE_FORMAT)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.strip())
    except ValueError:
        log.debug("Unrecognized date format: %r", text)
        return None


def _type_words(hk_type: str) -> str:
    stem = hk_type.replace("HKQuantityTypeIdentifier", "")
    return re.sub(r"([A-Z])", r" \1", stem).strip()


def format_record_text(attrs: dict[str, str]) -> str:
    """Render record attributes as one human-readable line.

    Example: ``Heart Rate: "72" count/min recorded start at ... end at ...
    from source "Watch"``.
    """
    return (
        f"{_type_words(attrs.get('type', ''))}: \"{attrs.get('value', '')}\" "
        f"{attrs.get('unit', '')} recorded start at {attrs.get('startDate', '')} "
        f"end at {attrs.get('endDate', '')} from source \"{attrs.get('sourceName', '')}\""
    )


def build_health_metric(attrs: dict[str, str], user_id: str) -> dict[str, Any] | None:
    """Build a normalized health metric from record attributes.

    Returns None when ``type`` or ``value`` is missing. The timestamp comes
    from ``startDate``, else ``creationDate``, as an ISO string (or None).
    """
    hk_type = attrs.get("type")
    raw_value = attrs.get("value")
    if not hk_type or not raw_value:
        return None
    ts = parse_health_date(attrs.get("startDate") or attrs.get("creationDate"))
    extras = {
        "source_version": attrs.get("sourceVersion"),
        "device": attrs.get("device"),
        "creation_date": attrs.get("creationDate"),
        "start_date": attrs.get("startDate"),
        "end_date": attrs.get("endDate"),
        "original_type": hk_type,
    }
    return {
        "user_id": user_id,
        "metric_type": normalize_metric_type(hk_type),
        "value": parse_metric_value(raw_value),
        "unit": attrs.get("unit") or "",
        "timestamp": ts.isoformat() if ts is not None else None,
        "source": attrs.get("sourceName") or "xml_import",
        "metadata": {k: v for k, v in extras.items() if v is not None},
    }


# -----------------------
# Chunk records
# -----------------------

def build_chunk_record(content: str, context: ChunkContext) -> dict[str, Any]:
    """Build a ``{"text", "meta"}`` record for one chunk.

    ``text`` holds one formatted line per record; fragments that do not
    parse keep their raw XML. ``meta`` carries the chunk identity plus
    content statistics.
    """
    lines: list[str] = []
    records = extract_records(content).records
    for rec in records:
        attrs = parse_record_attributes(rec)
        lines.append(format_record_text(attrs) if attrs else rec)
    text = "\n".join(lines)

    meta = context.as_meta_seed()
    meta.update(
        n_records=len(records),
        original_format="xml",
        content_length=len(text),
        sha256=sha256_text(text),
        schema_version=RECORD_META_SCHEMA_VERSION,
    )
    return {"text": text, "meta": meta}
