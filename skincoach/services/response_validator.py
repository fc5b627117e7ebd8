from __future__ import annotations

import json
import logging
import re
from typing import Any

from skincoach.errors import ParseError, SchemaError
from skincoach.models import Concern, Severity, SkinProfile, SkinType


logger = logging.getLogger("skincoach.response-validator")

REQUIRED_KEYS = ("face_detected", "skin_type", "concerns", "severity", "notes")

_JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

_SKIN_TYPES = {t.value for t in SkinType}
_CONCERNS = {c.value for c in Concern}
_SEVERITIES = {s.value for s in Severity}


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse the outermost ``{...}`` span of a model reply.

    The match is greedy across the whole text so prose before or after the
    object (or markdown fences) is ignored.
    """

    match = _JSON_OBJECT_RE.search(text or "")
    if not match:
        raise ParseError("No JSON found in response")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise SchemaError(f"Invalid JSON in response: {exc}") from exc

    if not isinstance(data, dict):
        raise SchemaError("Response JSON is not an object")
    return data


def _field_problems(data: dict[str, Any]) -> list[str]:
    problems: list[str] = []

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        problems.append(f"missing required keys: {', '.join(missing)}")

    if "face_detected" in data and not isinstance(data["face_detected"], bool):
        problems.append(f"face_detected: expected boolean, got {data['face_detected']!r}")

    skin_type = data.get("skin_type")
    if "skin_type" in data and (not isinstance(skin_type, str) or skin_type not in _SKIN_TYPES):
        problems.append(f"skin_type: invalid value {skin_type!r}")

    concerns = data.get("concerns")
    if "concerns" in data:
        if not isinstance(concerns, list):
            problems.append("concerns: expected a list")
            concerns = None
        else:
            invalid = [c for c in concerns if not isinstance(c, str) or c not in _CONCERNS]
            if invalid:
                problems.append(f"concerns: invalid values {', '.join(repr(c) for c in invalid)}")

    if "severity" in data:
        severity = data["severity"]
        if not isinstance(severity, dict):
            problems.append("severity: expected an object")
        else:
            bad_keys = [k for k in severity if k not in _CONCERNS]
            bad_values = [v for v in severity.values() if not isinstance(v, str) or v not in _SEVERITIES]
            if bad_keys:
                problems.append(f"severity: invalid concern keys {', '.join(repr(k) for k in bad_keys)}")
            if bad_values:
                problems.append(f"severity: invalid levels {', '.join(repr(v) for v in bad_values)}")
            if isinstance(concerns, list) and not bad_keys:
                unlisted = [k for k in severity if k not in concerns]
                if unlisted:
                    problems.append(f"severity: keys not listed in concerns {', '.join(repr(k) for k in unlisted)}")

    if "notes" in data and not isinstance(data["notes"], str):
        problems.append("notes: expected a string")

    return problems


def validate_profile_payload(data: dict[str, Any]) -> SkinProfile:
    problems = _field_problems(data)
    if problems:
        raise SchemaError("; ".join(problems))

    return SkinProfile(
        face_detected=data["face_detected"],
        skin_type=SkinType(data["skin_type"]),
        concerns=[Concern(c) for c in data["concerns"]],
        severity={Concern(k): Severity(v) for k, v in data["severity"].items()},
        notes=data["notes"],
    )


def parse_profile(raw_text: str) -> SkinProfile:
    data = extract_json_object(raw_text)
    profile = validate_profile_payload(data)
    logger.info(
        "vision_response_validated face_detected=%s skin_type=%s concerns=%s",
        profile.face_detected,
        profile.skin_type.value,
        ",".join(c.value for c in profile.concerns) or "none",
    )
    return profile
