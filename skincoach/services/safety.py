from __future__ import annotations

import logging
import re

from skincoach.models import SkinProfile, SkinType


logger = logging.getLogger("skincoach.safety")

MAX_NOTES_WORDS = 60
ELLIPSIS = "..."

NO_FACE_NOTES = (
    "No facial skin detected in this image. Please upload a clear photo of your face for skin analysis."
)
SAFE_NOTES = (
    "Cosmetic skin characteristics observed. Consider a professional skincare consultation for personalized advice."
)
CAUTION_CLAUSE = "Consider professional skincare advice for noticeable characteristics."
PROFESSIONAL_MARKER = "professional"

MEDICAL_TERMS = (
    "diagnose",
    "diagnosis",
    "disease",
    "disorder",
    "syndrome",
    "pathology",
    "pathological",
    "prescription",
    "medication",
    "medicine",
    "cancer",
    "biopsy",
    "carcinoma",
    "melanoma",
    "tumor",
    "infection",
    "therapy",
    "cure",
    "eczema",
    "psoriasis",
    "rosacea",
    "dermatitis",
)

# Word-prefix match: "diagnosed" hits, "secure" does not.
_MEDICAL_RE = re.compile(r"\b(?:" + "|".join(re.escape(t) for t in MEDICAL_TERMS) + r")", re.IGNORECASE)


def medical_terms_in(text: str) -> list[str]:
    return sorted({m.group(0).lower() for m in _MEDICAL_RE.finditer(text or "")})


def cap_words(text: str, limit: int) -> str:
    words = text.split()
    if len(words) <= limit:
        return text
    return " ".join(words[:limit]) + ELLIPSIS


def no_face_profile() -> SkinProfile:
    return SkinProfile(
        face_detected=False,
        skin_type=SkinType.UNKNOWN,
        concerns=[],
        severity={},
        notes=NO_FACE_NOTES,
    )


def sanitize(profile: SkinProfile) -> SkinProfile:
    """Apply the cosmetic-only output policy to a validated profile.

    The transform is idempotent: feeding its output back in returns an equal
    profile. That holds because the replacement sentence and the caution
    clause contain no lexicon terms and both mention a professional, and the
    caution clause is appended after the word cap so it is never cut off.
    """

    if not profile.face_detected:
        if profile != no_face_profile():
            logger.warning("safety_no_face_override")
        return no_face_profile()

    notes = profile.notes.strip()

    found = medical_terms_in(notes)
    if found:
        logger.warning("safety_medical_terms_replaced terms=%s", ",".join(found))
        notes = SAFE_NOTES

    capped = cap_words(notes, MAX_NOTES_WORDS)
    if profile.has_top_tier_severity and PROFESSIONAL_MARKER not in capped.lower():
        body = cap_words(notes, MAX_NOTES_WORDS - len(CAUTION_CLAUSE.split()))
        capped = f"{body} {CAUTION_CLAUSE}" if body else CAUTION_CLAUSE
    elif capped != notes:
        logger.info("safety_notes_truncated words=%d", MAX_NOTES_WORDS)
    notes = capped

    if notes == profile.notes:
        return profile
    return profile.model_copy(update={"notes": notes})
