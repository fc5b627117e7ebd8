from __future__ import annotations

from pathlib import Path
import sys
import unittest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from skincoach.models import Concern, Severity, SkinProfile, SkinType
from skincoach.services.safety import (
    CAUTION_CLAUSE,
    MAX_NOTES_WORDS,
    NO_FACE_NOTES,
    SAFE_NOTES,
    medical_terms_in,
    sanitize,
)


def _profile(**overrides) -> SkinProfile:
    base = {
        "face_detected": True,
        "skin_type": SkinType.COMBINATION,
        "concerns": [Concern.ACNE, Concern.REDNESS],
        "severity": {Concern.ACNE: Severity.MILD},
        "notes": "A few blemishes on the forehead.",
    }
    base.update(overrides)
    return SkinProfile(**base)


SAMPLES = [
    _profile(),
    _profile(face_detected=False),
    _profile(notes="This looks like a skin disease that needs a prescription."),
    _profile(severity={Concern.ACNE: Severity.NOTICEABLE}),
    _profile(severity={Concern.ACNE: Severity.NOTICEABLE}, notes=" ".join(["word"] * 90)),
    _profile(notes=" ".join(["spot"] * 61)),
    _profile(
        severity={Concern.REDNESS: Severity.NOTICEABLE},
        notes=" ".join(["red"] * 70) + " see a professional",
    ),
    _profile(severity={Concern.ACNE: Severity.NOTICEABLE}, notes=""),
    _profile(notes="Possible rosacea. " + " ".join(["x"] * 80), severity={Concern.REDNESS: Severity.NOTICEABLE}),
]


class TestSanitize(unittest.TestCase):
    def test_no_face_is_neutralized(self) -> None:
        out = sanitize(_profile(face_detected=False, skin_type=SkinType.OILY))
        self.assertFalse(out.face_detected)
        self.assertEqual(out.skin_type, SkinType.UNKNOWN)
        self.assertEqual(out.concerns, [])
        self.assertEqual(out.severity, {})
        self.assertEqual(out.notes, NO_FACE_NOTES)

    def test_medical_terms_replace_notes(self) -> None:
        out = sanitize(_profile(notes="Signs consistent with a DIAGNOSED disorder."))
        self.assertEqual(out.notes, SAFE_NOTES)
        self.assertEqual(medical_terms_in(out.notes), [])

    def test_word_prefix_matching_avoids_false_hits(self) -> None:
        self.assertEqual(medical_terms_in("Keep the routine secure and simple."), [])
        self.assertEqual(medical_terms_in("Possibly diagnosed before"), ["diagnose"])

    def test_top_tier_severity_appends_caution(self) -> None:
        out = sanitize(_profile(severity={Concern.ACNE: Severity.NOTICEABLE}))
        self.assertTrue(out.notes.endswith(CAUTION_CLAUSE))

    def test_caution_not_duplicated_when_professional_mentioned(self) -> None:
        notes = "Consider seeing a skincare professional."
        out = sanitize(_profile(severity={Concern.ACNE: Severity.NOTICEABLE}, notes=notes))
        self.assertEqual(out.notes, notes)

    def test_long_notes_are_truncated_with_ellipsis(self) -> None:
        out = sanitize(_profile(notes=" ".join(["spot"] * 75)))
        words = out.notes.split()
        self.assertEqual(len(words), MAX_NOTES_WORDS)
        self.assertTrue(out.notes.endswith("..."))

    def test_caution_survives_truncation(self) -> None:
        out = sanitize(_profile(severity={Concern.ACNE: Severity.NOTICEABLE}, notes=" ".join(["word"] * 90)))
        self.assertLessEqual(len(out.notes.split()), MAX_NOTES_WORDS)
        self.assertTrue(out.notes.endswith(CAUTION_CLAUSE))

    def test_idempotent(self) -> None:
        for sample in SAMPLES:
            with self.subTest(notes=sample.notes[:30], face=sample.face_detected):
                once = sanitize(sample)
                self.assertEqual(sanitize(once), once)

    def test_notes_never_exceed_word_cap(self) -> None:
        for sample in SAMPLES:
            with self.subTest(notes=sample.notes[:30]):
                self.assertLessEqual(len(sanitize(sample).notes.split()), MAX_NOTES_WORDS)
