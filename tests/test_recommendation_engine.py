from __future__ import annotations

from pathlib import Path
import sys
import unittest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from skincoach.models import (
    CatalogEntry,
    Category,
    Concern,
    RecommendationResult,
    Severity,
    SkinProfile,
    SkinType,
)
from skincoach.services.recommendation import (
    CAUTION_FRAGMENT,
    GENERIC_RATIONALE,
    NO_FACE_RATIONALE,
    FilterStage,
    RecommendationEngine,
    StageMode,
    apply_stages,
    build_rationale,
)


_next_id = 0


def _entry(category: str, name: str, *, rating=None, ingredients=(), tags=(), price=10.0) -> CatalogEntry:
    global _next_id
    _next_id += 1
    return CatalogEntry(
        id=_next_id,
        name=name,
        brand="Brand",
        category=category,
        price=price,
        comedogenic_rating=rating,
        ingredients=list(ingredients),
        concern_tags=list(tags),
        product_url=f"https://shop.example/p/{_next_id}",
        image_url=f"https://cdn.example/p/{_next_id}.jpg",
    )


def _profile(skin_type="normal", concerns=(), severity=None, face=True) -> SkinProfile:
    return SkinProfile(
        face_detected=face,
        skin_type=skin_type,
        concerns=list(concerns),
        severity=severity or {},
        notes="",
    )


CATALOG = [
    _entry("cleanser", "Salicylic Acid Cleanser", rating=0, ingredients=["salicylic acid", "zinc"], tags=["acne", "oiliness"]),
    _entry("cleanser", "Oil Cleanser", rating=4, ingredients=["olive oil", "Fragrance"], tags=["dryness"]),
    _entry("cleanser", "Hydrating Cleanser", rating=0, ingredients=["glycerin"], tags=["dryness", "sensitivity"]),
    _entry("cleanser", "Cream Cleanser", rating=None, ingredients=["glycerin", "cetyl alcohol"], tags=["sensitivity"]),
    _entry("cleanser", "Gel Cleanser", rating=1, ingredients=["glycerin"], tags=["oiliness", "acne"]),
    _entry("serum", "Niacinamide 10% + Zinc 1%", rating=0, ingredients=["niacinamide", "zinc pca"], tags=["acne", "oiliness", "redness"]),
    _entry("serum", "Vitamin C Serum", rating=1, ingredients=["l-ascorbic acid", "vitamin e"], tags=["hyperpigmentation"]),
    _entry("serum", "Perfumed Glow Serum", rating=3, ingredients=["parfum", "retinol"], tags=["hyperpigmentation"]),
    _entry("moisturizer", "Oil-Free Gel Moisturizer", rating=1, ingredients=["hyaluronic acid", "dimethicone"], tags=["oiliness"]),
    _entry("moisturizer", "Rich Repair Cream", rating=3, ingredients=["ceramide np", "shea butter"], tags=["dryness"]),
    _entry("moisturizer", "Daily Lotion", rating=2, ingredients=["glycerin"], tags=["dryness", "oiliness"]),
    _entry("sunscreen", "Mineral SPF 50", rating=None, ingredients=["zinc oxide"], tags=["sensitivity", "redness"]),
]


class TestApplyStages(unittest.TestCase):
    def test_prefer_stage_reverts_when_empty(self) -> None:
        pool = CATALOG[:3]
        stages = [FilterStage("nothing", lambda e: False, StageMode.PREFER)]
        result, trace = apply_stages(pool, stages)
        self.assertEqual(result, pool)
        self.assertTrue(trace[0].reverted)

    def test_hard_stage_may_empty_the_pool(self) -> None:
        pool = CATALOG[:3]
        stages = [FilterStage("nothing", lambda e: False, StageMode.HARD)]
        result, trace = apply_stages(pool, stages)
        self.assertEqual(result, [])
        self.assertFalse(trace[0].reverted)

    def test_prefer_after_hard_reverts_to_hard_result_only(self) -> None:
        pool = CATALOG[:3]
        stages = [
            FilterStage("low", lambda e: (e.comedogenic_rating or 0) <= 2, StageMode.HARD),
            FilterStage("oil", lambda e: "olive oil" in e.ingredients, StageMode.PREFER),
        ]
        result, _ = apply_stages(pool, stages)
        self.assertEqual([e.name for e in result], ["Salicylic Acid Cleanser", "Hydrating Cleanser"])


class TestRecommendationEngine(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = RecommendationEngine()

    def test_no_face_returns_empty_picks(self) -> None:
        result = self.engine.recommend(_profile(face=False, skin_type="unknown"), CATALOG)
        self.assertEqual(result.picks, {})
        self.assertEqual(result.rationale, NO_FACE_RATIONALE)

    def test_acne_scenario_keeps_only_low_comedogenic_cleanser(self) -> None:
        catalog = [
            _entry("cleanser", "Clarifying Wash", rating=1, tags=["acne"]),
            _entry("cleanser", "Heavy Balm", rating=4, tags=["acne"]),
        ]
        profile = _profile("oily", ["acne"], {"acne": "moderate"})
        result = self.engine.recommend(profile, catalog)
        self.assertEqual([p.name for p in result.picks[Category.CLEANSER]], ["Clarifying Wash"])

    def test_acne_never_returns_high_comedogenic_products(self) -> None:
        rating_by_name = {e.name: e.comedogenic_rating for e in CATALOG}
        for concerns in (["acne"], ["acne", "dryness"], ["acne", "hyperpigmentation", "sensitivity"]):
            with self.subTest(concerns=concerns):
                result = self.engine.recommend(_profile("dry", concerns), CATALOG)
                for picks in result.picks.values():
                    for pick in picks:
                        rating = rating_by_name[pick.name]
                        self.assertTrue(rating is None or rating <= 2, pick.name)

    def test_sensitivity_excludes_fragrance_case_insensitively(self) -> None:
        result = self.engine.recommend(_profile("normal", ["sensitivity", "hyperpigmentation"]), CATALOG)
        names = [p.name for picks in result.picks.values() for p in picks]
        self.assertNotIn("Oil Cleanser", names)
        self.assertNotIn("Perfumed Glow Serum", names)
        self.assertEqual([p.name for p in result.picks[Category.SERUM]], ["Vitamin C Serum"])

    def test_category_with_no_entries_is_absent(self) -> None:
        result = self.engine.recommend(_profile("oily", ["oiliness"]), CATALOG)
        self.assertNotIn(Category.SPOT_TREATMENT, result.picks)

    def test_empty_catalog_returns_no_picks(self) -> None:
        result = self.engine.recommend(_profile("oily", ["acne"]), [])
        self.assertEqual(result.picks, {})

    def test_at_most_three_picks_in_catalog_order(self) -> None:
        result = self.engine.recommend(_profile("normal"), CATALOG)
        cleansers = [p.name for p in result.picks[Category.CLEANSER]]
        self.assertEqual(cleansers, ["Salicylic Acid Cleanser", "Oil Cleanser", "Hydrating Cleanser"])
        for picks in result.picks.values():
            self.assertLessEqual(len(picks), 3)

    def test_concern_match_reverts_when_no_tag_matches(self) -> None:
        result = self.engine.recommend(_profile("normal", ["hyperpigmentation"]), CATALOG)
        # No sunscreen is tagged for hyperpigmentation, so the category pool is kept.
        self.assertEqual([p.name for p in result.picks[Category.SUNSCREEN]], ["Mineral SPF 50"])

    def test_affinity_prefers_matching_ingredients(self) -> None:
        result = self.engine.recommend(_profile("normal", ["oiliness"]), CATALOG)
        self.assertEqual(
            [p.name for p in result.picks[Category.CLEANSER]],
            ["Salicylic Acid Cleanser"],
        )

    def test_moisturizer_texture_by_skin_type(self) -> None:
        oily = self.engine.recommend(_profile("oily", ["oiliness", "dryness"]), CATALOG)
        self.assertEqual([p.name for p in oily.picks[Category.MOISTURIZER]], ["Oil-Free Gel Moisturizer"])

        dry = self.engine.recommend(_profile("dry", ["dryness"]), CATALOG)
        self.assertEqual([p.name for p in dry.picks[Category.MOISTURIZER]], ["Rich Repair Cream"])

    def test_texture_preference_only_affects_moisturizer(self) -> None:
        result = self.engine.recommend(_profile("dry"), CATALOG)
        self.assertEqual(len(result.picks[Category.CLEANSER]), 3)

    def test_pick_projection(self) -> None:
        result = self.engine.recommend(_profile("normal", ["redness"]), CATALOG)
        pick = result.picks[Category.SERUM][0]
        self.assertEqual(pick.name, "Niacinamide 10% + Zinc 1%")
        self.assertEqual(pick.tags, [Concern.ACNE, Concern.OILINESS, Concern.REDNESS])
        self.assertTrue(pick.url.startswith("https://shop.example/p/"))

    def test_result_round_trips_through_json(self) -> None:
        result = self.engine.recommend(_profile("oily", ["acne", "redness"], {"acne": "noticeable"}), CATALOG)
        restored = RecommendationResult.model_validate_json(result.model_dump_json())
        self.assertEqual(restored, result)
        self.assertIn("cleanser", result.model_dump(mode="json")["picks"])


class TestRationale(unittest.TestCase):
    def test_no_concerns_uses_generic_sentence(self) -> None:
        self.assertEqual(build_rationale(_profile("oily")), GENERIC_RATIONALE)

    def test_fragments_per_concern_and_caution(self) -> None:
        text = build_rationale(_profile("oily", ["acne", "dryness"], {"acne": "noticeable"}))
        self.assertIn("oily skin", text)
        self.assertIn("non-comedogenic", text)
        self.assertIn("hydrating ingredients", text)
        self.assertIn(CAUTION_FRAGMENT, text)

    def test_unknown_skin_type_has_no_skin_type_fragment(self) -> None:
        text = build_rationale(_profile("unknown", ["redness"], {"redness": Severity.MILD}))
        self.assertNotIn("unknown", text)
        self.assertNotIn(CAUTION_FRAGMENT, text)
