from __future__ import annotations

from pathlib import Path
import sys
import unittest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from skincoach.config import Settings


class TestSettingsFromEnv(unittest.TestCase):
    def test_defaults(self) -> None:
        settings = Settings.from_env({})
        self.assertEqual(settings.vision_provider, "openai")
        self.assertIsNone(settings.openai_api_key)
        self.assertIsNone(settings.redis_url)
        self.assertEqual(settings.vision_timeout_s, 30.0)
        self.assertEqual(settings.port, 8080)

    def test_reads_and_normalizes_values(self) -> None:
        settings = Settings.from_env(
            {
                "VISION_PROVIDER": " Demo ",
                "OPENAI_BASE_URL": "https://proxy.example/v1/",
                "CATALOG_URL": "https://catalog.example/",
                "REDIS_URL": "redis://cache:6379/0",
                "LOG_LEVEL": "debug",
                "PORT": "9000",
            }
        )
        self.assertEqual(settings.vision_provider, "demo")
        self.assertEqual(settings.openai_base_url, "https://proxy.example/v1")
        self.assertEqual(settings.catalog_url, "https://catalog.example")
        self.assertEqual(settings.redis_url, "redis://cache:6379/0")
        self.assertEqual(settings.log_level, "DEBUG")
        self.assertEqual(settings.port, 9000)

    def test_bad_values_fall_back(self) -> None:
        settings = Settings.from_env({"VISION_PROVIDER": "gemini", "VISION_TIMEOUT_S": "soon"})
        self.assertEqual(settings.vision_provider, "openai")
        self.assertEqual(settings.vision_timeout_s, 30.0)

    def test_commit_sha_prefers_platform_metadata(self) -> None:
        settings = Settings.from_env({"GITHUB_SHA": "ci-sha", "HEROKU_SLUG_COMMIT": "slug-sha"})
        self.assertEqual(settings.commit_sha, "slug-sha")
        self.assertEqual(Settings.from_env({"GIT_SHA": " abc123 "}).commit_sha, "abc123")
        self.assertIsNone(Settings.from_env({}).commit_sha)
