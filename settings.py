"""
Application settings
====================
Environment-driven settings for the CLI and service layer. Values come from
the process environment, optionally seeded from a .env file.
"""

import os

from dotenv import load_dotenv

from shared import DEFAULT_QUALITY

load_dotenv()


class Settings:
    """Application configuration"""

    MAPPINGS_PATH = os.getenv("MAPPINGS_PATH", "mappings.json")
    OEE_QUALITY = float(os.getenv("OEE_QUALITY", DEFAULT_QUALITY))
    RESULT_CACHE_TTL_SECONDS = float(os.getenv("RESULT_CACHE_TTL_SECONDS", 60))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def validate(cls):
        """Validate numeric settings. Returns a list of problems (empty if valid)."""
        problems = []
        if not 0.0 <= cls.OEE_QUALITY <= 1.0:
            problems.append(f"OEE_QUALITY must be within [0, 1], got {cls.OEE_QUALITY}")
        if cls.RESULT_CACHE_TTL_SECONDS < 0:
            problems.append(
                f"RESULT_CACHE_TTL_SECONDS must be >= 0, got {cls.RESULT_CACHE_TTL_SECONDS}"
            )
        return problems
