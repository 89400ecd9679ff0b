import json
from pathlib import Path

import pytest

from mapping_config import CapacityMappingConfig, config_from_dict

FIXTURE_DIR = Path(__file__).resolve().parent / "tests" / "fixtures"
EXAMPLE_MAPPINGS = Path(__file__).resolve().parent / "mappings.example.json"


@pytest.fixture
def empty_config():
    return CapacityMappingConfig()


@pytest.fixture
def mappings_dict():
    return json.loads(EXAMPLE_MAPPINGS.read_text(encoding="utf-8"))


@pytest.fixture
def config(mappings_dict):
    return config_from_dict(mappings_dict)


@pytest.fixture
def fixture_dir():
    return FIXTURE_DIR

