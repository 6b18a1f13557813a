"""
Smoke test: every package module imports cleanly.
"""
import importlib

import pytest

MODULES = [
    "flowsmith.cli.main",
    "flowsmith.config.loader",
    "flowsmith.core.admission",
    "flowsmith.core.assembly",
    "flowsmith.core.blueprint",
    "flowsmith.core.complexity",
    "flowsmith.core.deadline",
    "flowsmith.core.errors",
    "flowsmith.core.exemplars",
    "flowsmith.core.instructions",
    "flowsmith.core.ledger",
    "flowsmith.core.models",
    "flowsmith.core.parsing",
    "flowsmith.core.pipeline",
    "flowsmith.core.pricing",
    "flowsmith.core.prompts",
    "flowsmith.core.request",
    "flowsmith.core.synthesis",
    "flowsmith.core.token_counter",
    "flowsmith.demo.seed_demo_data",
    "flowsmith.sdk.inference",
    "flowsmith.storage.db",
    "flowsmith.storage.models",
    "flowsmith.storage.repository",
]


@pytest.mark.parametrize("name", MODULES)
def test_module_imports(name):
    assert importlib.import_module(name) is not None
