from __future__ import annotations

import os

import pytest


def _db_enabled() -> bool:
    flag = os.getenv("TIERGATE_PYTEST_DB") or os.getenv("PYTEST_DB")
    if flag:
        return flag.strip().lower() in {"1", "true", "yes", "on"}
    return False


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "requires_db: marks tests that need a configured database (enable with TIERGATE_PYTEST_DB=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if _db_enabled():
        return
    skip_db = pytest.mark.skip(reason="database tests disabled (set TIERGATE_PYTEST_DB=1)")
    for item in items:
        if "requires_db" in item.keywords:
            item.add_marker(skip_db)
