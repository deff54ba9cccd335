"""Pytest configuration: custom markers and shared fixtures."""
import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--runslow", action="store_true", default=False,
        help="Run slow Monte-Carlo moment checks",
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "slow: mark test as a slow Monte-Carlo check"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--runslow"):
        # When --runslow is passed, run everything
        return
    skip_slow = pytest.mark.skip(reason="needs --runslow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)
