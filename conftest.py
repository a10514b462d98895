import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--run-browser",
        action="store_true",
        default=False,
        help="Run tests marked as browser (launch a real local Playwright browser).",
    )


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "browser: tests that drive a real browser (needs `playwright install chromium`)"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-browser"):
        return

    skip_browser = pytest.mark.skip(
        reason="browser test (use --run-browser to run)"
    )
    for item in items:
        if "browser" in item.keywords:
            item.add_marker(skip_browser)
