"""
Pytest configuration for the VoiceRelay test suite.

Every test runs with a private HOME and working directory and without
provider keys, so no real config file, .env file or API is ever picked up.
"""

import os

import pytest

ISOLATED_ENV_VARS = (
    "GROQ_API_KEY",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "VR_CONFIG",
    "VR_ENV",
    "VR_DEBUG",
    "VR_LOG_LEVEL",
    "VR_DATA_DIR",
    "VR_HOST",
    "VR_PORT",
    "VR_AGENT_MAX_TURNS",
    "VR_WORKSPACE_ROOT",
)


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: mark test as integration test (loopback WebSocket)")
    config.addinivalue_line("markers", "requires_llm: mark test as requiring real provider API keys")


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    """Strip provider keys and point HOME / cwd at a temp dir."""
    for name in ISOLATED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)

    yield


def pytest_collection_modifyitems(config, items):
    if os.getenv("VR_RUN_LLM_TESTS", "false").lower() == "true":
        return
    skip_llm = pytest.mark.skip(reason="set VR_RUN_LLM_TESTS=true to run against real providers")
    for item in items:
        if "requires_llm" in item.keywords:
            item.add_marker(skip_llm)
