"""Shared fixtures: configuration, fakes and a wired session controller."""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
import pytest_asyncio

from tests.helpers.fakes import (
    FakeCredentials,
    FakeEvaluator,
    FakeSink,
    FakeTransport,
    make_agent_set,
)
from voice_agents.agents.registry import AgentSetRegistry
from voice_agents.config import AppConfig, SessionConfig
from voice_agents.preferences import PreferenceStore
from voice_agents.session import SessionController


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Config with a short connect timeout and a temp preferences file."""
    return AppConfig(
        session=SessionConfig(connect_timeout_s=2.0, default_agent_set="duo"),
        preferences_path=tmp_path / "prefs.json",
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def evaluator() -> FakeEvaluator:
    return FakeEvaluator()


@pytest.fixture
def sink() -> FakeSink:
    return FakeSink()


@pytest.fixture
def registry() -> AgentSetRegistry:
    duo = make_agent_set("duo", "Acme Corp")
    other = make_agent_set("other", "Globex")
    return AgentSetRegistry(builtin={"duo": duo, "other": other}, default_key="duo")


@pytest.fixture
def preferences(config: AppConfig) -> PreferenceStore:
    return PreferenceStore(config.preferences_path)


@pytest_asyncio.fixture
async def controller(
    config: AppConfig,
    transport: FakeTransport,
    credentials: FakeCredentials,
    evaluator: FakeEvaluator,
    registry: AgentSetRegistry,
    preferences: PreferenceStore,
    sink: FakeSink,
) -> AsyncIterator[SessionController]:
    """Controller wired to fakes; closed after the test."""
    ctrl = SessionController(
        config=config,
        transport=transport,
        credentials=credentials,
        evaluator=evaluator,
        registry=registry,
        preferences=preferences,
        sink=sink,
    )
    yield ctrl
    await ctrl.close()
