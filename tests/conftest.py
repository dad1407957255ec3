"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from tests.utils import EventRecorder, MemoryChannel, ScriptedProvider
from vmagent.config import Config
from vmagent.remote import BackupManager
from vmagent.session import AgentContext, AgentOrchestrator, ConversationLoop

pytest_plugins = ("pytest_asyncio",)

REMOTE = "vm-1"
WORKSPACE = "/srv/app"


@pytest.fixture
def channel() -> MemoryChannel:
    """A remote host with a small project in /srv/app."""
    return MemoryChannel(
        {
            f"{WORKSPACE}/README.md": "# App\n",
            f"{WORKSPACE}/config.json": '{"debug": false}\n',
            f"{WORKSPACE}/src/main.py": "print('hello')\n",
        }
    )


@pytest.fixture
def channels(channel: MemoryChannel) -> dict[str, MemoryChannel]:
    return {REMOTE: channel}


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def config() -> Config:
    """Default limits with waits short enough for tests."""
    config = Config()
    config.agent.poll_interval = 0.01
    config.agent.retry_base_delay = 0.0
    return config


@pytest.fixture
def context() -> AgentContext:
    return AgentContext(workspace_root=WORKSPACE)


@pytest.fixture
def orchestrator(
    channels: dict[str, MemoryChannel],
    provider: ScriptedProvider,
    config: Config,
) -> AgentOrchestrator:
    return AgentOrchestrator(
        channels,
        provider,
        snapshots=BackupManager(channels),
        config=config,
        loop_factory=lambda: ConversationLoop.from_config(provider, config.llm, config.agent),
    )
