"""Shared pytest fixtures for session tests."""

from __future__ import annotations

from typing import Any, Iterator

import pytest
from fastapi.testclient import TestClient

from mockroom.config import Settings
from mockroom.gateway import SessionGateway
from mockroom.registry import SessionRegistry


class RecordingConnection:
    """Outbox that records every queued message instead of writing it."""

    def __init__(self, accepting: bool = True) -> None:
        self.accepting = accepting
        self.sent: list[dict[str, Any]] = []

    def send(self, data: dict[str, Any]) -> bool:
        if not self.accepting:
            return False
        self.sent.append(data)
        return True

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m["type"] == message_type]

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def registry() -> SessionRegistry:
    """A small registry with a short history window."""

    return SessionRegistry(max_participants=3, history_limit=4, chat_history_limit=10)


@pytest.fixture()
def settings() -> Settings:
    """Gateway settings tuned for fast tests."""

    return Settings(
        max_participants=3,
        rejoin_grace_seconds=0.5,
        history_limit=4,
        chat_history_limit=10,
        max_chat_length=200,
        message_timeout=30.0,
    )


@pytest.fixture()
def gateway(settings: Settings) -> SessionGateway:
    return SessionGateway(settings)


@pytest.fixture()
def client(gateway: SessionGateway) -> Iterator[TestClient]:
    """Yield a TestClient whose WebSockets all share one event loop."""

    with TestClient(gateway.app) as test_client:
        yield test_client
