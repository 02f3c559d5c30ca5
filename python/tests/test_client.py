"""Tests for client-side reconciliation against the server document."""

from __future__ import annotations

import random
from collections import deque

import pytest

from mockroom.ot import Document, DocumentClient, Operation


def test_edit_while_waiting_is_buffered():
    client = DocumentClient("p-1")

    first = client.edit(0, 0, "ab")
    second = client.edit(2, 2, "c")

    assert first is not None and first.base_revision == 0
    assert second is None
    assert client.content == "abc"
    assert client.pending == first
    assert len(client.buffered) == 1
    assert not client.synchronized


def test_acknowledge_sends_next_buffered_operation():
    client = DocumentClient("p-1")
    client.edit(0, 0, "ab")
    client.edit(2, 2, "c")

    follow_up = client.acknowledge(1)

    assert follow_up == Operation(2, 2, "c", base_revision=1, participant_id="p-1")
    assert client.revision == 1
    assert client.acknowledge(2) is None
    assert client.synchronized


def test_acknowledge_without_pending_operation_raises():
    with pytest.raises(RuntimeError):
        DocumentClient("p-1").acknowledge(1)


def test_remote_operation_is_transformed_past_local_edits():
    client = DocumentClient("p-2", content="let x=1;", revision=1)
    client.edit(0, 0, "B")

    applied = client.receive(Operation(0, 0, "A", base_revision=1, participant_id="p-1", revision=2))

    assert (applied.start, applied.end) == (0, 0)
    assert client.content == "ABlet x=1;"
    assert client.revision == 2
    assert client.pending.start == 1


def test_already_reflected_operation_is_ignored():
    client = DocumentClient("p-1", content="abc", revision=3)
    assert client.receive(Operation(0, 0, "x", revision=3)) is None
    assert client.content == "abc"


def test_reset_discards_local_state():
    client = DocumentClient("p-1")
    client.edit(0, 0, "draft")
    client.reset("server text", 7)

    assert client.content == "server text"
    assert client.revision == 7
    assert client.synchronized


def test_resume_treats_own_operation_as_acknowledgement():
    client = DocumentClient("p-1")
    client.edit(0, 0, "A")

    replayed = [
        Operation(0, 0, "B", revision=1, participant_id="p-2"),
        Operation(1, 1, "A", revision=2, participant_id="p-1"),
    ]

    assert client.resume(2, replayed) is None
    assert client.content == "BA"
    assert client.revision == 2
    assert client.synchronized


def test_resume_rebases_edit_the_server_never_saw():
    client = DocumentClient("p-1", content="x", revision=1)
    client.edit(1, 1, "!")

    resend = client.resume(2, [Operation(0, 0, ">", revision=2, participant_id="p-2")])

    assert (resend.start, resend.text, resend.base_revision) == (2, "!", 2)
    assert client.content == ">x!"


def test_resume_from_snapshot_replaces_local_copy():
    client = DocumentClient("p-1", content="old", revision=1)
    client.edit(0, 0, "draft ")

    assert client.resume(5, content="new") is None
    assert (client.content, client.revision) == ("new", 5)
    assert client.synchronized


class _Simulation:
    """A server document with clients connected through FIFO channels."""

    def __init__(self, count: int, rng: random.Random):
        self.rng = rng
        self.document = Document(content="start")
        self.clients = [DocumentClient(f"p-{i}", "start", 0) for i in range(count)]
        self.upstream = [deque() for _ in range(count)]
        self.downstream = [deque() for _ in range(count)]

    def local_edit(self, index: int) -> None:
        client = self.clients[index]
        length = len(client.content)
        start = self.rng.randint(0, length)
        end = self.rng.randint(start, min(length, start + 3))
        text = self.rng.choice(["", "a", "bc", "xyz"])
        if start == end and not text:
            text = "q"
        op = client.edit(start, end, text)
        if op is not None:
            self.upstream[index].append(op)

    def deliver_upstream(self, index: int) -> None:
        op = self.upstream[index].popleft()
        accepted = self.document.accept(op)
        for other, channel in enumerate(self.downstream):
            if other == index:
                channel.append(("ack", accepted.revision))
            else:
                channel.append(("op", accepted))

    def deliver_downstream(self, index: int) -> None:
        kind, value = self.downstream[index].popleft()
        client = self.clients[index]
        if kind == "ack":
            follow_up = client.acknowledge(value)
            if follow_up is not None:
                self.upstream[index].append(follow_up)
        else:
            client.receive(value)

    def step(self) -> None:
        index = self.rng.randrange(len(self.clients))
        choices = ["edit"]
        if self.upstream[index]:
            choices.append("up")
        if self.downstream[index]:
            choices.append("down")
        action = self.rng.choice(choices)
        if action == "edit":
            self.local_edit(index)
        elif action == "up":
            self.deliver_upstream(index)
        else:
            self.deliver_downstream(index)

    def drain(self) -> None:
        while any(self.upstream) or any(self.downstream):
            for index in range(len(self.clients)):
                while self.downstream[index]:
                    self.deliver_downstream(index)
                if self.upstream[index]:
                    self.deliver_upstream(index)


@pytest.mark.parametrize("seed", range(20))
def test_random_concurrent_editing_converges(seed):
    simulation = _Simulation(count=3, rng=random.Random(seed))

    for _ in range(150):
        simulation.step()
    simulation.drain()

    expected = simulation.document.content
    for client in simulation.clients:
        assert client.synchronized
        assert client.content == expected
        assert client.revision == simulation.document.revision
