"""Synchronous adapter tests."""

import json
import threading
import time

import pytest

import discovery.service as service
from bridge.adapter import (
    ERR_INVALID_ARGUMENT,
    OK,
    Slot,
    create,
    destroy,
    free_buffer,
    get_peers_bytes,
    outstanding_buffers,
    set_announcement,
)
from bridge.runtime import THREAD_NAME, DiscoveryRuntime
from discovery.errors import SetupError
from discovery.models import Announcement


@pytest.fixture
def handle(loopback_sockets, fast_settings):
    h = create(8080, "Alice", settings=fast_settings)
    assert h is not None
    yield h
    destroy(h)


def read_peers(h):
    buf, length = Slot(), Slot()
    assert get_peers_bytes(h, buf, length) == OK
    try:
        return json.loads(bytes(buf.value[:length.value]))
    finally:
        free_buffer(buf.value, length.value)


class TestCreate:

    def test_null_name_returns_none(self):
        assert create(8080, None) is None
        assert DiscoveryRuntime.get().refcount == 0

    @pytest.mark.parametrize("name", [b"\xff\xfeAlice", 42, ["Alice"]])
    def test_unusable_name_returns_none(self, name):
        assert create(8080, name) is None

    @pytest.mark.parametrize("port", [-1, 65536, "8080", None, True])
    def test_invalid_port_returns_none(self, port):
        assert create(port, "Alice") is None

    def test_setup_failure_returns_none_and_releases_runtime(self, monkeypatch, loopback_sockets):
        def fail(*args, **kwargs):
            raise SetupError("address in use")

        monkeypatch.setattr(service, "create_listen_socket", fail)

        assert create(8080, "Alice") is None
        runtime = DiscoveryRuntime.get()
        assert runtime.refcount == 0
        assert not runtime.is_running

    def test_unexpected_failure_propagates_and_releases_runtime(self, monkeypatch, loopback_sockets):
        def fail(*args, **kwargs):
            raise RuntimeError("socket exploded")

        monkeypatch.setattr(service, "create_listen_socket", fail)

        with pytest.raises(RuntimeError, match="socket exploded"):
            create(8080, "Alice")
        runtime = DiscoveryRuntime.get()
        assert runtime.refcount == 0
        assert not runtime.is_running

    def test_bytes_name_accepted(self, loopback_sockets, fast_settings):
        h = create(8080, "Zoë".encode("utf-8"), settings=fast_settings)
        try:
            assert h is not None
            assert not h.closed
        finally:
            destroy(h)


class TestLifecycle:

    def test_runtime_follows_handles(self, loopback_sockets, fast_settings):
        runtime = DiscoveryRuntime.get()

        first = create(8080, "Alice", settings=fast_settings)
        second = create(9090, "Bob", settings=fast_settings)
        assert runtime.refcount == 2
        assert runtime.is_running
        assert any(t.name == THREAD_NAME for t in threading.enumerate())

        destroy(first)
        assert runtime.refcount == 1
        assert runtime.is_running

        destroy(second)
        assert runtime.refcount == 0
        assert not runtime.is_running

    def test_destroy_none_is_noop(self):
        destroy(None)

    def test_handle_closed_after_destroy(self, loopback_sockets, fast_settings):
        h = create(8080, "Alice", settings=fast_settings)
        destroy(h)
        assert h.closed
        assert get_peers_bytes(h, Slot(), Slot()) == ERR_INVALID_ARGUMENT

    def test_runtime_restarts_after_teardown(self, loopback_sockets, fast_settings):
        destroy(create(8080, "Alice", settings=fast_settings))
        h = create(8080, "Alice", settings=fast_settings)
        try:
            assert DiscoveryRuntime.get().is_running
            assert read_peers(h) == []
        finally:
            destroy(h)


class TestGetPeersBytes:

    def test_null_handle_writes_nothing(self):
        buf, length = Slot("untouched"), Slot(-7)
        assert get_peers_bytes(None, buf, length) == ERR_INVALID_ARGUMENT
        assert buf.value == "untouched"
        assert length.value == -7

    def test_null_slots_rejected(self, handle):
        length = Slot()
        assert get_peers_bytes(handle, None, length) == ERR_INVALID_ARGUMENT
        assert length.value is None
        assert get_peers_bytes(handle, Slot(), None) == ERR_INVALID_ARGUMENT

    def test_empty_snapshot(self, handle):
        buf, length = Slot(), Slot()
        assert get_peers_bytes(handle, buf, length) == OK
        assert bytes(buf.value) == b"[]"
        assert length.value == 2
        free_buffer(buf.value, length.value)

    def test_reports_received_peer(self, handle, sender):
        target = handle._discovery._listen_socket.getsockname()
        sender.sendto(Announcement(name="Bob", port=9090).encode(), target)

        deadline = time.monotonic() + 2.0
        peers = []
        while time.monotonic() < deadline and not peers:
            peers = read_peers(handle)
            time.sleep(0.01)

        assert peers == [
            {"addr": f"127.0.0.1:{sender.getsockname()[1]}", "name": "Bob", "port": 9090}
        ]


class TestFreeBuffer:

    def test_tracks_outstanding_buffers(self, handle):
        before = outstanding_buffers()
        buf, length = Slot(), Slot()
        get_peers_bytes(handle, buf, length)
        assert outstanding_buffers() == before + 1

        free_buffer(buf.value, length.value)
        assert outstanding_buffers() == before
        assert len(buf.value) == 0

    def test_none_is_noop(self):
        free_buffer(None, 0)

    def test_unknown_buffer_ignored(self):
        before = outstanding_buffers()
        free_buffer(bytearray(b"abc"), 3)
        assert outstanding_buffers() == before


class TestSetAnnouncement:

    def test_updates_announcement(self, handle):
        assert set_announcement(handle, name="Alicia", port=7000) == OK
        announcement = handle._runtime.run(handle._discovery.get_announcement())
        assert announcement == Announcement(name="Alicia", port=7000)

    def test_invalid_arguments(self, handle):
        assert set_announcement(None, name="x") == ERR_INVALID_ARGUMENT
        assert set_announcement(handle, name=b"\xff") == ERR_INVALID_ARGUMENT
        assert set_announcement(handle, port=70000) == ERR_INVALID_ARGUMENT


class TestRuntime:

    def test_singleton(self):
        assert DiscoveryRuntime.get() is DiscoveryRuntime.get()

    def test_release_without_acquire_is_ignored(self):
        runtime = DiscoveryRuntime()
        runtime.release()
        assert runtime.refcount == 0

    def test_run_blocks_for_result(self):
        runtime = DiscoveryRuntime()
        runtime.acquire()
        try:
            async def answer():
                return 42

            assert runtime.run(answer()) == 42
        finally:
            runtime.release()
        assert not runtime.is_running

    def test_run_from_loop_thread_refused(self):
        runtime = DiscoveryRuntime()
        runtime.acquire()
        try:
            async def nested():
                async def inner():
                    return 1
                with pytest.raises(RuntimeError):
                    runtime.run(inner())
                return "ok"

            assert runtime.run(nested()) == "ok"
        finally:
            runtime.release()

    def test_submit_when_stopped_raises(self):
        runtime = DiscoveryRuntime()

        async def noop():
            return None

        with pytest.raises(RuntimeError):
            runtime.submit(noop())
