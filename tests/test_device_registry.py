"""
Unit tests for the in-memory device registry.
"""

import random
import threading

from discovery import Endpoint
from registry import DeviceRegistry


def _ep(name, host="10.0.0.1", port=80, is_on=False):
    return Endpoint(name=name, host=host, port=port, is_on=is_on)


class TestMerge:
    def test_new_names_append_in_first_seen_order(self):
        registry = DeviceRegistry()
        assert registry.merge(_ep("lamp-1")) is True
        assert registry.merge(_ep("lamp-2")) is True
        assert [e.name for e in registry.all()] == ["lamp-1", "lamp-2"]

    def test_repeated_name_updates_in_place(self):
        registry = DeviceRegistry()
        registry.merge(_ep("lamp-1"))
        registry.merge(_ep("lamp-2"))
        assert registry.merge(_ep("lamp-1", host="10.0.0.9", port=8081, is_on=True)) is False

        entries = registry.all()
        assert len(entries) == 2
        assert entries[0] == Endpoint("lamp-1", "10.0.0.9", 8081, True)

    def test_names_stay_unique_under_random_merges(self):
        registry = DeviceRegistry()
        rng = random.Random(7)
        names = [f"dev-{i}" for i in range(6)]
        for _ in range(200):
            registry.merge(_ep(rng.choice(names), port=rng.randint(1, 9000)))
            listed = [e.name for e in registry.all()]
            assert len(listed) == len(set(listed))
        assert len(registry) == len(set(listed))

    def test_snapshot_is_a_copy(self):
        registry = DeviceRegistry()
        registry.merge(_ep("lamp-1"))
        snapshot = registry.all()
        snapshot[0].is_on = True
        assert registry.get("lamp-1").is_on is False

    def test_merge_does_not_keep_caller_object(self):
        registry = DeviceRegistry()
        endpoint = _ep("lamp-1")
        registry.merge(endpoint)
        endpoint.port = 1
        assert registry.get("lamp-1").port == 80

    def test_concurrent_merges_from_threads(self):
        registry = DeviceRegistry()

        def worker(offset):
            for i in range(100):
                registry.merge(_ep(f"dev-{i % 10}", port=offset + i))

        threads = [threading.Thread(target=worker, args=(n * 1000,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(registry) == 10


class TestSelection:
    def test_empty_registry(self):
        registry = DeviceRegistry()
        assert registry.selected() is None
        assert registry.advance_selection() is None
        assert registry.selected_index == 0

    def test_advance_wraps_after_len_calls(self):
        registry = DeviceRegistry()
        for name in ("a", "b", "c"):
            registry.merge(_ep(name))
        registry.advance_selection()
        start = registry.selected_index

        for _ in range(len(registry)):
            registry.advance_selection()
        assert registry.selected_index == start

    def test_advance_walks_in_order(self):
        registry = DeviceRegistry()
        for name in ("a", "b"):
            registry.merge(_ep(name))
        assert registry.selected().name == "a"
        assert registry.advance_selection().name == "b"
        assert registry.advance_selection().name == "a"

    def test_replace_clamps_cursor_when_shrinking(self):
        registry = DeviceRegistry()
        for name in ("a", "b", "c"):
            registry.merge(_ep(name))
        registry.advance_selection()
        registry.advance_selection()
        assert registry.selected().name == "c"

        registry.replace([_ep("a")])
        assert registry.selected_index == 0
        assert registry.selected().name == "a"

        registry.replace([])
        assert registry.selected() is None


class TestReplace:
    def test_drops_vanished_devices(self):
        registry = DeviceRegistry()
        registry.merge(_ep("old"))
        registry.replace([_ep("new-1"), _ep("new-2")])
        assert [e.name for e in registry.all()] == ["new-1", "new-2"]

    def test_duplicates_collapse_by_name(self):
        registry = DeviceRegistry()
        registry.replace([_ep("a", host="10.0.0.1"), _ep("b"), _ep("a", host="10.0.0.2")])
        entries = registry.all()
        assert [e.name for e in entries] == ["a", "b"]
        assert entries[0].host == "10.0.0.2"


class TestSetState:
    def test_updates_known_device(self):
        registry = DeviceRegistry()
        registry.merge(_ep("lamp-1"))
        assert registry.set_state("lamp-1", True) is True
        assert registry.get("lamp-1").is_on is True

    def test_unknown_device(self):
        registry = DeviceRegistry()
        assert registry.set_state("ghost", True) is False
        assert "ghost" not in registry
