"""
Tests for the live mirror synchronizer.
"""

import asyncio
import pytest
from unittest.mock import Mock

from examsy.core.memory_store import MemoryStore
from examsy.core.store import RemoteStore, Subscription
from examsy.services.sync.live_mirror import LiveMirror


@pytest.fixture
def fed_store():
    """Store whose snapshots are pushed by the test itself."""
    subscriptions = {}
    store = Mock(spec=RemoteStore)
    store.subscribe.side_effect = lambda collection: subscriptions.setdefault(
        collection, Subscription(collection)
    )
    return store, subscriptions


@pytest.fixture
def memory_store():
    return MemoryStore({
        "students": {"001": {"nis": "001", "name": "AHMAD", "status": "NOT_STARTED"}},
        "rooms": {"R1": {"id": "R1", "name": "RUANG 01"}},
    })


@pytest.fixture
async def mirror(memory_store):
    mirror = LiveMirror(memory_store)
    await mirror.start()
    await mirror.wait_until_loaded(timeout=1)
    yield mirror
    await mirror.stop()


class TestSnapshots:
    """Test wholesale replacement of the collection mappings."""

    @pytest.mark.asyncio
    async def test_each_snapshot_replaces_mapping(self, fed_store):
        store, subscriptions = fed_store
        mirror = LiveMirror(store)
        await mirror.start()

        subscriptions["students"].push({"001": {"name": "A"}, "002": {"name": "B"}})
        await mirror.students.wait_for(lambda documents: mirror.students.version == 1, timeout=1)
        assert list(mirror.students.documents) == ["001", "002"]

        subscriptions["students"].push({"003": {"name": "C"}})
        documents = await mirror.students.wait_for(lambda documents: mirror.students.version == 2, timeout=1)

        assert list(documents) == ["003"]
        assert documents["003"].nis == "003"
        await mirror.stop()

    @pytest.mark.asyncio
    async def test_snapshots_applied_in_order(self, fed_store):
        store, subscriptions = fed_store
        mirror = LiveMirror(store)
        seen = []
        mirror.add_observer(lambda snapshot: seen.append(sorted(snapshot.documents)))
        await mirror.start()

        for snapshot in ({"1": {}}, {"1": {}, "2": {}}, {"2": {}}):
            subscriptions["rooms"].push(snapshot)
        await mirror.rooms.wait_for(lambda documents: mirror.rooms.version == 3, timeout=1)

        assert seen == [["1"], ["1", "2"], ["2"]]
        await mirror.stop()

    @pytest.mark.asyncio
    async def test_documents_keyed_by_document_id(self, mirror, memory_store):
        await memory_store.set_merge("students", "002", {"name": "SITI", "class": "8"})

        documents = await mirror.students.wait_for(lambda documents: "002" in documents, timeout=1)

        assert documents["002"].nis == "002"
        assert documents["002"].class_name == "8"

    @pytest.mark.asyncio
    async def test_undecodable_document_is_left_out(self, fed_store):
        store, subscriptions = fed_store
        mirror = LiveMirror(store)
        await mirror.start()

        subscriptions["students"].push({"001": {"violations": "many"}, "002": {"name": "B"}})
        documents = await mirror.students.wait_for(timeout=1)

        assert list(documents) == ["002"]
        await mirror.stop()

    @pytest.mark.asyncio
    async def test_mapping_is_read_only(self, mirror):
        with pytest.raises(TypeError):
            mirror.students.documents["999"] = None


class TestInitialLoad:
    """Test the initial-load signal."""

    @pytest.mark.asyncio
    async def test_only_students_gate_initial_load(self, fed_store):
        store, subscriptions = fed_store
        mirror = LiveMirror(store)
        await mirror.start()

        subscriptions["sessions"].push({"S1": {"name": "MATH"}})
        subscriptions["rooms"].push({"R1": {"name": "RUANG 01"}})
        await mirror.rooms.wait_for(timeout=1)
        await mirror.sessions.wait_for(timeout=1)
        assert not mirror.initial_load_complete

        subscriptions["students"].push({})
        await mirror.wait_until_loaded(timeout=1)

        assert mirror.initial_load_complete
        assert dict(mirror.students.documents) == {}
        await mirror.stop()

    @pytest.mark.asyncio
    async def test_empty_collection_notifies_observers(self):
        mirror = LiveMirror(MemoryStore())
        snapshots = []
        mirror.add_observer(snapshots.append)
        await mirror.start()

        await mirror.wait_until_loaded(timeout=1)
        await mirror.sessions.wait_for(timeout=1)
        await mirror.rooms.wait_for(timeout=1)

        assert sorted(snapshot.collection for snapshot in snapshots) == ["rooms", "sessions", "students"]
        assert all(len(snapshot.documents) == 0 for snapshot in snapshots)
        await mirror.stop()


class TestObservers:

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_block_others(self, memory_store):
        mirror = LiveMirror(memory_store)
        broken = Mock(side_effect=RuntimeError("render failed"))
        healthy = Mock()
        mirror.add_observer(broken)
        mirror.add_observer(healthy)

        await mirror.start()
        await mirror.wait_until_loaded(timeout=1)

        assert broken.called
        assert any(call.args[0].collection == "students" for call in healthy.call_args_list)
        await mirror.stop()

    @pytest.mark.asyncio
    async def test_removed_observer_is_not_called(self, mirror, memory_store):
        observer = Mock()
        remove = mirror.add_observer(observer)
        remove()

        await memory_store.set_merge("students", "002", {"name": "SITI"})
        await mirror.students.wait_for(lambda documents: "002" in documents, timeout=1)

        observer.assert_not_called()


class TestTeardown:

    @pytest.mark.asyncio
    async def test_stop_unsubscribes_everything(self, memory_store):
        mirror = LiveMirror(memory_store)
        observer = Mock()
        mirror.add_observer(observer)
        await mirror.start()
        await mirror.wait_until_loaded(timeout=1)

        await mirror.stop()
        calls_before = observer.call_count
        await memory_store.set_merge("students", "002", {"name": "SITI"})
        await asyncio.sleep(0.05)

        assert observer.call_count == calls_before
        assert not mirror.running
        for collection in ("students", "sessions", "rooms"):
            assert memory_store.subscriber_count(collection) == 0

    @pytest.mark.asyncio
    async def test_double_stop_is_safe(self, memory_store):
        mirror = LiveMirror(memory_store)
        await mirror.start()

        await mirror.stop()
        await mirror.stop()

        assert not mirror.running
