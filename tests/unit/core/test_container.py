"""Unit tests for HamtContainer."""

import threading

import pytest

from hamtcontainer.constants import RESERVED_NAME_KEY
from hamtcontainer.core import HamtBuilder, HamtContainer
from hamtcontainer.errors import (
    ErrorKind,
    KindMismatchError,
    NotCommittedError,
    StorageNotFoundError,
    StorageUnavailableError,
    UnsupportedKeyTypeError,
    UnsupportedValueKindError,
    ValueNotFoundError,
)
from hamtcontainer.link import Link
from hamtcontainer.storage import MemoryStorage


class FlakyStorage(MemoryStorage):
    """Memory storage whose writes fail while ``failing`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = False

    def open_write(self):
        sink, commit = super().open_write()

        def guarded_commit(link):
            if self.failing:
                raise StorageUnavailableError("disk unavailable", backend=self.name)
            commit(link)

        return sink, guarded_commit


def collect(container):
    """Gather ``View`` output into a dict."""
    seen = {}

    def visit(key, value):
        seen[key] = value

    container.view(visit)
    return seen


class TestStaging:
    """Test staging values before commit."""

    def test_set_does_not_touch_storage(self, root, memory_storage) -> None:
        root.set(b"foo", "bar")

        assert len(memory_storage) == 0
        assert root.pending() == 1
        assert not root.is_committed()

    def test_str_and_bytes_keys_are_equivalent(self, root) -> None:
        root.set("foo", "bar")
        root.commit()

        assert root.get(b"foo") == "bar"

    def test_non_printable_keys(self, root) -> None:
        key = b"\x00\xff\x10"
        root.set(key, b"\x01")
        root.commit()

        assert root.get_as_bytes(key) == b"\x01"
        assert root.keys() == [key]

    def test_unsupported_key_type(self, root) -> None:
        with pytest.raises(UnsupportedKeyTypeError):
            root.set(12, "value")  # type: ignore[arg-type]

    def test_reserved_key_rejected(self, root) -> None:
        with pytest.raises(UnsupportedKeyTypeError, match="reserved"):
            root.set(RESERVED_NAME_KEY.encode("utf-8"), "other")

    @pytest.mark.parametrize("value", [42, 1.5, None, True, ["a"]])
    def test_unsupported_value_kinds(self, root, value) -> None:
        with pytest.raises(UnsupportedValueKindError):
            root.set(b"key", value)
        assert root.pending() == 0

    def test_bytearray_is_copied(self, root) -> None:
        data = bytearray(b"abc")
        root.set(b"key", data)
        data[0] = ord("z")
        root.commit()

        assert root.get(b"key") == b"abc"

    def test_set_many(self, root) -> None:
        root.set_many({b"a": "1", b"b": b"2"})
        root.commit()

        assert root.get(b"a") == "1"
        assert root.get(b"b") == b"2"

    def test_text_value_must_be_utf8(self, root) -> None:
        """Test lone surrogates are refused when staged, not at commit."""
        with pytest.raises(UnsupportedValueKindError, match="UTF-8"):
            root.set(b"k", "\ud800")

        assert root.pending() == 0
        root.commit()
        assert len(root) == 0

    def test_text_key_must_be_utf8(self, root) -> None:
        with pytest.raises(UnsupportedKeyTypeError, match="UTF-8"):
            root.set("\udcff", "v")
        assert root.pending() == 0

    def test_writer_text_must_be_utf8(self, root) -> None:
        link = root.commit()

        with pytest.raises(UnsupportedValueKindError):
            root.commit(lambda setter: setter.set(b"k", "\ud800"))
        assert root.link() == link

    def test_set_many_is_all_or_nothing(self, root) -> None:
        with pytest.raises(UnsupportedValueKindError):
            root.set_many({b"a": "1", b"b": 2})
        assert root.pending() == 0


class TestCommit:
    """Test the commit protocol."""

    def test_empty_commit(self, root) -> None:
        """Test committing with nothing staged holds only the identity."""
        link = root.commit()

        assert root.link() == link
        assert len(root) == 0
        assert collect(root) == {}
        with pytest.raises(ValueNotFoundError):
            root.get(b"x")

    def test_link_after_commit(self, root) -> None:
        root.set(b"foo", "bar")
        link = root.commit()

        assert root.link() == link
        assert root.content_address() == link
        assert root.is_committed()
        assert root.pending() == 0

    def test_link_before_commit(self, root) -> None:
        with pytest.raises(NotCommittedError):
            root.link()

    def test_recommit_is_idempotent(self, root) -> None:
        root.set(b"foo", "bar")
        first = root.commit()
        second = root.commit()

        assert first == second

    def test_link_depends_on_identity(self, memory_storage) -> None:
        a = HamtContainer(b"a", memory_storage)
        b = HamtContainer(b"b", memory_storage)

        assert a.commit() != b.commit()

    def test_same_content_same_link(self, memory_storage) -> None:
        first = HamtContainer(b"root", memory_storage)
        first.set(b"x", "1")
        first.set(b"y", "2")
        second = HamtContainer(b"root", MemoryStorage())
        second.set(b"y", "2")
        second.set(b"x", "1")

        assert first.commit() == second.commit()

    def test_overwrite(self, root) -> None:
        root.set(b"k", "v1")
        first = root.commit()
        root.set(b"k", "v2")
        second = root.commit()

        assert root.get(b"k") == "v2"
        assert first != second

    def test_entries_carried_forward(self, root) -> None:
        root.set(b"foo", "bar")
        first = root.commit()
        root.set(b"zoo", "zar")
        second = root.commit()

        assert collect(root) == {b"foo": "bar", b"zoo": "zar"}
        assert first != second

    def test_commit_persists_to_storage(self, root, memory_storage) -> None:
        link = root.commit()
        assert memory_storage.has(link)

    def test_writers_win_over_staged(self, root) -> None:
        root.set(b"k", "staged")
        root.commit(lambda setter: setter.set(b"k", "writer"))

        assert root.get(b"k") == "writer"

    def test_later_writer_wins(self, root) -> None:
        root.commit(
            lambda setter: setter.set(b"k", "first"),
            lambda setter: setter.set(b"k", "second"),
        )

        assert root.get(b"k") == "second"

    def test_writer_rejects_reserved_key(self, root) -> None:
        with pytest.raises(UnsupportedKeyTypeError):
            root.commit(lambda setter: setter.set(RESERVED_NAME_KEY, "x"))

    def test_failed_commit_keeps_state(self, root) -> None:
        """Test a failing writer leaves the old commit and staged writes."""
        root.set(b"a", "1")
        link = root.commit()
        root.set(b"b", "2")

        def broken(setter):
            raise RuntimeError("writer failed")

        with pytest.raises(RuntimeError, match="writer failed"):
            root.commit(broken)

        assert root.link() == link
        assert root.pending() == 1
        assert b"b" not in root

        root.commit()
        assert root.get(b"b") == "2"

    def test_storage_failure_keeps_state(self) -> None:
        """Test a failed block write leaves the old commit and staged writes."""
        storage = FlakyStorage()
        container = HamtContainer(b"root", storage)
        container.set(b"a", "1")
        link = container.commit()
        container.set(b"b", "2")
        storage.failing = True

        with pytest.raises(StorageUnavailableError, match="disk unavailable"):
            container.commit()

        assert container.link() == link
        assert container.pending() == 1
        assert container.get(b"a") == "1"
        assert b"b" not in container

        storage.failing = False
        retried = container.commit()

        assert retried != link
        assert container.pending() == 0
        assert container.get(b"b") == "2"
        assert storage.has(retried)

    def test_first_commit_storage_failure(self) -> None:
        storage = FlakyStorage()
        storage.failing = True
        container = HamtContainer(b"root", storage)
        container.set(b"a", "1")

        with pytest.raises(StorageUnavailableError):
            container.commit()

        assert not container.is_committed()
        assert container.pending() == 1

    def test_uncommitted_child_fails_commit(self, root, memory_storage) -> None:
        child = HamtContainer(b"child", memory_storage)
        root.set(b"child", child)

        with pytest.raises(NotCommittedError, match="never committed"):
            root.commit()
        assert not root.is_committed()
        assert root.pending() == 1

    def test_child_stored_as_link(self, root, memory_storage) -> None:
        child = HamtContainer(b"child", memory_storage)
        child.set(b"foo", "bar")
        child_link = child.commit()

        root.set(b"child", child)
        root.commit()

        assert root.get_as_link(b"child") == child_link

    def test_child_link_taken_at_commit_time(self, root, memory_storage) -> None:
        child = HamtContainer(b"child", memory_storage)
        child.commit()
        root.set(b"child", child)
        child.set(b"foo", "bar")
        later = child.commit()

        root.commit()

        assert root.get_as_link(b"child") == later


class TestLookups:
    """Test Get and its typed projections."""

    @pytest.fixture
    def committed(self, root) -> HamtContainer:
        root.set(b"text", "hello")
        root.set(b"bytes", b"\xff\x00")
        root.set(b"link", Link.from_bytes(b"target"))
        root.commit()
        return root

    def test_kinds_round_trip(self, committed) -> None:
        assert committed.get(b"text") == "hello"
        assert committed.get(b"bytes") == b"\xff\x00"
        assert committed.get(b"link") == Link.from_bytes(b"target")

    def test_get_before_commit(self, root) -> None:
        root.set(b"foo", "bar")
        with pytest.raises(NotCommittedError):
            root.get(b"foo")

    def test_get_missing(self, committed) -> None:
        with pytest.raises(ValueNotFoundError) as excinfo:
            committed.get(b"missing")
        assert excinfo.value.kind is ErrorKind.NOT_FOUND

    def test_reserved_key_hidden(self, committed) -> None:
        with pytest.raises(ValueNotFoundError):
            committed.get(RESERVED_NAME_KEY)

    def test_get_as_link_on_text(self, committed) -> None:
        with pytest.raises(KindMismatchError) as excinfo:
            committed.get_as_link(b"text")
        assert excinfo.value.kind is ErrorKind.KIND_MISMATCH
        assert excinfo.value.context["expected"] == "link"
        assert excinfo.value.context["actual"] == "text"

    def test_get_as_bytes_on_link(self, committed) -> None:
        with pytest.raises(KindMismatchError):
            committed.get_as_bytes(b"link")

    def test_get_as_text_accepts_utf8_bytes(self, root) -> None:
        root.set(b"k", "é".encode("utf-8"))
        root.commit()

        assert root.get_as_text(b"k") == "é"

    def test_get_as_text_rejects_binary(self, committed) -> None:
        with pytest.raises(KindMismatchError):
            committed.get_as_text(b"bytes")

    def test_get_as_link_missing_is_not_found(self, committed) -> None:
        with pytest.raises(ValueNotFoundError):
            committed.get_as_link(b"missing")

    def test_contains(self, committed) -> None:
        assert b"text" in committed
        assert "text" in committed
        assert b"missing" not in committed
        assert 12 not in committed


class TestView:
    """Test iteration over committed entries."""

    def test_view_skips_reserved_entry(self, root) -> None:
        root.set(b"a", "1")
        root.commit()

        assert collect(root) == {b"a": "1"}
        assert RESERVED_NAME_KEY.encode("utf-8") not in root.keys()

    def test_view_before_commit(self, root) -> None:
        with pytest.raises(NotCommittedError):
            root.view(lambda key, value: None)

    def test_view_stops_on_error(self, root) -> None:
        for i in range(10):
            root.set(f"key{i}", str(i))
        root.commit()
        visited = []

        def visit(key, value):
            visited.append(key)
            if len(visited) == 3:
                raise ValueError("stop")

        with pytest.raises(ValueError, match="stop"):
            root.view(visit)
        assert len(visited) == 3

    def test_items_and_len(self, root) -> None:
        root.set_many({b"a": "1", b"b": "2", b"c": "3"})
        root.commit()

        assert sorted(root.items()) == [(b"a", "1"), (b"b", "2"), (b"c", "3")]
        assert len(root) == 3

    def test_len_before_commit(self, root) -> None:
        assert len(root) == 0

    def test_many_entries_small_buckets(self, memory_storage) -> None:
        container = HamtBuilder().storage(memory_storage).trie_shape(2, 2).build()
        expected = {f"key-{i}".encode(): f"value-{i}" for i in range(200)}
        container.set_many(expected)
        container.commit()

        assert collect(container) == expected


class TestLoad:
    """Test loading committed state."""

    def test_load_restores_entries_and_identity(self, root, memory_storage) -> None:
        root.set(b"foo", "bar")
        link = root.commit()

        loaded = HamtContainer(None, memory_storage)
        loaded.load(link)

        assert loaded.identity() == b"root"
        assert loaded.link() == link
        assert loaded.get(b"foo") == "bar"

    def test_load_twice_same_state(self, root, memory_storage) -> None:
        root.set(b"foo", "bar")
        link = root.commit()

        loaded = HamtContainer(None, memory_storage)
        loaded.load(link)
        first = loaded.items()
        loaded.load(link)

        assert loaded.items() == first
        assert loaded.link() == link

    def test_load_missing_link(self, memory_storage) -> None:
        container = HamtContainer(None, memory_storage)
        with pytest.raises(StorageNotFoundError):
            container.load(Link.from_bytes(b"nowhere"))

    def test_recommit_after_load(self, root, memory_storage) -> None:
        root.set(b"foo", "bar")
        link = root.commit()

        loaded = HamtContainer(None, memory_storage)
        loaded.load(link)
        assert loaded.commit() == link

        loaded.set(b"zoo", "zar")
        loaded.commit()
        assert collect(loaded) == {b"foo": "bar", b"zoo": "zar"}
        assert loaded.identity() == b"root"

    def test_load_keeps_staged_writes(self, root, memory_storage) -> None:
        link = root.commit()
        other = HamtContainer(None, memory_storage)
        other.set(b"new", "value")
        other.load(link)
        other.commit()

        assert other.get(b"new") == "value"

    def test_load_adopts_trie_shape(self, memory_storage) -> None:
        container = HamtBuilder().storage(memory_storage).trie_shape(2, 4).build()
        container.set(b"a", "1")
        link = container.commit()

        loaded = HamtBuilder().storage(memory_storage).from_link(link).build()
        assert loaded.commit() == link


class TestAutoCommit:
    """Test commit-on-read behaviour."""

    def test_reads_commit_pending_writes(self, memory_storage) -> None:
        container = HamtBuilder().storage(memory_storage).auto_commit().build()
        container.set(b"foo", "bar")

        assert container.get(b"foo") == "bar"
        assert container.pending() == 0

    def test_link_commits(self, memory_storage) -> None:
        container = HamtBuilder().storage(memory_storage).auto_commit().build()
        link = container.link()

        assert memory_storage.has(link)

    def test_disabled_by_default(self, root) -> None:
        assert root.auto_commit is False


class TestReentrantCalls:
    """Test callbacks that call back into their own container."""

    def run_bounded(self, target) -> None:
        """Run ``target`` in a thread and fail instead of hanging."""
        errors = []

        def wrapped():
            try:
                target()
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        thread = threading.Thread(target=wrapped, daemon=True)
        thread.start()
        thread.join(timeout=5)

        assert not thread.is_alive(), "call did not return"
        assert errors == []

    def test_get_inside_view(self, root) -> None:
        root.set_many({b"a": "1", b"b": "2"})
        root.commit()
        seen = {}

        def visit(key, value):
            seen[key] = root.get(key)

        self.run_bounded(lambda: root.view(visit))

        assert seen == {b"a": "1", b"b": "2"}

    def test_resolve_nested_inside_view(self, root, memory_storage) -> None:
        child = HamtContainer(b"child", memory_storage)
        child.set(b"foo", "bar")
        child.commit()
        root.set(b"child", child)
        root.set(b"note", "text")
        root.commit()
        found = {}

        def visit(key, value):
            if isinstance(value, Link):
                found[key] = root.get_nested(key).get(b"foo")
            root.items()
            root.link()

        self.run_bounded(lambda: root.view(visit))

        assert found == {b"child": "bar"}

    def test_writer_reads_container(self, root) -> None:
        root.set(b"a", "1")
        root.commit()

        def copy_a(setter):
            setter.set(b"copy", root.get_as_text(b"a"))

        self.run_bounded(lambda: root.commit(copy_a))

        assert root.get(b"copy") == "1"

    def test_writer_staging_stays_pending(self, root) -> None:
        def stage_more(setter):
            root.set(b"later", "x")

        self.run_bounded(lambda: root.commit(stage_more))

        assert root.pending() == 1
        assert b"later" not in root
        root.commit()
        assert root.get(b"later") == "x"

    def test_auto_commit_read_inside_writer(self, memory_storage) -> None:
        container = HamtBuilder().storage(memory_storage).auto_commit().build()
        container.set(b"a", "1")
        container.link()
        container.set(b"b", "2")

        def read_during_commit(setter):
            setter.set(b"seen", str(len(container.items())))

        self.run_bounded(lambda: container.commit(read_during_commit))

        assert container.get(b"b") == "2"
        assert container.get(b"seen") == "1"


class TestConcurrency:
    """Test concurrent use of one container."""

    def test_concurrent_set_and_commit(self, root) -> None:
        errors = []

        def worker(n):
            try:
                for i in range(20):
                    root.set(f"w{n}-{i}", str(i))
                    if i % 5 == 0:
                        root.commit()
                        root.items()
            except Exception as e:  # noqa: BLE001
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        root.commit()

        assert errors == []
        assert len(root) == 80

    def test_concurrent_readers(self, root) -> None:
        root.set(b"foo", "bar")
        link = root.commit()
        results = []

        def reader():
            for _ in range(50):
                results.append((root.link(), root.get(b"foo")))

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 200
        assert set(results) == {(link, "bar")}
