import io
import warnings
import zipfile

import pytest

from gitdrop.core.errors import (
    ArchiveBombError,
    ArchiveTooLargeError,
    InvalidArchiveError,
    InvalidPathError,
    TooManyEntriesError,
)
from gitdrop.services.archive import (
    ArchiveEntry,
    ArchiveLimits,
    inspect,
    open_archive,
    read_entry,
    sanitize_entries,
)


def _entry(path: str) -> ArchiveEntry:
    return ArchiveEntry(raw_path=path, uncompressed_size=1, compressed_size=1)


def _zip_with_duplicates(*members: tuple[str, str]) -> bytes:
    buffer = io.BytesIO()
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        with zipfile.ZipFile(buffer, "w") as archive:
            for name, content in members:
                archive.writestr(name, content)
    return buffer.getvalue()


def test_inspect_lists_files_and_skips_directories_and_resource_forks(make_zip) -> None:
    buffer = make_zip(
        {
            "project/": "",
            "project/README.md": "hello",
            "project/src/app.py": "print('hi')",
            "__MACOSX/project/._README.md": "fork",
        }
    )

    entries = inspect(buffer)

    assert [entry.raw_path for entry in entries] == ["project/README.md", "project/src/app.py"]
    assert entries[0].uncompressed_size == 5


def test_inspect_rejects_non_zip_buffer() -> None:
    with pytest.raises(InvalidArchiveError):
        inspect(b"definitely not a zip")


def test_inspect_rejects_highly_compressed_entry(make_zip) -> None:
    buffer = make_zip({"bomb.txt": b"\0" * 1_000_000}, compression=zipfile.ZIP_DEFLATED)

    with pytest.raises(ArchiveBombError):
        inspect(buffer)


def test_inspect_rejects_total_size_over_cap(make_zip) -> None:
    buffer = make_zip({"a.bin": b"x" * 600, "b.bin": b"y" * 600})

    with pytest.raises(ArchiveTooLargeError):
        inspect(buffer, ArchiveLimits(max_total_uncompressed=1000))


def test_inspect_rejects_too_many_entries(make_zip) -> None:
    buffer = make_zip({f"file-{index}.txt": "x" for index in range(4)})

    with pytest.raises(TooManyEntriesError):
        inspect(buffer, ArchiveLimits(max_entries=3))


def test_inspect_accepts_exact_entry_limit(make_zip) -> None:
    buffer = make_zip({f"file-{index}.txt": "x" for index in range(3)})

    assert len(inspect(buffer, ArchiveLimits(max_entries=3))) == 3


def test_empty_files_pass_ratio_check(make_zip) -> None:
    entries = inspect(make_zip({"empty.txt": b""}))

    assert entries[0].uncompressed_size == 0


def test_inspection_never_reads_entry_content(make_zip, mocker) -> None:
    buffer = make_zip({"bomb.txt": b"\0" * 1_000_000}, compression=zipfile.ZIP_DEFLATED)
    opened = mocker.spy(zipfile.ZipFile, "open")

    with pytest.raises(ArchiveBombError):
        inspect(buffer)

    assert opened.call_count == 0


def test_read_entry_returns_declared_content(make_zip) -> None:
    buffer = make_zip({"notes/todo.txt": "ship it"})

    with open_archive(buffer) as archive:
        entry = inspect(buffer)[0]
        assert read_entry(archive, entry) == b"ship it"


def test_read_entry_refuses_more_data_than_declared(make_zip) -> None:
    buffer = make_zip({"liar.txt": "twelve bytes"})

    with open_archive(buffer) as archive:
        entry = ArchiveEntry(raw_path="liar.txt", uncompressed_size=3, compressed_size=3)
        with pytest.raises(ArchiveBombError):
            read_entry(archive, entry)


def test_sanitize_entries_strips_shared_root() -> None:
    entries, failures = sanitize_entries(
        [_entry("project/README.md"), _entry("project/src/app.py")]
    )

    assert [entry.normalized_path for entry in entries] == ["README.md", "src/app.py"]
    assert failures == []


def test_sanitize_entries_keeps_single_file_name() -> None:
    entries, _ = sanitize_entries([_entry("docs/guide.md")])

    assert entries[0].normalized_path == "guide.md"


def test_sanitize_entries_aborts_on_traversal() -> None:
    with pytest.raises(InvalidPathError):
        sanitize_entries([_entry("ok.txt"), _entry("../../etc/passwd")])


def test_sanitize_entries_reports_duplicates_after_normalization() -> None:
    entries, failures = sanitize_entries([_entry("a/b.txt"), _entry("a//b.txt"), _entry("c.txt")])

    assert [entry.normalized_path for entry in entries] == ["a/b.txt", "c.txt"]
    assert failures == [("a//b.txt", "Duplicate path in archive")]


@pytest.mark.parametrize("second", ["SECOND", "SECOND-and-much-longer-content"])
def test_duplicate_names_read_the_kept_entry(second: str) -> None:
    buffer = _zip_with_duplicates(("a.txt", "FIRST-long-content"), ("a.txt", second))

    with open_archive(buffer) as archive:
        entries, failures = sanitize_entries(inspect(buffer))
        contents = [read_entry(archive, entry) for entry in entries]

    assert failures == [("a.txt", "Duplicate path in archive")]
    assert contents == [b"FIRST-long-content"]
