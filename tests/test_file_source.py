import threading

import pytest

from stark.config.encoders import JsonEncoder
from stark.config.file_source import FileSource, file_format
from stark.config.source import ChangeSet, WatcherStoppedError


def test_read_returns_file_data(tmp_path):
    data = b'{"foo": "bar"}'
    path = tmp_path / "file.123456789"
    path.write_bytes(data)

    change_set = FileSource(path).read()

    assert change_set.data == data
    assert change_set.source == "file"
    assert change_set.checksum == ChangeSet(data=data).sum()


def test_read_uses_extension_as_format(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_bytes(b"foo: bar\n")
    assert FileSource(path).read().format == "yaml"


@pytest.mark.parametrize(
    "path, expected",
    [
        ("/foo/bar.json", "json"),
        ("/foo/bar.yaml", "yaml"),
        ("/foo/bar.xml", "xml"),
        ("/foo/bar.conf.ini", "ini"),
        ("conf", "json"),
    ],
)
def test_format(path, expected):
    assert file_format(path, JsonEncoder()) == expected


def test_read_missing_file_names_path():
    with pytest.raises(FileNotFoundError) as info:
        FileSource("/i/do/not/exists.json").read()
    assert "/i/do/not/exists.json" in str(info.value)


def test_watch_missing_file_raises():
    with pytest.raises(FileNotFoundError):
        FileSource("/i/do/not/exists.json").watch()


def test_watch_reports_change(tmp_path):
    path = tmp_path / "config.json"
    path.write_bytes(b"{}")
    watcher = FileSource(path).watch()
    updated = b'{"foo": "changed"}'

    writer = threading.Timer(0.2, path.write_bytes, args=(updated,))
    guard = threading.Timer(5.0, watcher.stop)
    writer.start()
    guard.start()
    try:
        change_set = watcher.next()
    finally:
        writer.cancel()
        guard.cancel()
        watcher.stop()

    assert change_set.data == updated


def test_watch_stop_raises(tmp_path):
    path = tmp_path / "config.json"
    path.write_bytes(b"{}")
    watcher = FileSource(path).watch()
    watcher.stop()
    with pytest.raises(WatcherStoppedError):
        watcher.next()