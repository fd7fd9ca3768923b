import argparse
import json
import threading

import pytest

from stark.config.flag_source import FlagSource
from stark.config.source import WatcherStoppedError

ARGV = ["--database-host", "localhost", "--database-password", "password"]


def make_parser():
    parser = argparse.ArgumentParser()
    parser.add_argument("--database-user", default="default", help="db user")
    parser.add_argument("--database-host", default="", help="db host")
    parser.add_argument("--database-password", default="", help="db pw")
    return parser


def test_read_only_set_flags():
    change_set = FlagSource(make_parser(), ARGV).read()
    actual = json.loads(change_set.data)
    database = actual["database"]

    assert database["host"] == "localhost"
    assert database["password"] == "password"
    assert "user" not in database
    assert change_set.source == "flag"
    assert change_set.format == "json"


def test_read_all_includes_defaults():
    actual = json.loads(FlagSource(make_parser(), ARGV, include_unset=True).read().data)
    database = actual["database"]

    assert database["user"] == "default"
    assert database["host"] == "localhost"


def test_typed_flag_values():
    parser = argparse.ArgumentParser()
    parser.add_argument("--server_port", type=int, default=80)
    actual = json.loads(FlagSource(parser, ["--server_port", "8081"]).read().data)
    assert actual == {"server": {"port": 8081}}


def test_nothing_set_encodes_null():
    assert FlagSource(make_parser(), []).read().data == b"null"


def test_watch_blocks_until_stop():
    watcher = FlagSource(make_parser(), ARGV).watch()
    timer = threading.Timer(0.05, watcher.stop)
    timer.start()
    try:
        with pytest.raises(WatcherStoppedError):
            watcher.next()
    finally:
        timer.cancel()