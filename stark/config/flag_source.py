"""Configuration taken from parsed command-line flags.

Hyphens and underscores in a flag name separate nesting levels and keys are
lower cased, so ``--database-host`` becomes ``{"database": {"host": ...}}``.
"""

from __future__ import annotations

import argparse
import re
import sys
from collections.abc import Sequence
from typing import Any

from stark.config.encoders import Encoder, JsonEncoder
from stark.config.reader import merge_maps
from stark.config.source import ChangeSet, NoopWatcher, Source

_SEPARATORS = re.compile(r"[-_]")


def _flag_name(parser: argparse.ArgumentParser, action: argparse.Action) -> str:
    if not action.option_strings:
        return action.dest
    long_options = [opt for opt in action.option_strings if opt.startswith("--")]
    chosen = (long_options or action.option_strings)[0]
    return chosen.lstrip(parser.prefix_chars)


def _plain(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _plain(item) for key, item in value.items()}
    return str(value)


class FlagSource(Source):
    """A source built from an argument parser and its arguments.

    Only flags given on the command line are included unless
    ``include_unset`` is set, in which case defaults are included too.
    """

    name = "flag"

    def __init__(
        self,
        parser: argparse.ArgumentParser,
        argv: Sequence[str] | None = None,
        include_unset: bool = False,
        encoder: Encoder | None = None,
    ) -> None:
        self._parser = parser
        self._argv = argv
        self._include_unset = include_unset
        self._encoder = encoder or JsonEncoder()

    def read(self) -> ChangeSet:
        argv = sys.argv[1:] if self._argv is None else list(self._argv)
        actions = [
            action
            for action in self._parser._actions
            if action.dest is not argparse.SUPPRESS
        ]

        values = vars(self._parser.parse_args(argv))
        unset = object()
        probe = argparse.Namespace(**{action.dest: unset for action in actions})
        explicit = vars(self._parser.parse_args(argv, namespace=probe))

        changes: dict[str, Any] | None = None
        named = sorted(
            ((_flag_name(self._parser, action), action) for action in actions),
            key=lambda pair: pair[0],
        )
        for flag_name, action in named:
            if action.dest not in values:
                continue
            given = explicit.get(action.dest, unset) is not unset
            if not given and not self._include_unset:
                continue

            keys = [key for key in _SEPARATORS.split(flag_name.lower()) if key]
            node: Any = _plain(values[action.dest])
            for key in reversed(keys):
                node = {key: node}
            if not isinstance(node, dict):
                continue

            if changes is None:
                changes = {}
            merge_maps(changes, node)

        change_set = ChangeSet(
            format=self._encoder.name,
            data=self._encoder.encode(changes),
            source=self.name,
        )
        change_set.checksum = change_set.sum()
        return change_set

    def watch(self) -> NoopWatcher:
        return NoopWatcher()