"""Encoders for the configuration formats: JSON, YAML, TOML and XML."""

from __future__ import annotations

import datetime as _dt
import json
import tomllib
from abc import ABC, abstractmethod
from typing import Any, ClassVar
from xml.parsers.expat import ExpatError

import tomli_w
import xmltodict
import yaml


def _json_compatible(value: Any) -> Any:
    """Turn decoded data into plain JSON-shaped values."""
    if isinstance(value, dict):
        return {str(key): _json_compatible(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_compatible(item) for item in value]
    if isinstance(value, (_dt.datetime, _dt.date, _dt.time)):
        return value.isoformat()
    return value


class Encoder(ABC):
    """Converts between Python values and bytes of one format."""

    name: ClassVar[str] = ""

    @abstractmethod
    def encode(self, value: Any) -> bytes:
        """Serialise a value."""

    @abstractmethod
    def decode(self, data: bytes) -> Any:
        """Parse bytes; raises ValueError on malformed input."""

    def __str__(self) -> str:
        return self.name


class JsonEncoder(Encoder):
    name = "json"

    def encode(self, value: Any) -> bytes:
        return json.dumps(
            value, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        ).encode("utf-8")

    def decode(self, data: bytes) -> Any:
        return json.loads(data)


class YamlEncoder(Encoder):
    name = "yaml"

    def encode(self, value: Any) -> bytes:
        text = yaml.safe_dump(
            value, default_flow_style=False, sort_keys=True, allow_unicode=True
        )
        return text.encode("utf-8")

    def decode(self, data: bytes) -> Any:
        try:
            return _json_compatible(yaml.safe_load(data))
        except yaml.YAMLError as exc:
            raise ValueError(f"yaml: {exc}") from exc


class TomlEncoder(Encoder):
    name = "toml"

    def encode(self, value: Any) -> bytes:
        return tomli_w.dumps(value).encode("utf-8")

    def decode(self, data: bytes) -> Any:
        return _json_compatible(tomllib.loads(data.decode("utf-8")))


class XmlEncoder(Encoder):
    name = "xml"

    def encode(self, value: Any) -> bytes:
        return xmltodict.unparse(value, full_document=False).encode("utf-8")

    def decode(self, data: bytes) -> Any:
        try:
            return _json_compatible(xmltodict.parse(data))
        except ExpatError as exc:
            raise ValueError(f"xml: {exc}") from exc


def default_encoders() -> dict[str, Encoder]:
    """Return the encoders known by default, keyed by format name."""
    return {
        "json": JsonEncoder(),
        "yaml": YamlEncoder(),
        "toml": TomlEncoder(),
        "xml": XmlEncoder(),
        "yml": YamlEncoder(),
    }