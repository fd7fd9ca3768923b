import pytest

from stark.config.encoders import (
    JsonEncoder,
    TomlEncoder,
    XmlEncoder,
    YamlEncoder,
    default_encoders,
)


def test_json_encode_is_compact_and_sorted():
    assert JsonEncoder().encode({"foo": "bar", "baz": {"bar": "cat"}}) == (
        b'{"baz":{"bar":"cat"},"foo":"bar"}'
    )


def test_json_round_trip():
    value = {"amqp": {"host": "rabbit.platform", "port": 80}, "list": [1, "a", None]}
    encoder = JsonEncoder()
    assert encoder.decode(encoder.encode(value)) == value


def test_json_decode_invalid():
    with pytest.raises(ValueError):
        JsonEncoder().decode(b"{not json")


def test_yaml_round_trip():
    value = {"stark": {"service": {"name": "demo.service", "rpc-port": 8081}}}
    encoder = YamlEncoder()
    assert encoder.decode(encoder.encode(value)) == value


def test_yaml_keys_become_strings():
    decoded = YamlEncoder().decode(b"1: a\n")
    assert list(decoded) == ["1"]


def test_yaml_decode_invalid():
    with pytest.raises(ValueError):
        YamlEncoder().decode(b"a: [")


def test_toml_round_trip():
    value = {"a": 1, "b": {"c": "d"}}
    encoder = TomlEncoder()
    assert encoder.decode(encoder.encode(value)) == value


def test_toml_dates_become_strings():
    assert TomlEncoder().decode(b"d = 1979-05-27\n") == {"d": "1979-05-27"}


def test_toml_decode_invalid():
    with pytest.raises(ValueError):
        TomlEncoder().decode(b"a = ")


def test_xml_round_trip():
    value = {"root": {"a": "1", "b": "x"}}
    encoder = XmlEncoder()
    assert encoder.decode(encoder.encode(value)) == value


def test_xml_decode_invalid():
    with pytest.raises(ValueError):
        XmlEncoder().decode(b"<a>")


def test_default_encoders_by_format():
    encoders = default_encoders()
    assert set(encoders) == {"json", "yaml", "toml", "xml", "yml"}
    assert str(encoders["yml"]) == "yaml"
    assert all(str(encoders[key]) == key for key in ("json", "yaml", "toml", "xml"))