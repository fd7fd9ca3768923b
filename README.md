# stark

Building blocks for services:

- **Configuration sources.** Read configuration from a file (JSON, YAML, TOML, XML), from environment variables, from command-line flags parsed with `argparse`, or from data held in memory. Each source yields a `ChangeSet` and can be watched for changes.
- **Merging and typed values.** `JsonReader` merges change sets, later ones overriding earlier ones, and gives typed access to the merged values.
- **Backup storage.** `FileStorage` keeps the bytes of a configuration in a file.
- **mDNS / DNS-SD.** Advertise a service on the local network with a small server, and find services with a client.

## Installation

```
pip install .
```

## Configuration

### Sources

All sources are in `stark.config` and return a `stark.config.source.ChangeSet` from `read()`:

- `file_source.FileSource(path, encoder=None)`: reads one file. The format is taken from the file's extension, for example `json`, `yaml`, `yml`, `toml` or `xml`. If the file has no extension, the encoder's format is used, which is JSON by default.
- `env_source.EnvSource(prefixes=None, stripped_prefixes=None, encoder=None)`: reads the process environment. Variable names are lower-cased and nested at underscores, so `DATABASE_SERVER_HOST=localhost` becomes `{"database": {"server": {"host": "localhost"}}}`.
  - Values that look like integers or booleans are converted.
  - `prefixes` limits the variables read to those with one of the prefixes.
  - `stripped_prefixes` does the same, and also removes the prefix from the key.
- `flag_source.FlagSource(parser, argv=None, include_unset=False, encoder=None)`: parses `argv` with an `argparse.ArgumentParser`. When `argv` is `None`, `sys.argv[1:]` is used. Hyphens and underscores in flag names separate nesting levels. Only flags given on the command line are included, unless `include_unset=True`.
- `memory_source.MemorySource(change_set=None)`: holds one change set.
  - `MemorySource.from_json(data)` and `MemorySource.from_yaml(data)` build one from text or bytes.
  - `update(change_set)` replaces the data and notifies watchers.

### Merging and reading values

```python
from stark.config.env_source import EnvSource
from stark.config.file_source import FileSource
from stark.config.reader import JsonReader

reader = JsonReader()
merged = reader.merge(FileSource("config.json").read(), EnvSource().read())
values = reader.values(merged)

host = values.get("amqp", "host").as_str("localhost")
port = values.get("amqp", "port").as_int(5672)
```

`values.get(*path)` returns a `JsonValue`. Its typed accessors each take a default, which they return when the value is missing or of the wrong type:

- `as_bool`
- `as_int`
- `as_str`
- `as_float`
- `as_duration` returns a `timedelta` parsed from text such as `"300ms"` or `"2h45m"`.
- `as_string_slice`
- `as_string_map`

`scan()` returns a copy of the plain Python data, and `data()` returns bytes.

`JsonValues` also has these methods:

- `set(value, *path)`
- `delete(*path)`
- `as_dict()`
- `scan()`
- `data()`

Before the merged JSON is parsed, every `${NAME}` in it is replaced with the value of the environment variable `NAME`. `stark.config.reader.replace_env_vars` does this on its own.

### Watching

`watch()` on a source returns a watcher:

- Its `next()` blocks until there is a new change set.
- After `stop()`, `next()` raises `WatcherStoppedError`.
- Iterating over a watcher yields change sets until it is stopped.

How each source's watcher behaves:

- `FileWatcher` polls the file's metadata.
- `MemoryWatcher` receives the change sets passed to `MemorySource.update`.
- The environment and flag watchers never report a change; they only wait for `stop()`.

### Backup storage

```python
from stark.config.storage import FileStorage

storage = FileStorage("/tmp/stark_config.conf")
storage.write(merged.data)
if storage.exists():
    data = storage.load()
```

## mDNS

Advertise a service. The server binds to port 5353 unless `ServerConfig(port=...)` says otherwise:

```python
from stark.mdns.server import Server, ServerConfig
from stark.mdns.zone import MDNSService

service = MDNSService.create("myhost", "_foobar._tcp", "local.", "myhost.", 8000,
                             ["192.168.0.42"], ["My service"])
with Server(ServerConfig(zone=service)) as server:
    ...
```

Leaving the server sends a goodbye message with a TTL of zero. `DNSSDService` in `stark.mdns.dns_sd` wraps an `MDNSService` and also answers the `_services._dns-sd._udp.<domain>` meta-query.

Find services:

```python
import queue

from stark.mdns.client import lookup

entries = queue.Queue()
lookup("_foobar._tcp", entries)
while not entries.empty():
    print(entries.get())
```

`lookup` queries for one second. For a different domain, timeout, interface or stop event, pass a `QueryParam` to `query`. `listen(entries, exit_event)` collects announced services until the event is set.

## What is not included

The package does not provide any of the following:

- An object that loads several sources, keeps their merged values up to date as watchers report changes, and falls back to the backup file when loading fails. Combine the sources, `JsonReader` and `FileStorage` yourself.
- A logging module. The mDNS code reports errors through the standard `logging` module.
- A command-line tool.

## Tests

```
pip install .[test]
pytest
```