"""Service toolkit: configuration sources, merging reader and storage, and mDNS discovery."""

__version__ = "0.1.0"