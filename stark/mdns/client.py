"""mDNS client: query for service instances and listen for announcements."""

from __future__ import annotations

import errno
import ipaddress
import logging
import queue
import socket
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import dns.exception
import dns.flags
import dns.message
import dns.rdataclass
import dns.rdatatype
import dns.rdtypes.ANY.PTR
import dns.rdtypes.ANY.TXT
import dns.rdtypes.IN.A
import dns.rdtypes.IN.AAAA
import dns.rdtypes.IN.SRV

from stark.mdns.server import (
    MDNS_GROUP_IPV4,
    MDNS_GROUP_IPV6,
    MDNS_PORT,
    _bind_ipv4,
    _bind_ipv6,
    _interface_indexes,
    _join_ipv4,
    _join_ipv6,
)
from stark.mdns.zone import trim_dot

_UNICAST_BIT = 1 << 15
_QUEUE_SIZE = 32
_POLL = 0.05
_BUFFER_SIZE = 65536

_log = logging.getLogger(__name__)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


@dataclass(eq=False)
class ServiceEntry:
    """A service instance found by a query."""

    name: str
    host: str = ""
    addr_v4: ipaddress.IPv4Address | None = None
    addr_v6: ipaddress.IPv6Address | None = None
    port: int = 0
    info: str = ""
    info_fields: list[str] = field(default_factory=list)
    ttl: int = 0
    addr: IPAddress | None = None
    has_txt: bool = field(default=False, repr=False)
    sent: bool = field(default=False, repr=False)

    def complete(self) -> bool:
        """Whether an address, a port and the TXT record are all known."""
        has_address = (
            self.addr_v4 is not None or self.addr_v6 is not None or self.addr is not None
        )
        return has_address and self.port != 0 and self.has_txt


@dataclass
class QueryParam:
    """How a lookup is performed.

    ``context`` ends the query when set; without it the query ends after
    ``timeout`` seconds. Found entries are put on ``entries``.
    """

    service: str
    domain: str = "local"
    context: threading.Event | None = None
    timeout: float = 1.0
    interface: str | int | None = None
    entries: queue.Queue[ServiceEntry] = field(default_factory=queue.Queue)
    want_unicast_response: bool = False


def default_params(service: str) -> QueryParam:
    """Return the default parameters for looking up a service."""
    return QueryParam(service=service)


def _ensure_name(inprogress: dict[str, ServiceEntry], name: str) -> ServiceEntry:
    entry = inprogress.get(name)
    if entry is None:
        entry = ServiceEntry(name=name)
        inprogress[name] = entry
    return entry


def _alias(inprogress: dict[str, ServiceEntry], src: str, dst: str) -> None:
    inprogress[dst] = _ensure_name(inprogress, src)


def message_to_entry(
    message: dns.message.Message, inprogress: dict[str, ServiceEntry]
) -> ServiceEntry | None:
    """Fold a response's records into the entries in progress; return the last touched."""
    entry: ServiceEntry | None = None
    for rrset in [*message.answer, *message.additional]:
        owner = rrset.name.to_text()
        for rdata in rrset:
            if isinstance(rdata, dns.rdtypes.ANY.PTR.PTR):
                entry = _ensure_name(inprogress, rdata.target.to_text())
                if entry.complete():
                    continue
            elif isinstance(rdata, dns.rdtypes.IN.SRV.SRV):
                target = rdata.target.to_text()
                if target != owner:
                    _alias(inprogress, owner, target)
                entry = _ensure_name(inprogress, owner)
                if entry.complete():
                    continue
                entry.host = target
                entry.port = int(rdata.port)
            elif isinstance(rdata, dns.rdtypes.ANY.TXT.TXT):
                entry = _ensure_name(inprogress, owner)
                if entry.complete():
                    continue
                fields = [part.decode("utf-8", "replace") for part in rdata.strings]
                entry.info = "|".join(fields)
                entry.info_fields = fields
                entry.has_txt = True
            elif isinstance(rdata, dns.rdtypes.IN.A.A):
                entry = _ensure_name(inprogress, owner)
                if entry.complete():
                    continue
                ip4 = ipaddress.IPv4Address(rdata.address)
                entry.addr = ip4
                entry.addr_v4 = ip4
            elif isinstance(rdata, dns.rdtypes.IN.AAAA.AAAA):
                entry = _ensure_name(inprogress, owner)
                if entry.complete():
                    continue
                ip6 = ipaddress.IPv6Address(rdata.address)
                entry.addr = ip6
                entry.addr_v6 = ip6

            if entry is not None:
                entry.ttl = int(rrset.ttl)
    return entry


def _ptr_query(name: str, want_unicast: bool = False) -> dns.message.Message:
    rdclass = dns.rdataclass.IN
    if want_unicast:
        # RFC 6762 section 18.12: the top qclass bit asks for a unicast reply.
        rdclass = int(dns.rdataclass.IN) | _UNICAST_BIT
    message = dns.message.make_query(name, dns.rdatatype.PTR, rdclass=rdclass)
    message.flags &= ~dns.flags.RD
    return message


def _deliver(
    entries: queue.Queue[ServiceEntry], entry: ServiceEntry, stop: Callable[[], bool]
) -> bool:
    while not stop():
        try:
            entries.put(entry, timeout=_POLL)
            return True
        except queue.Full:
            continue
    return False


def _send_instance_query(
    send_query: Callable[[dns.message.Message], None], entry: ServiceEntry
) -> None:
    try:
        send_query(_ptr_query(entry.name))
    except (OSError, dns.exception.DNSException) as exc:
        _log.error("mdns: failed to query instance %s: %s", entry.name, exc)


def _stream_entries(
    params: QueryParam,
    messages: queue.Queue[dns.message.Message],
    send_query: Callable[[dns.message.Message], None],
    cancelled: Callable[[], bool],
) -> None:
    inprogress: dict[str, ServiceEntry] = {}
    while not cancelled():
        try:
            message = messages.get(timeout=_POLL)
        except queue.Empty:
            continue
        entry = message_to_entry(message, inprogress)
        if entry is None:
            continue
        if entry.complete():
            if entry.sent:
                continue
            entry.sent = True
            if not _deliver(params.entries, entry, cancelled):
                return
        else:
            _send_instance_query(send_query, entry)


def _interface_index(iface: str | int | None) -> int:
    if iface is None:
        return 0
    if isinstance(iface, int):
        return iface
    return socket.if_nametoindex(iface)


class _Client:
    """The sockets used to send queries and receive answers."""

    def __init__(self) -> None:
        self._unicast4 = _bind_ipv4(0)
        self._unicast6 = _bind_ipv6(0)
        if self._unicast4 is None and self._unicast6 is None:
            _log.error("mdns: failed to bind to udp port")
            raise OSError("failed to bind to any unicast udp port")

        self._multicast4 = _bind_ipv4(MDNS_PORT)
        self._multicast6 = _bind_ipv6(MDNS_PORT)
        if self._multicast4 is None and self._multicast6 is None:
            self._close_sockets()
            _log.error("mdns: failed to bind to udp port")
            raise OSError("failed to bind to any multicast udp port")

        self._closed = threading.Event()
        self._threads: list[threading.Thread] = []
        try:
            self._join_all()
        except Exception:
            self._close_sockets()
            raise

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __enter__(self) -> _Client:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _sockets(self) -> list[socket.socket | None]:
        return [self._unicast4, self._unicast6, self._multicast4, self._multicast6]

    def _close_sockets(self) -> None:
        for sock in self._sockets():
            if sock is not None:
                sock.close()

    def _join_all(self) -> None:
        pairs = ((self._multicast4, _join_ipv4), (self._multicast6, _join_ipv6))
        indexes = _interface_indexes()
        failures = [0, 0]
        for index in indexes:
            for slot, (sock, join) in enumerate(pairs):
                if sock is None:
                    failures[slot] += 1
                    continue
                try:
                    join(sock, index)
                except OSError:
                    failures[slot] += 1
        if failures[0] == len(indexes) and failures[1] == len(indexes):
            raise OSError("failed to join multicast group on all interfaces")

    def set_interface(self, iface: str | int | None, loopback: bool) -> None:
        """Join the mDNS groups on one interface; the system default if None."""
        index = _interface_index(iface)
        pairs = (
            (self._unicast4, _join_ipv4),
            (self._unicast6, _join_ipv6),
            (self._multicast4, _join_ipv4),
            (self._multicast6, _join_ipv6),
        )
        for sock, join in pairs:
            if sock is None:
                continue
            try:
                join(sock, index)
            except OSError as exc:
                if exc.errno != errno.EADDRINUSE:
                    raise
        if loopback:
            if self._multicast4 is not None:
                self._multicast4.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
            if self._multicast6 is not None:
                self._multicast6.setsockopt(
                    socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_LOOP, 1
                )

    def start_receiving(self, messages: queue.Queue[dns.message.Message]) -> None:
        for sock in self._sockets():
            if sock is None:
                continue
            thread = threading.Thread(
                target=self._recv, args=(sock, messages), daemon=True
            )
            self._threads.append(thread)
            thread.start()

    def _recv(
        self, sock: socket.socket, messages: queue.Queue[dns.message.Message]
    ) -> None:
        while not self._closed.is_set():
            try:
                packet, _ = sock.recvfrom(_BUFFER_SIZE)
            except OSError:
                continue
            try:
                message = dns.message.from_wire(packet)
            except (dns.exception.DNSException, ValueError):
                continue
            while not self._closed.is_set():
                try:
                    messages.put(message, timeout=_POLL)
                    break
                except queue.Full:
                    continue

    def send_query(self, message: dns.message.Message) -> None:
        """Multicast a query from the unicast sockets; send failures are ignored."""
        wire = message.to_wire()
        targets = (
            (self._unicast4, (MDNS_GROUP_IPV4, MDNS_PORT)),
            (self._unicast6, (MDNS_GROUP_IPV6, MDNS_PORT, 0, 0)),
        )
        for sock, address in targets:
            if sock is None:
                continue
            try:
                sock.sendto(wire, address)
            except OSError:
                pass

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        for thread in self._threads:
            thread.join()
        self._close_sockets()


def _cancellation(params: QueryParam) -> Callable[[], bool]:
    if params.context is not None:
        return params.context.is_set
    if not params.timeout:
        params.timeout = 1.0
    deadline = time.monotonic() + params.timeout
    return lambda: time.monotonic() >= deadline


def query(params: QueryParam) -> None:
    """Look up a service, putting complete entries on params.entries until done."""
    with _Client() as client:
        if params.interface is not None:
            client.set_interface(params.interface, loopback=False)
        if not params.domain:
            params.domain = "local"
        cancelled = _cancellation(params)

        messages: queue.Queue[dns.message.Message] = queue.Queue(_QUEUE_SIZE)
        client.start_receiving(messages)

        service_addr = f"{trim_dot(params.service)}.{trim_dot(params.domain)}."
        client.send_query(_ptr_query(service_addr, params.want_unicast_response))
        _stream_entries(params, messages, client.send_query, cancelled)


def listen(entries: queue.Queue[ServiceEntry], exit_event: threading.Event) -> None:
    """Put every complete announced entry on the queue until exit_event is set."""
    with _Client() as client:
        try:
            client.set_interface(None, loopback=True)
        except OSError:
            pass

        messages: queue.Queue[dns.message.Message] = queue.Queue(_QUEUE_SIZE)
        client.start_receiving(messages)

        def stop() -> bool:
            return exit_event.is_set() or client.closed

        found: dict[str, ServiceEntry] = {}
        while not stop():
            try:
                message = messages.get(timeout=_POLL)
            except queue.Empty:
                continue
            entry = message_to_entry(message, found)
            if entry is None:
                continue
            if entry.complete():
                if entry.sent:
                    continue
                entry.sent = True
                if not _deliver(entries, entry, stop):
                    return
                found = {}
            else:
                _send_instance_query(client.send_query, entry)


def lookup(service: str, entries: queue.Queue[ServiceEntry]) -> None:
    """Query a service with the default parameters."""
    params = default_params(service)
    params.entries = entries
    query(params)