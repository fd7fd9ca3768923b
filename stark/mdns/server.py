"""An mDNS responder that answers multicast DNS questions from a zone."""

from __future__ import annotations

import logging
import random
import socket
import struct
import sys
import threading
from dataclasses import dataclass
from typing import Any

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.opcode
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rdtypes.ANY.TXT
import dns.rdtypes.IN.SRV
import dns.rrset

from stark.mdns.zone import DEFAULT_TTL, MDNSService, Question, Zone, trim_dot

MDNS_PORT = 5353
MDNS_GROUP_IPV4 = "224.0.0.251"
MDNS_GROUP_IPV6 = "ff02::fb"

_UNICAST_BIT = 1 << 15
_RECV_TIMEOUT = 0.1
_BUFFER_SIZE = 65536

_log = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    """Settings of an mDNS server.

    ``zone`` answers the questions. ``iface`` (a name or an index) limits the
    multicast listener to one interface; by default every interface is joined.
    A non-zero ``port`` replaces the mDNS port 5353.
    """

    zone: Zone
    iface: str | int | None = None
    port: int = 0


def _allow_reuse(sock: socket.socket) -> None:
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    if hasattr(socket, "SO_REUSEPORT"):
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        except OSError:
            pass


def _bind_ipv4(port: int) -> socket.socket | None:
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError:
        return None
    try:
        _allow_reuse(sock)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
        sock.bind(("0.0.0.0", port))
    except OSError:
        sock.close()
        return None
    sock.settimeout(_RECV_TIMEOUT)
    return sock


def _bind_ipv6(port: int) -> socket.socket | None:
    try:
        sock = socket.socket(socket.AF_INET6, socket.SOCK_DGRAM)
    except OSError:
        return None
    try:
        _allow_reuse(sock)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
        sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_MULTICAST_LOOP, 1)
        sock.bind(("::", port))
    except OSError:
        sock.close()
        return None
    sock.settimeout(_RECV_TIMEOUT)
    return sock


def _join_ipv4(sock: socket.socket, ifindex: int) -> None:
    group = socket.inet_aton(MDNS_GROUP_IPV4)
    any_address = socket.inet_aton("0.0.0.0")
    if sys.platform.startswith("linux"):
        request = struct.pack("=4s4si", group, any_address, ifindex)
    else:
        request = group + any_address
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, request)


def _join_ipv6(sock: socket.socket, ifindex: int) -> None:
    group = socket.inet_pton(socket.AF_INET6, MDNS_GROUP_IPV6)
    request = struct.pack("=16sI", group, ifindex)
    sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, request)


def _interface_indexes() -> list[int]:
    return [index for index, _ in socket.if_nameindex()]


def _instance_name(service: MDNSService) -> str:
    return f"{service.instance}.{trim_dot(service.service)}.{trim_dot(service.domain)}."


def _response(message_id: int, answer: list[dns.rrset.RRset]) -> dns.message.Message:
    # RFC 6762 section 18: QR and AA set, every other header bit and RCODE zero.
    message = dns.message.Message(id=message_id)
    message.flags = dns.flags.QR | dns.flags.AA
    message.set_opcode(dns.opcode.QUERY)
    message.answer.extend(answer)
    return message


class Server:
    """Listens for mDNS queries and answers those the zone has records for."""

    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        port = config.port or MDNS_PORT
        self._group_ipv4: tuple[Any, ...] = (MDNS_GROUP_IPV4, port)
        self._group_ipv6: tuple[Any, ...] = (MDNS_GROUP_IPV6, port, 0, 0)

        self._ipv4 = _bind_ipv4(port)
        self._ipv6 = _bind_ipv6(port)
        if self._ipv4 is None and self._ipv6 is None:
            raise OSError("mdns: failed to bind to any udp port")

        try:
            self._join_groups(config.iface)
        except Exception:
            self._close_sockets()
            raise

        self._zone_lock = threading.Lock()
        self._shutdown_lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._closed = False

        self._threads = [
            threading.Thread(target=self._recv, args=(sock,), daemon=True)
            for sock in (self._ipv4, self._ipv6)
            if sock is not None
        ]
        self._threads.append(threading.Thread(target=self._probe, daemon=True))
        for thread in self._threads:
            thread.start()

    def __enter__(self) -> Server:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def _join_groups(self, iface: str | int | None) -> None:
        pairs = ((self._ipv4, _join_ipv4), (self._ipv6, _join_ipv6))
        if iface is not None:
            index = iface if isinstance(iface, int) else socket.if_nametoindex(iface)
            for sock, join in pairs:
                if sock is not None:
                    join(sock, index)
            return

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

    def _close_sockets(self) -> None:
        for sock in (self._ipv4, self._ipv6):
            if sock is not None:
                sock.close()

    def shutdown(self) -> None:
        """Announce the service's departure and stop; calling it again does nothing."""
        with self._shutdown_lock:
            if self._closed:
                return
            self._closed = True
            self._shutdown_event.set()
            try:
                self._unregister()
            except (dns.exception.DNSException, ValueError) as exc:
                _log.error("mdns: failed to send goodbye: %s", exc)
            for thread in self._threads:
                thread.join()
            self._close_sockets()

    def send_multicast(self, message: dns.message.Message) -> None:
        """Send a message to the mDNS multicast groups; send failures are ignored."""
        wire = message.to_wire()
        for sock, group in ((self._ipv4, self._group_ipv4), (self._ipv6, self._group_ipv6)):
            if sock is None:
                continue
            try:
                sock.sendto(wire, group)
            except OSError:
                pass

    def handle_query(self, query: dns.message.Message) -> list[dns.message.Message]:
        """Return the responses to a query: multicast first, then unicast.

        Raises ValueError for queries that must be ignored.
        """
        if query.opcode() != dns.opcode.QUERY:
            raise ValueError(
                "mdns: received query with non-zero Opcode "
                f"{dns.opcode.to_text(query.opcode())}"
            )
        if query.rcode() != dns.rcode.NOERROR:
            raise ValueError(
                "mdns: received query with non-zero Rcode "
                f"{dns.rcode.to_text(query.rcode())}"
            )
        if query.flags & dns.flags.TC:
            raise ValueError(
                "mdns: support for DNS requests with high truncated bit not implemented"
            )

        multicast: list[dns.rrset.RRset] = []
        unicast: list[dns.rrset.RRset] = []
        for rrset in query.question:
            question = Question(rrset.name.to_text(), int(rrset.rdtype), int(rrset.rdclass))
            multicast_records, unicast_records = self._handle_question(question)
            multicast.extend(multicast_records)
            unicast.extend(unicast_records)

        responses = []
        if multicast:
            responses.append(_response(0, multicast))
        if unicast:
            responses.append(_response(query.id, unicast))
        return responses

    def _handle_question(
        self, question: Question
    ) -> tuple[list[dns.rrset.RRset], list[dns.rrset.RRset]]:
        with self._zone_lock:
            records = self.config.zone.records(question)
        if not records:
            return [], []
        if question.qclass & _UNICAST_BIT:
            return [], records
        return records, []

    def _recv(self, sock: socket.socket) -> None:
        while not self._shutdown_event.is_set():
            try:
                packet, sender = sock.recvfrom(_BUFFER_SIZE)
            except OSError:
                continue
            try:
                self._handle_packet(sock, packet, sender)
            except (dns.exception.DNSException, ValueError, OSError) as exc:
                _log.error("mdns: failed to handle query: %s", exc)

    def _handle_packet(self, sock: socket.socket, packet: bytes, sender: Any) -> None:
        message = dns.message.from_wire(packet)
        # Known-answer continuation (TC) is not supported; treat it as clear.
        message.flags &= ~dns.flags.TC
        for response in self.handle_query(message):
            sock.sendto(response.to_wire(), sender)

    def _probe(self) -> None:
        with self._zone_lock:
            zone = self.config.zone
            if not isinstance(zone, MDNSService):
                return
            name = _instance_name(zone)
            port = zone.port
            host_name = zone.host_name
            txt = list(zone.txt)

        owner = dns.name.from_text(name)
        probe = dns.message.make_query(name, dns.rdatatype.PTR)
        probe.flags &= ~dns.flags.RD
        srv = dns.rdtypes.IN.SRV.SRV(
            dns.rdataclass.IN,
            dns.rdatatype.SRV,
            0,
            0,
            port & 0xFFFF,
            dns.name.from_text(host_name),
        )
        text = dns.rdtypes.ANY.TXT.TXT(dns.rdataclass.IN, dns.rdatatype.TXT, txt or [""])
        probe.authority.append(dns.rrset.from_rdata(owner, DEFAULT_TTL, srv))
        probe.authority.append(dns.rrset.from_rdata(owner, DEFAULT_TTL, text))

        randomizer = random.Random()
        for _ in range(3):
            try:
                self.send_multicast(probe)
            except (dns.exception.DNSException, ValueError) as exc:
                _log.error("mdns: failed to send probe: %s", exc)
            if self._shutdown_event.wait(randomizer.randrange(250) / 1000):
                return

        announcement = dns.message.Message()
        announcement.flags |= dns.flags.QR
        with self._zone_lock:
            announcement.answer.extend(
                self.config.zone.records(Question(name, dns.rdatatype.ANY))
            )

        # RFC 6762 section 8.3: at least two announcements, intervals doubling.
        timeout = 1.0
        for _ in range(3):
            try:
                self.send_multicast(announcement)
            except (dns.exception.DNSException, ValueError) as exc:
                _log.error("mdns: failed to send announcement: %s", exc)
            if self._shutdown_event.wait(timeout):
                return
            timeout *= 2

    def _unregister(self) -> None:
        with self._zone_lock:
            zone = self.config.zone
            if not isinstance(zone, MDNSService):
                return
            zone.ttl = 0
            goodbye = dns.message.Message()
            goodbye.flags |= dns.flags.QR
            goodbye.answer.extend(
                zone.records(Question(_instance_name(zone), dns.rdatatype.ANY))
            )
        self.send_multicast(goodbye)