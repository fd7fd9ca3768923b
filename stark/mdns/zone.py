"""Zones that answer mDNS questions, and a zone exporting one named service."""

from __future__ import annotations

import ipaddress
import socket
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field

import dns.name
import dns.rdata
import dns.rdataclass
import dns.rdatatype
import dns.rdtypes.ANY.PTR
import dns.rdtypes.ANY.TXT
import dns.rdtypes.IN.A
import dns.rdtypes.IN.AAAA
import dns.rdtypes.IN.SRV
import dns.rrset

DEFAULT_TTL = 120
"""Default TTL, in seconds, of the records a service returns."""

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def validate_fqdn(name: str) -> None:
    """Raise ValueError unless the name is a fully qualified domain name."""
    if not name:
        raise ValueError("FQDN must not be blank")
    if not name.endswith("."):
        raise ValueError(f"FQDN must end in period: {name}")


def trim_dot(name: str) -> str:
    """Remove dots from the start and the end of a name."""
    return name.strip(".")


@dataclass(frozen=True)
class Question:
    """A DNS question: a name, a record type and a class."""

    name: str
    qtype: int = dns.rdatatype.ANY
    qclass: int = dns.rdataclass.IN


class Zone(ABC):
    """Something that answers DNS questions with records."""

    @abstractmethod
    def records(self, question: Question) -> list[dns.rrset.RRset]:
        """Return the records answering the question, possibly none."""


def _parse_ip(value: object) -> IPAddress:
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    try:
        return ipaddress.ip_address(value)  # type: ignore[arg-type]
    except ValueError as exc:
        raise ValueError(f"invalid IP address in IPs list: {value!r}") from exc


def _to4(ip: IPAddress) -> ipaddress.IPv4Address | None:
    if isinstance(ip, ipaddress.IPv4Address):
        return ip
    return ip.ipv4_mapped


def _rrset(name: str, ttl: int, rdata: dns.rdata.Rdata) -> dns.rrset.RRset:
    return dns.rrset.from_rdata(dns.name.from_text(name), ttl, rdata)


def _ptr(name: str, ttl: int, target: str) -> dns.rrset.RRset:
    rdata = dns.rdtypes.ANY.PTR.PTR(
        dns.rdataclass.IN, dns.rdatatype.PTR, dns.name.from_text(target)
    )
    return _rrset(name, ttl, rdata)


def _lookup_ips(host: str) -> list[IPAddress]:
    infos = socket.getaddrinfo(host, None)
    found: list[IPAddress] = []
    for *_, sockaddr in infos:
        ip = ipaddress.ip_address(str(sockaddr[0]).split("%", 1)[0])
        if ip not in found:
            found.append(ip)
    if not found:
        raise OSError(f"no addresses for {host}")
    return found


@dataclass
class MDNSService(Zone):
    """A zone exporting one named service instance."""

    instance: str = ""
    service: str = ""
    domain: str = ""
    host_name: str = ""
    port: int = 0
    ips: list[IPAddress] = field(default_factory=list)
    txt: list[str] = field(default_factory=list)
    ttl: int = DEFAULT_TTL
    service_addr: str = ""
    instance_addr: str = ""
    enum_addr: str = ""

    def __post_init__(self) -> None:
        self.ips = [_parse_ip(ip) for ip in self.ips]
        self.txt = list(self.txt)
        if self.service:
            service = trim_dot(self.service)
            domain = trim_dot(self.domain)
            if not self.service_addr:
                self.service_addr = f"{service}.{domain}."
            if not self.instance_addr:
                self.instance_addr = f"{self.instance}.{service}.{domain}."
            if not self.enum_addr:
                self.enum_addr = f"_services._dns-sd._udp.{domain}."

    @classmethod
    def create(
        cls,
        instance: str,
        service: str,
        domain: str = "",
        host_name: str = "",
        port: int = 0,
        ips: Iterable[object] | None = None,
        txt: Iterable[str] | None = None,
    ) -> MDNSService:
        """Build a service, filling in the domain, host name and addresses if blank.

        Raises ValueError on bad parameters and OSError when the host or its
        addresses cannot be determined.
        """
        if not instance:
            raise ValueError("missing service instance name")
        if not service:
            raise ValueError("missing service name")
        if port == 0:
            raise ValueError("missing service port")

        domain = domain or "local."
        try:
            validate_fqdn(domain)
        except ValueError as exc:
            raise ValueError(
                f"domain {domain!r} is not a fully-qualified domain name: {exc}"
            ) from exc

        if not host_name:
            try:
                host_name = socket.gethostname()
            except OSError as exc:
                raise OSError(f"could not determine host: {exc}") from exc
            host_name = f"{host_name}."
        try:
            validate_fqdn(host_name)
        except ValueError as exc:
            raise ValueError(
                f"hostName {host_name!r} is not a fully-qualified domain name: {exc}"
            ) from exc

        addresses = list(ips or ())
        if not addresses:
            try:
                addresses = list(_lookup_ips(trim_dot(host_name)))
            except OSError:
                try:
                    addresses = list(_lookup_ips(trim_dot(host_name + domain)))
                except OSError as exc:
                    raise OSError(
                        f"could not determine host IP addresses for {host_name}"
                    ) from exc

        return cls(
            instance=instance,
            service=service,
            domain=domain,
            host_name=host_name,
            port=port,
            ips=addresses,
            txt=list(txt or ()),
            ttl=DEFAULT_TTL,
        )

    def records(self, question: Question) -> list[dns.rrset.RRset]:
        name = question.name
        if name == self.enum_addr:
            return self._service_enum(question)
        if name == self.service_addr:
            return self._service_records(question)
        if name == self.instance_addr:
            return self._instance_records(question)
        if name == self.host_name and question.qtype in (
            dns.rdatatype.A,
            dns.rdatatype.AAAA,
        ):
            return self._instance_records(question)
        return []

    def _service_enum(self, question: Question) -> list[dns.rrset.RRset]:
        if question.qtype in (dns.rdatatype.ANY, dns.rdatatype.PTR):
            return [_ptr(question.name, self.ttl, self.service_addr)]
        return []

    def _service_records(self, question: Question) -> list[dns.rrset.RRset]:
        if question.qtype not in (dns.rdatatype.ANY, dns.rdatatype.PTR):
            return []
        records = [_ptr(question.name, self.ttl, self.instance_addr)]
        records += self._instance_records(
            Question(self.instance_addr, dns.rdatatype.ANY)
        )
        return records

    def _instance_records(self, question: Question) -> list[dns.rrset.RRset]:
        qtype = question.qtype
        if qtype == dns.rdatatype.ANY:
            return self._instance_records(
                Question(self.instance_addr, dns.rdatatype.SRV)
            ) + self._instance_records(Question(self.instance_addr, dns.rdatatype.TXT))

        if qtype == dns.rdatatype.A:
            records = []
            for ip in self.ips:
                ip4 = _to4(ip)
                if ip4 is not None:
                    rdata = dns.rdtypes.IN.A.A(
                        dns.rdataclass.IN, dns.rdatatype.A, str(ip4)
                    )
                    records.append(_rrset(self.host_name, self.ttl, rdata))
            return records

        if qtype == dns.rdatatype.AAAA:
            records = []
            for ip in self.ips:
                if _to4(ip) is not None:
                    continue
                rdata = dns.rdtypes.IN.AAAA.AAAA(
                    dns.rdataclass.IN, dns.rdatatype.AAAA, str(ip)
                )
                records.append(_rrset(self.host_name, self.ttl, rdata))
            return records

        if qtype == dns.rdatatype.SRV:
            rdata = dns.rdtypes.IN.SRV.SRV(
                dns.rdataclass.IN,
                dns.rdatatype.SRV,
                10,
                1,
                self.port & 0xFFFF,
                dns.name.from_text(self.host_name),
            )
            records = [_rrset(question.name, self.ttl, rdata)]
            records += self._instance_records(
                Question(self.instance_addr, dns.rdatatype.A)
            )
            records += self._instance_records(
                Question(self.instance_addr, dns.rdatatype.AAAA)
            )
            return records

        if qtype == dns.rdatatype.TXT:
            rdata = dns.rdtypes.ANY.TXT.TXT(
                dns.rdataclass.IN, dns.rdatatype.TXT, self.txt or [""]
            )
            return [_rrset(question.name, self.ttl, rdata)]

        return []