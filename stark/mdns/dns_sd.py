"""A DNS-SD compliant wrapper around an mDNS service zone."""

from __future__ import annotations

from dataclasses import dataclass

import dns.rrset

from stark.mdns.zone import DEFAULT_TTL, MDNSService, Question, Zone, _ptr


@dataclass
class DNSSDService(Zone):
    """Answers like the wrapped service, plus the DNS-SD service type meta-query."""

    mdns_service: MDNSService

    def records(self, question: Question) -> list[dns.rrset.RRset]:
        records: list[dns.rrset.RRset] = []
        if question.name == f"_services._dns-sd._udp.{self.mdns_service.domain}.":
            records = self._meta_query_records(question)
        return records + self.mdns_service.records(question)

    def _meta_query_records(self, question: Question) -> list[dns.rrset.RRset]:
        return [_ptr(question.name, DEFAULT_TTL, self.mdns_service.service_addr)]