import socket

import dns.flags
import dns.message
import dns.name
import dns.opcode
import dns.rcode
import dns.rdataclass
import dns.rdatatype
import dns.rrset
import pytest

from stark.mdns.server import Server, ServerConfig
from stark.mdns.zone import MDNSService, Question


def make_service():
    return MDNSService.create(
        "hostname",
        "_http._tcp",
        "local.",
        "testhost.",
        80,
        ["192.168.0.42", "2620:0:1000:1900:b0c2:d0b2:c411:18bc"],
        ["Local web server"],
    )


def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("0.0.0.0", 0))
        return sock.getsockname()[1]


@pytest.fixture
def service():
    return make_service()


@pytest.fixture
def server(service):
    srv = Server(ServerConfig(zone=service, port=free_port()))
    yield srv
    srv.shutdown()


def test_multicast_response_for_service_query(server, service):
    query = dns.message.make_query("_http._tcp.local.", dns.rdatatype.PTR)
    responses = server.handle_query(query)
    assert len(responses) == 1
    response = responses[0]
    assert response.id == 0
    assert response.flags & dns.flags.QR
    assert response.flags & dns.flags.AA
    assert not response.flags & dns.flags.TC
    assert response.opcode() == dns.opcode.QUERY
    assert len(response.answer) == 5
    assert response.answer == service.records(
        Question("_http._tcp.local.", dns.rdatatype.PTR)
    )


def test_unicast_bit_gives_unicast_response_with_query_id(server):
    query = dns.message.make_query(
        "hostname._http._tcp.local.",
        dns.rdatatype.SRV,
        rdclass=dns.rdataclass.IN | 0x8000,
    )
    responses = server.handle_query(query)
    assert len(responses) == 1
    assert responses[0].id == query.id
    assert responses[0].answer[0].rdtype == dns.rdatatype.SRV


def test_unknown_name_gives_no_response(server):
    query = dns.message.make_query("random.local.", dns.rdatatype.ANY)
    assert server.handle_query(query) == []


def test_answers_of_several_questions_are_concatenated(server, service):
    query = dns.message.Message()
    query.question.append(
        dns.rrset.RRset(
            dns.name.from_text("testhost."), dns.rdataclass.IN, dns.rdatatype.A
        )
    )
    query.question.append(
        dns.rrset.RRset(
            dns.name.from_text("hostname._http._tcp.local."),
            dns.rdataclass.IN,
            dns.rdatatype.TXT,
        )
    )
    responses = server.handle_query(query)
    expected = service.records(
        Question("testhost.", dns.rdatatype.A)
    ) + service.records(Question("hostname._http._tcp.local.", dns.rdatatype.TXT))
    assert len(responses) == 1
    assert responses[0].answer == expected


def test_non_zero_opcode_is_rejected(server):
    query = dns.message.make_query("_http._tcp.local.", dns.rdatatype.PTR)
    query.set_opcode(dns.opcode.UPDATE)
    with pytest.raises(ValueError, match="Opcode"):
        server.handle_query(query)


def test_non_zero_rcode_is_rejected(server):
    query = dns.message.make_query("_http._tcp.local.", dns.rdatatype.PTR)
    query.set_rcode(dns.rcode.SERVFAIL)
    with pytest.raises(ValueError, match="Rcode"):
        server.handle_query(query)


def test_truncated_query_is_rejected(server):
    query = dns.message.make_query("_http._tcp.local.", dns.rdatatype.PTR)
    query.flags |= dns.flags.TC
    with pytest.raises(ValueError, match="truncated"):
        server.handle_query(query)


def test_answers_query_over_udp(server):
    port = server.config.port
    query = dns.message.make_query("_http._tcp.local.", dns.rdatatype.PTR)
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
        client.settimeout(3)
        client.sendto(query.to_wire(), ("127.0.0.1", port))
        packet, _ = client.recvfrom(65536)
    response = dns.message.from_wire(packet)
    ptr = response.answer[0]
    assert ptr.rdtype == dns.rdatatype.PTR
    assert ptr[0].target.to_text() == "hostname._http._tcp.local."


def test_shutdown_zeroes_ttl_and_is_idempotent():
    service = make_service()
    srv = Server(ServerConfig(zone=service, port=free_port()))
    srv.shutdown()
    srv.shutdown()
    assert service.ttl == 0


def test_context_manager_shuts_down():
    service = make_service()
    with Server(ServerConfig(zone=service, port=free_port())) as srv:
        assert srv.config.zone is service
    assert service.ttl == 0