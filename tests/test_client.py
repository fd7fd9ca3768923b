import ipaddress
import queue
import threading

import dns.flags
import dns.message
import dns.rdatatype
import dns.rrset
import pytest

from stark.mdns.client import (
    QueryParam,
    ServiceEntry,
    _ptr_query,
    _stream_entries,
    default_params,
    message_to_entry,
)
from stark.mdns.zone import MDNSService, Question

IP4 = ipaddress.ip_address("192.168.0.42")
IP6 = ipaddress.ip_address("2620:0:1000:1900:b0c2:d0b2:c411:18bc")


def make_service(service="_foobar._tcp"):
    return MDNSService.create(
        "hostname", service, "local.", "testhost.", 80, [IP4, IP6], ["Local web server"]
    )


def service_response(service="_foobar._tcp"):
    zone = make_service(service)
    message = dns.message.Message()
    message.answer.extend(zone.records(Question("_foobar._tcp.local.", dns.rdatatype.PTR)))
    return dns.message.from_wire(message.to_wire())


def ptr_only_response():
    message = dns.message.Message()
    message.answer.append(
        dns.rrset.from_text(
            "_foobar._tcp.local.", 120, "IN", "PTR", "hostname._foobar._tcp.local."
        )
    )
    return message


def run_stream(params, messages, sent):
    thread = threading.Thread(
        target=_stream_entries,
        args=(params, messages, sent.append, params.context.is_set),
        daemon=True,
    )
    thread.start()
    return thread


def test_default_params():
    params = default_params("_foobar._tcp")
    assert params.service == "_foobar._tcp"
    assert params.domain == "local"
    assert params.timeout == 1.0
    assert params.want_unicast_response is False
    assert params.context is None
    assert params.entries.empty()


@pytest.mark.parametrize(
    "entry, expected",
    [
        (ServiceEntry(name="a"), False),
        (ServiceEntry(name="a", port=80, has_txt=True), False),
        (ServiceEntry(name="a", addr_v4=IP4, has_txt=True), False),
        (ServiceEntry(name="a", addr_v4=IP4, port=80), False),
        (ServiceEntry(name="a", addr_v4=IP4, port=80, has_txt=True), True),
        (ServiceEntry(name="a", addr_v6=IP6, port=80, has_txt=True), True),
        (ServiceEntry(name="a", addr=IP4, port=80, has_txt=True), True),
    ],
)
def test_service_entry_complete(entry, expected):
    assert entry.complete() is expected


def test_message_to_entry_from_service_records():
    inprogress = {}
    entry = message_to_entry(service_response(), inprogress)
    assert entry.name == "hostname._foobar._tcp.local."
    assert entry.port == 80
    assert entry.info == "Local web server"
    assert entry.info_fields == ["Local web server"]
    assert entry.host == "testhost."
    assert entry.addr_v4 == IP4
    assert entry.addr_v6 == IP6
    assert entry.ttl == 120
    assert entry.complete()
    assert inprogress["testhost."] is entry


def test_message_to_entry_empty_message():
    assert message_to_entry(dns.message.Message(), {}) is None


def test_message_to_entry_ignores_records_for_complete_entry():
    inprogress = {}
    entry = message_to_entry(service_response(), inprogress)
    later = dns.message.Message()
    later.answer.append(
        dns.rrset.from_text(
            "hostname._foobar._tcp.local.", 60, "IN", "SRV", "10 1 81 otherhost."
        )
    )
    again = message_to_entry(later, inprogress)
    assert again is entry
    assert entry.port == 80
    assert entry.host == "testhost."
    assert entry.ttl == 120


def test_message_to_entry_srv_aliases_target():
    message = dns.message.Message()
    message.answer.append(
        dns.rrset.from_text("inst.local.", 30, "IN", "SRV", "0 0 8000 box.local.")
    )
    message.additional.append(dns.rrset.from_text("box.local.", 30, "IN", "A", "10.0.0.1"))
    inprogress = {}
    entry = message_to_entry(message, inprogress)
    assert entry.name == "inst.local."
    assert entry.port == 8000
    assert entry.addr_v4 == ipaddress.ip_address("10.0.0.1")
    assert inprogress["box.local."] is inprogress["inst.local."]
    assert not entry.complete()


def test_ptr_query_plain():
    message = _ptr_query("_foobar._tcp.local.")
    question = message.question[0]
    assert question.name.to_text() == "_foobar._tcp.local."
    assert question.rdtype == dns.rdatatype.PTR
    assert int(question.rdclass) == 1
    assert not message.flags & dns.flags.RD


def test_ptr_query_unicast_bit():
    message = _ptr_query("_foobar._tcp.local.", want_unicast=True)
    assert int(message.question[0].rdclass) == 1 | (1 << 15)


def test_stream_entries_delivers_complete_entry_once():
    params = QueryParam(service="_foobar._tcp", context=threading.Event())
    messages = queue.Queue()
    messages.put(service_response())
    messages.put(service_response())
    sent = []
    thread = run_stream(params, messages, sent)
    entry = params.entries.get(timeout=2)
    assert entry.name == "hostname._foobar._tcp.local."
    assert entry.port == 80
    assert entry.info == "Local web server"
    with pytest.raises(queue.Empty):
        params.entries.get(timeout=0.3)
    params.context.set()
    thread.join(timeout=2)
    assert not thread.is_alive()
    assert sent == []


def test_stream_entries_queries_incomplete_instance():
    params = QueryParam(service="_foobar._tcp", context=threading.Event())
    messages = queue.Queue()
    messages.put(ptr_only_response())
    sent = []
    queried = threading.Event()

    def send(message):
        sent.append(message)
        queried.set()

    thread = threading.Thread(
        target=_stream_entries,
        args=(params, messages, send, params.context.is_set),
        daemon=True,
    )
    thread.start()
    assert queried.wait(2)
    params.context.set()
    thread.join(timeout=2)
    assert len(sent) == 1
    question = sent[0].question[0]
    assert question.name.to_text() == "hostname._foobar._tcp.local."
    assert question.rdtype == dns.rdatatype.PTR
    assert params.entries.empty()


def test_stream_entries_stops_when_cancelled_while_delivering():
    entries = queue.Queue(maxsize=1)
    placeholder = ServiceEntry(name="placeholder")
    entries.put(placeholder)
    params = QueryParam(service="_foobar._tcp", context=threading.Event(), entries=entries)
    messages = queue.Queue()
    messages.put(service_response())
    thread = run_stream(params, messages, [])
    threading.Timer(0.3, params.context.set).start()
    thread.join(timeout=3)
    assert not thread.is_alive()
    assert entries.qsize() == 1
    assert entries.get_nowait() is placeholder