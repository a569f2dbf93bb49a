from relaytap.traffic import (
    TrafficKind,
    TrafficRecord,
    ascii_render,
    classify,
    hex_dump,
    http_first_line,
)


def test_classify_http_request():
    assert classify(b"GET /health HTTP/1.1\r\n") is TrafficKind.HTTP
    assert classify(b"POST /api HTTP/1.1\r\n\r\n{}") is TrafficKind.HTTP
    assert classify(b"HTTP/1.1 200 OK\r\n") is TrafficKind.HTTP


def test_classify_query_marker():
    assert classify(b"Q\x00\x00\x00\x0dSELECT 1;\x00") is TrafficKind.QUERY


def test_classify_other():
    assert classify(b"\x01\x02\xff") is TrafficKind.OTHER
    assert classify(b"") is TrafficKind.OTHER
    # Method without trailing space is not enough
    assert classify(b"GETTING") is TrafficKind.OTHER


def test_signature_split_across_chunks_is_missed():
    assert classify(b"GE") is TrafficKind.OTHER
    assert classify(b"T / HTTP/1.1\r\n") is TrafficKind.OTHER


def test_record_http_first_line():
    data = b"GET /health HTTP/1.1\r\nHost: x\r\n\r\n"
    rec = TrafficRecord("c -> s", data)
    assert rec.kind is TrafficKind.HTTP
    assert rec.first_line == "GET /health HTTP/1.1"
    assert rec.size == len(data)


def test_record_http_non_utf8_has_no_first_line():
    rec = TrafficRecord("s -> c", b"HTTP/1.1 200 OK\r\n\r\n\xff\xfe")
    assert rec.kind is TrafficKind.HTTP
    assert rec.first_line is None


def test_record_query_has_no_first_line():
    rec = TrafficRecord("c -> s", b"Qselect")
    assert rec.kind is TrafficKind.QUERY
    assert rec.first_line is None


def test_hex_dump():
    assert hex_dump(b"\x00\x0a\xff") == "00 0A FF"
    assert hex_dump(b"") == ""


def test_ascii_render_keeps_printable_and_whitespace():
    assert ascii_render(b"ab c\t\r\n\x0c") == "ab c\t\r\n\x0c"
    assert ascii_render(b"\x00A\x7f\x80\x0b") == ".A..."


def test_http_first_line_empty():
    assert http_first_line(b"") is None
