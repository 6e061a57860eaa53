import io
import socket

import pytest

from miracle.uibc import (
    UibcMessage,
    UibcMessageType,
    binarydump,
    build_uibc_message,
    hexdump,
    int_to_binary,
    key_packet,
    main,
    rotate_packet,
    scale_packet,
    send_uibc_message,
    split_fields,
    touch_packet,
    zoom_packet,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("a,b,c", ["a", "b", "c"]),
        ("a,b,", ["a", "b"]),
        ("a,,b", ["a", "", "b"]),
        ("", [""]),
        ("abc", ["abc"]),
    ],
)
def test_split_fields(text, expected):
    assert split_fields(text, ",") == expected


def test_split_fields_rejects_empty_delimiter():
    with pytest.raises(ValueError):
        split_fields("a,b", "")


@pytest.mark.parametrize("value", range(256))
def test_int_to_binary_round_trip(value):
    bits = int_to_binary(value, 8)
    assert len(bits) == 9
    assert int(bits, 2) == value


def test_int_to_binary_widens_for_large_values():
    bits = int_to_binary(300, 2)
    assert int(bits, 2) == 300
    assert bits[0] == "1"


def test_hexdump_layout():
    data = bytes(range(17))
    text = hexdump(data)
    lines = text.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("0000: 00 01 02")
    assert lines[1] == "0016: 10 "
    assert text.endswith("\n")
    assert hexdump(b"") == ""


def test_binarydump_layout():
    data = bytes(range(9))
    lines = binarydump(data).splitlines()
    assert len(lines) == 2
    first = lines[0].split()
    assert first[0] == "0000:"
    assert [int(bits, 2) for bits in first[1:]] == list(range(8))


def test_touch_packet_single_pointer():
    message = touch_packet("0,1,0,100,200")
    assert message.valid
    assert message.data == bytes([0, 0, 0, 14, 0, 0, 6, 1, 0, 0, 100, 0, 200, 0])


@pytest.mark.parametrize("pointers", [1, 2, 3, 4])
def test_touch_packet_structure(pointers):
    fields = ["1", str(pointers)]
    for index in range(pointers):
        fields += [str(index), str(1000 + index), str(500 + index)]
    data = touch_packet(",".join(fields)).data
    assert len(data) % 2 == 0
    assert int.from_bytes(data[2:4], "big") == len(data)
    assert data[4] == 1
    assert int.from_bytes(data[5:7], "big") == pointers * 5 + 1
    assert data[7] == pointers
    for index in range(pointers):
        chunk = data[8 + index * 5:13 + index * 5]
        assert chunk[0] == index
        assert int.from_bytes(chunk[1:3], "big") == 1000 + index
        assert int.from_bytes(chunk[3:5], "big") == 500 + index


def test_touch_packet_applies_ratios():
    plain = touch_packet("0,1,0,400,600").data
    scaled = touch_packet("0,1,0,400,600", 2.0, 3.0).data
    assert int.from_bytes(scaled[9:11], "big") * 2 == int.from_bytes(plain[9:11], "big")
    assert int.from_bytes(scaled[11:13], "big") * 3 == int.from_bytes(plain[11:13], "big")


@pytest.mark.parametrize("desc", ["0,1,0,100", "0,1,0,100,200,5", "0"])
def test_touch_packet_bad_field_count(desc):
    with pytest.raises(ValueError):
        touch_packet(desc)


def test_touch_packet_pointer_count_too_large():
    with pytest.raises(ValueError):
        touch_packet("0,2,0,100,200")


def test_key_packet():
    message = key_packet("3,0x0041,0x0000")
    data = message.data
    assert message.valid
    assert len(data) == 12
    assert int.from_bytes(data[2:4], "big") == 12
    assert data[4] == 3
    assert int.from_bytes(data[5:7], "big") == 5
    assert data[8:10] == b"\x00\x41"
    assert data[10:12] == b"\x00\x00"


def test_key_packet_unreadable_code_repeats_previous():
    data = key_packet("4,0x1234,zz").data
    assert data[8:10] == bytes([0x12, 0x34])
    assert data[10:12] == data[8:10]


def test_key_packet_bad_field_count():
    with pytest.raises(ValueError):
        key_packet("3,0x41")


def test_zoom_packet():
    data = zoom_packet("5,300,400,2,50").data
    assert len(data) == 13
    assert int.from_bytes(data[2:4], "big") == 13
    assert data[4] == 5
    assert int.from_bytes(data[7:9], "big") == 300
    assert data[9:11] == b"\x00\x00"
    assert data[11] == 2
    assert data[12] == 50


def test_scale_packet():
    data = scale_packet("6,0,0,5").data
    assert len(data) == 9
    assert data[4] == 6
    assert data[7] == 0
    assert data[8] == 5
    assert scale_packet("6,256,0,0").data[7] == 256 >> 8


def test_rotate_packet():
    data = rotate_packet("8,3,25").data
    assert len(data) == 9
    assert int.from_bytes(data[5:7], "big") == 2
    assert data[7] == 3
    assert data[8] == 25


@pytest.mark.parametrize(
    "type_, desc, builder",
    [
        (UibcMessageType.GENERIC_TOUCH_MOVE, "2,1,0,10,20", touch_packet),
        (UibcMessageType.GENERIC_KEY_UP, "4,0x0020,0x0000", key_packet),
        (UibcMessageType.GENERIC_ZOOM, "5,1,2,3,4", zoom_packet),
        (UibcMessageType.GENERIC_HORIZONTAL_SCROLL, "7,0,0,9", scale_packet),
        (UibcMessageType.GENERIC_ROTATE, "8,1,2", rotate_packet),
    ],
)
def test_build_dispatches(type_, desc, builder):
    assert build_uibc_message(type_, desc, 1, 1) == builder(desc)


def test_send_uibc_message():
    message = touch_packet("0,1,0,100,200")
    left, right = socket.socketpair()
    with left, right:
        assert send_uibc_message(message, left) == len(message.data)
        assert right.recv(1024) == message.data


def test_uibc_message_len():
    message = key_packet("3,0x0041,0x0000")
    assert len(message) == len(message.data)
    assert len(UibcMessage()) == 0


def test_main_usage(capsys):
    assert main([]) == 1
    assert "Usage" in capsys.readouterr().err


def test_main_sends_events(monkeypatch, capsys):
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    port = server.getsockname()[1]
    touch = touch_packet("0,1,0,100,200")
    key = key_packet("3,0x0041,0x0000")
    monkeypatch.setattr(
        "sys.stdin",
        io.StringIO("0,1,0,100,200\n9,ignored\n3,0x0041,0x0000\n"),
    )
    with server:
        assert main(["127.0.0.1", str(port)]) == 0
        conn, _ = server.accept()
        with conn:
            received = b""
            while True:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                received += chunk
    assert received == touch.data + key.data
    out = capsys.readouterr().out
    assert f"sending {len(touch.data)} bytes" in out


def test_main_bad_touch_sends_nothing(monkeypatch, capsys):
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    port = server.getsockname()[1]
    monkeypatch.setattr("sys.stdin", io.StringIO("0,1,0\n"))
    with server:
        assert main(["127.0.0.1", str(port)]) == 0
        conn, _ = server.accept()
        with conn:
            assert conn.recv(4096) == b""
    assert "sending 0 bytes" in capsys.readouterr().out


def test_main_connection_refused(capsys):
    probe = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    probe.bind(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    assert main(["127.0.0.1", str(port)]) == 1
    assert "ERROR connecting" in capsys.readouterr().err