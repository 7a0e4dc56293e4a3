"""Tests for the STOMP frame codec."""
import pytest
from hypothesis import given
from hypothesis import strategies as st

from plutochat.api.exceptions import ParseError
from plutochat.channel import stomp
from plutochat.channel.stomp import Frame


class TestFrameDecode:
    """Tests for Frame.decode."""

    def test_decode_message_frame(self):
        raw = "MESSAGE\ndestination:/topic/room/lobby\nsubscription:sub-1\n\n{\"a\":1}\x00"
        frame = Frame.decode(raw)

        assert frame.command == "MESSAGE"
        assert frame.headers["destination"] == "/topic/room/lobby"
        assert frame.headers["subscription"] == "sub-1"
        assert frame.body == '{"a":1}'

    def test_decode_bytes(self):
        frame = Frame.decode(b"CONNECTED\nversion:1.2\n\n\x00")
        assert frame.command == "CONNECTED"
        assert frame.headers == {"version": "1.2"}

    @pytest.mark.parametrize("raw", ["\n", "\r\n", "", "\n\n"])
    def test_heartbeat_decodes_to_none(self, raw):
        assert Frame.decode(raw) is None

    def test_crlf_line_endings(self):
        frame = Frame.decode("MESSAGE\r\nsubscription:sub-1\r\n\r\nhello\x00")
        assert frame.headers == {"subscription": "sub-1"}
        assert frame.body == "hello"

    def test_repeated_header_first_wins(self):
        frame = Frame.decode("MESSAGE\nfoo:first\nfoo:second\n\n\x00")
        assert frame.headers["foo"] == "first"

    def test_header_escapes_are_decoded(self):
        frame = Frame.decode("MESSAGE\nkey:a\\cb\\nc\\\\d\n\n\x00")
        assert frame.headers["key"] == "a:b\nc\\d"

    def test_connected_headers_are_not_unescaped(self):
        frame = Frame.decode("CONNECTED\nserver:a\\cb\n\n\x00")
        assert frame.headers["server"] == "a\\cb"

    def test_content_length_allows_null_in_body(self):
        frame = Frame.decode("MESSAGE\ncontent-length:3\n\na\x00b\x00")
        assert frame.body == "a\x00b"

    def test_content_length_counts_utf8_bytes(self):
        body = "héllo"
        raw = f"MESSAGE\ncontent-length:{len(body.encode('utf-8'))}\n\n{body}\x00"
        assert Frame.decode(raw).body == body

    @pytest.mark.parametrize("raw", [
        "BOGUS\n\n\x00",
        "MESSAGE\nno-colon-here\n\n\x00",
        "MESSAGE\nkey:value\x00",
        "MESSAGE\nkey:value\n\nbody without terminator",
        "MESSAGE\nkey:bad\\xescape\n\n\x00",
        "MESSAGE\ncontent-length:abc\n\n\x00",
        "MESSAGE\ncontent-length:99\n\nshort\x00",
    ])
    def test_malformed_frames_raise(self, raw):
        with pytest.raises(ParseError):
            Frame.decode(raw)


class TestFrameEncode:
    """Tests for Frame.encode and the client frame builders."""

    def test_encode_layout(self):
        frame = Frame("SUBSCRIBE", {"id": "sub-1", "destination": "/topic/room/lobby"})
        assert frame.encode() == "SUBSCRIBE\nid:sub-1\ndestination:/topic/room/lobby\n\n\x00"

    def test_encode_escapes_headers(self):
        frame = Frame("SEND", {"destination": "a:b"}, "x")
        assert "destination:a\\cb" in frame.encode()

    @given(
        st.dictionaries(
            st.text(alphabet=st.characters(blacklist_categories=("Cs",), blacklist_characters="\x00"), min_size=1)
            .filter(lambda key: key != "content-length"),
            st.text(alphabet=st.characters(blacklist_categories=("Cs",), blacklist_characters="\x00")),
            max_size=5,
        ),
        st.text(alphabet=st.characters(blacklist_categories=("Cs",), blacklist_characters="\x00")),
    )
    def test_send_frame_survives_decoding(self, headers, body):
        """Property test: any SEND frame decodes to its own headers and body."""
        frame = Frame("SEND", dict(headers), body)
        decoded = Frame.decode(frame.encode())

        assert decoded.command == "SEND"
        assert decoded.body == body
        assert decoded.headers == frame.headers

    def test_connect_frame(self):
        frame = stomp.connect_frame("chat.example.org", 10000, {"login": "alice"})
        assert frame.command == "CONNECT"
        assert frame.headers["accept-version"] == "1.2,1.1,1.0"
        assert frame.headers["host"] == "chat.example.org"
        assert frame.headers["heart-beat"] == "10000,10000"
        assert frame.headers["login"] == "alice"

    def test_send_frame_sets_byte_content_length(self):
        frame = stomp.send_frame("/app/chat/lobby", '{"content":"ü"}')
        assert frame.headers["content-length"] == str(len('{"content":"ü"}'.encode("utf-8")))
        assert frame.headers["content-type"] == "application/json"

    def test_disconnect_frame_receipt(self):
        assert stomp.disconnect_frame().headers == {}
        assert stomp.disconnect_frame("r-1").headers == {"receipt": "r-1"}


class TestHeartbeat:
    """Tests for heart-beat negotiation."""

    @pytest.mark.parametrize("client_ms,server,expected", [
        (10000, "0,0", (0, 0)),
        (10000, "5000,20000", (20000, 10000)),
        (10000, "30000,0", (0, 30000)),
        (0, "5000,5000", (0, 0)),
        (10000, None, (0, 0)),
        (10000, "garbage", (0, 0)),
    ])
    def test_negotiated_heartbeat(self, client_ms, server, expected):
        assert stomp.negotiated_heartbeat(client_ms, server) == expected
