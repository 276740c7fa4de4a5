"""Тести SseFrameDecoder: розрізані чанки, битий фрейм, handshake."""

from __future__ import annotations

from streaming.sse_decoder import SseFrameDecoder


def test_frames_split_across_chunks() -> None:
    decoder = SseFrameDecoder()
    assert decoder.feed(b'data: {"t": 1, ') == []
    assert decoder.feed(b'"c": 2}\n') == []
    assert decoder.feed(b'\ndata: {"t": 2}\n\ndata: {"t"') == [
        {"t": 1, "c": 2},
        {"t": 2},
    ]
    assert decoder.buffered == 'data: {"t"'
    assert decoder.feed(b": 3}\n\n") == [{"t": 3}]
    assert decoder.buffered == ""


def test_malformed_frame_is_skipped_and_stream_continues() -> None:
    decoder = SseFrameDecoder()
    messages = decoder.feed(b'data: {broken\n\ndata: {"ok": true}\n\n')
    assert messages == [{"ok": True}]


def test_handshake_is_not_delivered_but_remembered() -> None:
    decoder = SseFrameDecoder()
    messages = decoder.feed(
        b'data: {"event": "connected", "subscriptionId": "sub-7"}\n\n'
        b'data: {"t": 1}\n\n'
    )
    assert messages == [{"t": 1}]
    assert decoder.handshake_received
    assert decoder.subscription_id == "sub-7"


def test_crlf_delimiters() -> None:
    decoder = SseFrameDecoder()
    assert decoder.feed(b'data: {"t": 1}\r\n\r\ndata: {"t": 2}\r\n\r\n') == [
        {"t": 1},
        {"t": 2},
    ]


def test_multibyte_utf8_split_between_chunks() -> None:
    decoder = SseFrameDecoder()
    raw = 'data: {"name": "Їжак"}\n\n'.encode()
    cut = raw.index("Ї".encode()) + 1
    assert decoder.feed(raw[:cut]) == []
    assert decoder.feed(raw[cut:]) == [{"name": "Їжак"}]


def test_non_data_frames_are_ignored() -> None:
    decoder = SseFrameDecoder()
    assert decoder.feed(b": keep-alive\n\nevent: ping\n\n") == []


def test_flush_returns_trailing_frame_without_delimiter() -> None:
    decoder = SseFrameDecoder()
    assert decoder.feed(b'data: {"t": 9}') == []
    assert decoder.flush() == [{"t": 9}]
    assert decoder.flush() == []


def test_accepts_text_chunks() -> None:
    decoder = SseFrameDecoder()
    assert decoder.feed('data: [1, 2]\n\n') == [[1, 2]]
