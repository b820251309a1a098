"""Tests for ObjectStream — laziness, restart and release."""

from __future__ import annotations

import io

from filedrop.storage.stream import ObjectStream


class CountingOpener:
    def __init__(self, data: bytes) -> None:
        self.data = data
        self.calls = 0
        self.handles: list[io.BytesIO] = []

    def __call__(self) -> io.BytesIO:
        self.calls += 1
        handle = io.BytesIO(self.data)
        self.handles.append(handle)
        return handle


class TestObjectStream:
    async def test_lazy_until_iterated(self):
        opener = CountingOpener(b"abc")
        stream = ObjectStream(opener, size=3)
        assert opener.calls == 0
        assert not stream.is_open
        assert await stream.read() == b"abc"
        assert opener.calls == 1

    async def test_chunks(self):
        stream = ObjectStream(CountingOpener(b"abcdefg"), chunk_size=3)
        chunks = [chunk async for chunk in stream]
        assert chunks == [b"abc", b"def", b"g"]

    async def test_restartable(self):
        opener = CountingOpener(b"payload")
        stream = ObjectStream(opener, chunk_size=2)
        first = await stream.read()
        second = await stream.read()
        assert first == second == b"payload"
        assert opener.calls == 2

    async def test_handle_closed_after_full_read(self):
        opener = CountingOpener(b"data")
        stream = ObjectStream(opener)
        await stream.read()
        assert opener.handles[0].closed
        assert not stream.is_open

    async def test_aclose_mid_stream(self):
        opener = CountingOpener(b"x" * 100)
        stream = ObjectStream(opener, chunk_size=10)
        async with stream:
            async for _chunk in stream:
                break
        assert opener.handles[0].closed
        assert not stream.is_open

    async def test_empty_object(self):
        stream = ObjectStream(CountingOpener(b""))
        assert await stream.read() == b""

    async def test_metadata_attributes(self):
        stream = ObjectStream(CountingOpener(b""), size=0, content_type="text/plain")
        assert stream.size == 0
        assert stream.content_type == "text/plain"

    async def test_close_failure_is_logged(self, caplog):
        class BadHandle(io.BytesIO):
            failed = False

            def close(self):
                if not self.failed:
                    self.failed = True
                    raise OSError("boom")
                super().close()

        stream = ObjectStream(lambda: BadHandle(b"ok"))
        assert await stream.read() == b"ok"
        assert "Failed to close object stream" in caplog.text
