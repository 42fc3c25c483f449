"""
Tests for the upload stage: add/update/skip decisions, headers and per-record errors.
"""

import asyncio
import io

import pytest

from bucketflow.errors import TransportError, UnsupportedContentError
from bucketflow.fingerprint import quoted_etag
from bucketflow.models import FileRecord, LocalFile
from bucketflow.publisher import Publisher

from conftest import FakeStore, aiter_of, drain


def _record(key="/a.js", contents=b"console.log(1)", **kwargs):
    return FileRecord(remote_key=key, contents=contents, **kwargs)


class TestDecisionTable:
    @pytest.mark.asyncio
    async def test_absent_remote_is_add(self, store):
        record = await Publisher(store).upload(_record())
        assert record.state == "add"
        assert store.ops("put") == [("put", "/a.js", b"console.log(1)")]

    @pytest.mark.asyncio
    async def test_equal_etag_is_skip_without_put(self, store):
        store.objects["/a.js"] = b"console.log(1)"
        record = await Publisher(store).upload(_record())
        assert record.state == "skip"
        assert store.ops("put") == []
        assert store.ops("head") == [("head", "/a.js")]

    @pytest.mark.asyncio
    async def test_different_etag_is_update(self, store):
        store.objects["/a.js"] = b"console.log(0)"
        record = await Publisher(store).upload(_record())
        assert record.state == "update"
        assert store.objects["/a.js"] == b"console.log(1)"

    @pytest.mark.asyncio
    async def test_unquoted_remote_etag_is_not_equal(self, store):
        store.etag_overrides["/a.js"] = quoted_etag(b"console.log(1)").strip('"')
        record = await Publisher(store).upload(_record())
        assert record.state == "update"


class TestShortCircuits:
    @pytest.mark.asyncio
    async def test_no_contents_is_noop(self, store):
        record = _record(contents=None)
        result = await Publisher(store).upload(record)
        assert result is record
        assert result.state is None
        assert result.headers == {}
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_delete_marker_forwarded_unchanged(self, store):
        record = FileRecord(remote_key="/gone.js", state="delete")
        result = await Publisher(store).upload(record)
        assert result is record
        assert result.state == "delete"
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_delete_state_with_contents_skips_upload(self, store):
        record = _record(state="delete")
        result = await Publisher(store).upload(record)
        assert result.state == "delete"
        assert result.headers == {}
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_stream_contents_rejected(self, store):
        record = _record(contents=io.BytesIO(b"streamed"))
        with pytest.raises(UnsupportedContentError, match="Stream content is not supported"):
            await Publisher(store).upload(record)
        assert store.calls == []


class TestHeaders:
    @pytest.mark.asyncio
    async def test_inferred_headers_and_default_acl(self, store):
        record = await Publisher(store).upload(_record(key="/index.html", contents=b"<p>hi</p>"))
        assert record.headers["Content-Type"] == "text/html"
        assert record.headers["Content-Length"] == "9"
        assert record.headers["x-amz-acl"] == "public-read"
        assert store.headers["/index.html"] == record.headers

    @pytest.mark.asyncio
    async def test_caller_headers_win(self, store):
        publisher = Publisher(store, headers={"Cache-Control": "max-age=60"})
        record = await publisher.upload(
            _record(key="/index.html"),
            {"Content-Type": "text/plain", "x-amz-acl": "private"},
        )
        assert record.headers["Content-Type"] == "text/plain"
        assert record.headers["Cache-Control"] == "max-age=60"
        assert record.headers["x-amz-acl"] == "private"

    @pytest.mark.asyncio
    async def test_existing_record_headers_are_kept(self, store):
        record = await Publisher(store).upload(_record(headers={"Content-Encoding": "gzip"}))
        assert record.headers["Content-Encoding"] == "gzip"

    @pytest.mark.asyncio
    async def test_headers_set_on_skip_too(self, store):
        store.objects["/a.js"] = b"console.log(1)"
        record = await Publisher(store).upload(_record())
        assert record.state == "skip"
        assert record.headers["Content-Length"] == str(len(b"console.log(1)"))


class TestTransportErrors:
    @pytest.mark.asyncio
    async def test_head_failure_raises_without_state(self, store):
        store.head_errors["/a.js"] = RuntimeError("connection reset")
        record = _record()
        with pytest.raises(TransportError, match="head /a.js"):
            await Publisher(store).upload(record)
        assert record.state is None
        assert store.ops("put") == []

    @pytest.mark.asyncio
    async def test_put_failure_raises_without_state(self, store):
        store.put_errors["/a.js"] = RuntimeError("503 Slow Down")
        record = _record()
        with pytest.raises(TransportError, match="put /a.js"):
            await Publisher(store).upload(record)
        assert record.state is None

    @pytest.mark.asyncio
    async def test_transport_error_from_store_is_not_rewrapped(self, store):
        original = TransportError("head", "/a.js", "boom")
        store.head_errors["/a.js"] = original
        with pytest.raises(TransportError) as info:
            await Publisher(store).upload(_record())
        assert info.value is original


class TestPublishStream:
    @pytest.mark.asyncio
    async def test_records_yielded_in_arrival_order(self, store):
        files = [
            LocalFile(path=f"/site/{name}", base="/site", contents=name.encode())
            for name in ("c.js", "a.js", "b.js")
        ]
        records = await drain(Publisher(store, concurrency=2).publish(aiter_of(files)))
        assert [record.remote_key for record in records] == ["/c.js", "/a.js", "/b.js"]
        assert all(record.state == "add" for record in records)

    @pytest.mark.asyncio
    async def test_order_kept_when_later_upload_finishes_first(self):
        class SlowFirstStore(FakeStore):
            async def head(self, key):
                if key == "/slow.js":
                    await asyncio.sleep(0.05)
                return await super().head(key)

        store = SlowFirstStore()
        files = [
            _record(key="/slow.js", contents=b"1"),
            _record(key="/fast.js", contents=b"2"),
        ]
        records = await drain(Publisher(store, concurrency=4).publish(aiter_of(files)))
        assert [record.remote_key for record in records] == ["/slow.js", "/fast.js"]
        # The second head completed while the first was still in flight.
        assert [call[1] for call in store.ops("head")] == ["/fast.js", "/slow.js"]

    @pytest.mark.asyncio
    async def test_concurrency_one_is_sequential(self, store):
        in_flight = 0
        peak = 0

        class CountingStore(FakeStore):
            async def head(self, key):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                try:
                    await asyncio.sleep(0.01)
                    return await super().head(key)
                finally:
                    in_flight -= 1

        files = [_record(key=f"/{i}.txt", contents=str(i).encode()) for i in range(4)]
        records = await drain(Publisher(CountingStore(), concurrency=1).publish(aiter_of(files)))
        assert len(records) == 4
        assert peak == 1

    @pytest.mark.asyncio
    async def test_stream_error_isolated_to_one_record(self, store):
        files = [
            _record(key="/ok1.js", contents=b"1"),
            _record(key="/stream.js", contents=io.BytesIO(b"2")),
            _record(key="/ok2.js", contents=b"3"),
        ]
        records = await drain(Publisher(store).publish(aiter_of(files)))
        by_key = {record.remote_key: record for record in records}
        assert isinstance(by_key["/stream.js"].error, UnsupportedContentError)
        assert by_key["/stream.js"].state is None
        assert by_key["/ok1.js"].state == "add"
        assert by_key["/ok2.js"].state == "add"
        assert set(store.objects) == {"/ok1.js", "/ok2.js"}

    @pytest.mark.asyncio
    async def test_transport_error_isolated_to_one_record(self, store):
        store.put_errors["/bad.js"] = RuntimeError("denied")
        files = [_record(key="/bad.js", contents=b"1"), _record(key="/good.js", contents=b"2")]
        records = await drain(Publisher(store).publish(aiter_of(files)))
        assert isinstance(records[0].error, TransportError)
        assert records[1].error is None
        assert records[1].state == "add"

    @pytest.mark.asyncio
    async def test_no_content_records_pass_through(self, store):
        files = [_record(key="/empty", contents=None), FileRecord(remote_key="/x", state="delete")]
        records = await drain(Publisher(store).publish(aiter_of(files)))
        assert [record.state for record in records] == [None, "delete"]
        assert store.calls == []

    @pytest.mark.asyncio
    async def test_unexpected_errors_propagate(self, store):
        async def broken():
            yield _record()
            raise ValueError("source exploded")

        with pytest.raises(ValueError, match="source exploded"):
            await drain(Publisher(store).publish(broken()))
