"""
End-to-end tests for the proxy service: upstream feed -> filter -> fan-out.
"""

import asyncio
import json
from types import SimpleNamespace

import pytest

from shiptracker.feed.connector import FeedState
from shiptracker.schemas import VesselOut
from shiptracker.services import vessel_cache
from shiptracker.services.proxy import ProxyService
from tests.fakes import FakeSession, position_report, settle


async def _shutdown(proxy):
    proxy.connector.disconnect()
    await proxy.connector.wait_closed()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connects_for_first_viewer_and_idles_after_last(self, make_settings, feed):
        proxy = ProxyService(make_settings(), connect=feed)
        a, b = FakeSession("a"), FakeSession("b")

        proxy.begin_session(a)
        await settle()
        assert proxy.connector.state is FeedState.OPEN
        assert a.statuses() == ["connected_to_proxy", "connected"]

        proxy.begin_session(b)
        assert b.statuses() == ["connected_to_proxy", "connected"]

        proxy.end_session(a)
        assert proxy.connector.state is FeedState.OPEN
        proxy.end_session(b)
        assert proxy.connector.state is FeedState.IDLE

        await proxy.connector.wait_closed()
        assert feed.current.close_count == 1

    @pytest.mark.asyncio
    async def test_end_session_twice_unregisters_once(self, make_settings, feed):
        proxy = ProxyService(make_settings(), connect=feed)
        a = FakeSession("a")
        proxy.begin_session(a)
        await settle()

        assert proxy.end_session(a) is True
        assert proxy.end_session(a) is False
        await proxy.connector.wait_closed()
        assert feed.current.close_count == 1

    @pytest.mark.asyncio
    async def test_upstream_drop_relayed_and_recovered(self, make_settings, feed):
        proxy = ProxyService(make_settings(RECONNECT_DELAY_SEC=0.01), connect=feed)
        a = FakeSession("a")
        proxy.begin_session(a)
        await settle()

        feed.current.fail(ConnectionResetError("reset by peer"))
        await settle()
        assert a.statuses()[-2:] == ["error", "disconnected"]
        assert a.messages()[-2]["error"] == "reset by peer"

        await asyncio.sleep(0.05)
        await settle()
        assert proxy.connector.state is FeedState.OPEN
        assert a.statuses()[-1] == "connected"
        assert len(feed.connections) == 2

        await _shutdown(proxy)

    @pytest.mark.asyncio
    async def test_viewer_leaving_during_backoff_keeps_idle(self, make_settings, feed):
        proxy = ProxyService(make_settings(RECONNECT_DELAY_SEC=0.02), connect=feed)
        a = FakeSession("a")
        proxy.begin_session(a)
        await settle()

        feed.current.end()
        await settle()
        assert proxy.connector.reconnect_pending

        proxy.end_session(a)
        await asyncio.sleep(0.06)
        await settle()

        assert proxy.connector.state is FeedState.IDLE
        assert len(feed.connections) == 1

    @pytest.mark.asyncio
    async def test_stop_closes_viewers_and_upstream(self, make_settings, feed):
        proxy = ProxyService(make_settings(), connect=feed)
        a = FakeSession("a")
        proxy.begin_session(a)
        await settle()

        await proxy.stop()

        assert a.closed_with == 1001
        assert proxy.broadcaster.session_count == 0
        assert proxy.connector.state is FeedState.IDLE
        assert feed.current.close_count == 1


class TestFanOut:
    @pytest.mark.asyncio
    async def test_position_report_reaches_every_viewer(self, make_settings, feed):
        proxy = ProxyService(make_settings(), connect=feed)
        a, b = FakeSession("a"), FakeSession("b")
        proxy.begin_session(a)
        proxy.begin_session(b)
        await settle()

        first = position_report(mmsi=123456789, lat=10.0, lon=20.0)
        second = position_report(mmsi=987654321, lat=11.0, lon=21.0)
        feed.current.push_json(first)
        feed.current.push_json(second)
        await settle()

        assert a.data() == [first, second]
        assert b.data() == [first, second]
        assert proxy.stats.received == 2
        assert proxy.stats.forwarded == 2

        await _shutdown(proxy)

    @pytest.mark.asyncio
    async def test_out_of_range_message_filtered(self, make_settings, feed):
        proxy = ProxyService(
            make_settings(MMSI_MIN=200000000, MMSI_MAX=299999999), connect=feed
        )
        a = FakeSession("a")
        proxy.begin_session(a)
        await settle()

        feed.current.push_json(position_report(mmsi=338123456))
        await settle()

        assert proxy.stats.filtered == 1
        assert proxy.stats.forwarded == 0
        assert a.data() == []

        inside = position_report(mmsi="250000001")
        feed.current.push_json(inside)
        await settle()

        assert proxy.stats.forwarded == 1
        assert a.data() == [inside]

        await _shutdown(proxy)

    @pytest.mark.asyncio
    async def test_message_without_mmsi_passes_uncounted(self, make_settings, feed):
        proxy = ProxyService(
            make_settings(MMSI_MIN=200000000, MMSI_MAX=299999999), connect=feed
        )
        a = FakeSession("a")
        proxy.begin_session(a)
        await settle()

        anonymous = {"MessageType": "PositionReport", "MetaData": {}, "Message": {}}
        feed.current.push_json(anonymous)
        await settle()

        assert a.data() == [anonymous]
        assert proxy.stats.received == 1
        assert proxy.stats.forwarded == 0
        assert proxy.stats.filtered == 0

        await _shutdown(proxy)

    @pytest.mark.asyncio
    async def test_malformed_payload_dropped(self, make_settings, feed):
        proxy = ProxyService(make_settings(), connect=feed)
        a = FakeSession("a")
        proxy.begin_session(a)
        await settle()

        feed.current.push("this is not json")
        feed.current.push("[1, 2, 3]")
        valid = position_report()
        feed.current.push_json(valid)
        await settle()

        assert proxy.stats.received == 3
        assert proxy.stats.malformed == 2
        assert a.data() == [valid]
        assert proxy.connector.state is FeedState.OPEN
        s = proxy.stats
        assert s.forwarded + s.filtered <= s.received

        await _shutdown(proxy)

    @pytest.mark.asyncio
    async def test_forwarded_reports_populate_vessel_cache(self, make_settings, feed):
        proxy = ProxyService(make_settings(), connect=feed)
        proxy.begin_session(FakeSession("a"))
        await settle()

        feed.current.push_json(position_report(mmsi=123456789, name="NORDIC STAR"))
        await settle()

        vessel = proxy.vessels.get(123456789)
        assert vessel["name"] == "NORDIC STAR"
        assert vessel["latitude"] == 10.0
        assert vessel["longitude"] == 20.0

        await _shutdown(proxy)


class TestViewerMessages:
    @pytest.mark.asyncio
    async def test_subscribe_forwarded_with_server_key(self, make_settings, feed):
        proxy = ProxyService(make_settings(), connect=feed)
        a = FakeSession("a")
        proxy.begin_session(a)
        await settle()

        boxes = [[[30.0, -6.0], [46.0, 37.0]]]
        await proxy.handle_viewer_message(
            a,
            json.dumps(
                {
                    "type": "subscribe",
                    "subscription": {
                        "BoundingBoxes": boxes,
                        "FilterMessageTypes": ["PositionReport"],
                    },
                }
            ),
        )

        assert feed.current.sent[-1] == {
            "BoundingBoxes": boxes,
            "FilterMessageTypes": ["PositionReport"],
            "APIKey": "test-key",
        }
        await _shutdown(proxy)

    @pytest.mark.asyncio
    async def test_malformed_viewer_messages_ignored(self, make_settings, feed):
        proxy = ProxyService(make_settings(), connect=feed)
        a = FakeSession("a")
        proxy.begin_session(a)
        await settle()

        for raw in ["{oops", "[]", '{"subscription": {}}', '{"type": "ping"}', '{"type": "subscribe"}']:
            await proxy.handle_viewer_message(a, raw)

        assert len(feed.current.sent) == 1
        assert proxy.broadcaster.session_count == 1
        await _shutdown(proxy)


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_shape(self, make_settings, feed):
        proxy = ProxyService(
            make_settings(MMSI_MIN=200000000, MMSI_MAX=299999999), connect=feed
        )
        proxy.begin_session(FakeSession("a"))
        await settle()
        feed.current.push_json(position_report(mmsi=338123456))
        await settle()

        snap = proxy.snapshot()

        assert snap["connected_clients"] == 1
        assert snap["upstream_connected"] is True
        assert snap["upstream_state"] == "open"
        assert snap["stats"] == {
            "received": 1,
            "filtered": 1,
            "forwarded": 0,
            "malformed": 0,
            "dropped": 0,
        }
        assert snap["filter"] == {
            "enabled": True,
            "mmsi_min": 200000000,
            "mmsi_max": 299999999,
        }
        await _shutdown(proxy)

    @pytest.mark.asyncio
    async def test_snapshot_vessel_count_drops_after_ttl(self, make_settings, feed, monkeypatch):
        now = [1000.0]
        monkeypatch.setattr(vessel_cache, "time", SimpleNamespace(monotonic=lambda: now[0]))
        proxy = ProxyService(make_settings(VESSEL_TTL_SEC=60), connect=feed)
        proxy.begin_session(FakeSession("a"))
        await settle()
        feed.current.push_json(position_report(mmsi=123456789))
        await settle()
        assert proxy.snapshot()["vessels"] == 1

        now[0] += 10_000
        assert proxy.snapshot()["vessels"] == 0
        await _shutdown(proxy)

    @pytest.mark.asyncio
    async def test_bad_kinematics_still_cached_and_forwarded(self, make_settings, feed):
        proxy = ProxyService(make_settings(), connect=feed)
        viewer = FakeSession("a")
        proxy.begin_session(viewer)
        await settle()
        bad = position_report(mmsi=123456789)
        bad["Message"]["PositionReport"]["Sog"] = "n/a"
        feed.current.push_json(bad)
        feed.current.push_json(position_report(mmsi=244123456))
        await settle()

        assert proxy.stats.forwarded == 2
        assert len(viewer.data()) == 2
        rows = [VesselOut.model_validate(r) for r in proxy.vessels.search()]
        assert {r.mmsi: r.speed for r in rows} == {123456789: None, 244123456: 12.3}
        await _shutdown(proxy)
