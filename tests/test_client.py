"""Tests for the public recording API"""

import logging
from datetime import datetime

import pytest

from visit_tracking import DeviceType, TrackerConfig

from fakes import FakeTransport

URL = "https://shop.test/p/soap-42"


class TestRecordVisit:
    """Tests for TrackingClient.record_visit"""

    @pytest.mark.asyncio
    async def test_fresh_client_scenario(self, client, transport):
        assert client.record_visit(URL) is True

        assert client.session.visited_pages[URL].count == 1
        assert len(client.visit_queue) == 1

        assert await client.flush(force=True) == 1
        assert len(client.visit_queue) == 0
        assert transport.delivered[0][1].url == URL

    def test_record_fields(self, client, clock):
        client.set_user_id("customer-7")
        client.record_visit(URL, extra={"country": "NL", "page_title": "Lavender Soap"})

        visit = list(client.visit_queue)[0]
        assert visit.session_id == client.get_session_id()
        assert visit.user_id == "customer-7"
        assert visit.referrer_url == "https://www.google.com/search?q=soap"
        assert visit.device_type == DeviceType.DESKTOP
        assert visit.browser == "Chrome"
        assert visit.os == "Windows"
        assert visit.country == "NL"
        assert visit.page_title == "Lavender Soap"
        assert visit.retry_count == 0
        assert datetime.fromisoformat(visit.timestamp).timestamp() == clock.now()

    def test_defaults_to_current_url(self, client, environment):
        environment.current_url = "https://shop.test/categories/soap"

        assert client.track_page_view() is True
        assert list(client.visit_queue)[0].url == "https://shop.test/categories/soap"

    def test_same_host_referrer_not_recorded(self, client, environment):
        environment.referrer = "https://shop.test/"
        client.record_visit(URL)

        assert list(client.visit_queue)[0].referrer_url is None

    def test_duplicate_within_cooldown(self, client, clock):
        client.record_visit(URL)
        clock.advance(10)

        assert client.record_visit(URL) is False
        assert len(client.visit_queue) == 1

    def test_revisit_after_cooldown(self, client, clock):
        client.record_visit(URL)
        clock.advance(30)

        assert client.record_visit(URL) is True
        assert len(client.visit_queue) == 2
        assert client.session.visited_pages[URL].count == 2

    def test_admin_path_never_recorded(self, client, clock):
        for _ in range(3):
            assert client.record_visit("/admin/login") is False
            clock.advance(60)

        assert len(client.visit_queue) == 0

    def test_invalid_extra_never_raises(self, client):
        assert client.record_visit(URL, extra={"retry_count": -1}) is False
        assert len(client.visit_queue) == 0

    def test_rejected_record_leaves_ledger_untouched(self, client, clock):
        assert client.record_visit(URL, extra={"retry_count": -1}) is False
        assert URL not in client.session.visited_pages

        clock.advance(5)

        assert client.record_visit(URL) is True
        assert client.session.visited_pages[URL].count == 1

    def test_relative_url_keeps_external_referrer(self, client, caplog):
        with caplog.at_level(logging.WARNING):
            assert client.record_visit("/p/soap-42") is True

        visit = list(client.visit_queue)[0]
        assert visit.url == "/p/soap-42"
        assert visit.referrer_url == "https://www.google.com/search?q=soap"
        assert "referrer" not in caplog.text

    def test_referrer_compared_with_host_page(self, client, environment):
        environment.referrer = "https://shop.test/cart"
        client.record_visit("/p/soap-42")

        assert list(client.visit_queue)[0].referrer_url is None


class TestRecordEvent:
    """Tests for TrackingClient.record_event"""

    def test_events_never_deduplicated(self, client):
        for _ in range(3):
            assert client.record_event("click", {"element": "add_to_cart"}) is True

        assert len(client.pixel_queue) == 3

    def test_event_fields(self, client):
        client.set_user_id("customer-7")
        client.track_event("file_download", {"fileName": "catalog.pdf"})

        pixel = list(client.pixel_queue)[0]
        assert pixel.event == "file_download"
        assert pixel.url == "https://shop.test/"
        assert pixel.user_id == "customer-7"
        assert pixel.page_title == "Shop"
        assert pixel.metadata == {"fileName": "catalog.pdf"}

    def test_excluded_current_path(self, client, environment):
        environment.current_url = "https://shop.test/admin/orders"

        assert client.record_event("click") is False
        assert len(client.pixel_queue) == 0

    def test_empty_event_name_never_raises(self, client):
        assert client.record_event("") is False

    @pytest.mark.asyncio
    async def test_high_water_mark_triggers_dispatch(self, make_client):
        transport = FakeTransport(always_fail=True)  # no network
        client = make_client(transport=transport)

        for _ in range(9):
            client.record_event("scroll_depth", {"percentage": 50})
        await client.wait_idle()
        assert len(client.pixel_queue) == 9
        assert transport.attempts == []

        client.record_event("scroll_depth", {"percentage": 50})
        await client.wait_idle()

        # The out-of-band pass claimed all ten; they now wait for their backoff
        assert len(transport.attempts) == 10
        assert len(client.pixel_queue) == 0

        client.record_event("scroll_depth", {"percentage": 50})
        await client.wait_idle()
        assert len(client.pixel_queue) == 1

    @pytest.mark.asyncio
    async def test_eleven_back_to_back_events(self, make_client):
        transport = FakeTransport(always_fail=True)
        client = make_client(transport=transport)

        for _ in range(11):
            client.record_event("scroll_depth", {"percentage": 50})
        await client.wait_idle()

        assert len(transport.attempts) == 11
        assert len(client.pixel_queue) == 0

    def test_bounded_pixel_queue(self, make_client):
        config = TrackerConfig(pixel_high_water_mark=1000)
        client = make_client(config=config)

        for i in range(150):
            client.record_event(f"event_{i}")

        assert len(client.pixel_queue) == 100
        assert [p.event for p in client.pixel_queue] == [f"event_{i}" for i in range(50, 150)]


class TestSessionControls:
    def test_disabled_recording_is_a_noop(self, client, clock):
        client.set_enabled(False)

        for i in range(5):
            assert client.record_visit(f"https://shop.test/p/{i}") is False
            assert client.record_event("click") is False
            clock.advance(60)

        assert len(client.visit_queue) == 0
        assert len(client.pixel_queue) == 0
        assert client.session.visited_pages == {}
        assert client.is_enabled() is False

    def test_reenable(self, client):
        client.set_enabled(False)
        client.set_enabled(True)
        assert client.record_visit(URL) is True

    def test_set_user_id_not_retroactive(self, client):
        client.record_visit(URL)
        client.set_user_id("customer-7")
        client.record_event("login")

        assert list(client.visit_queue)[0].user_id is None
        assert list(client.pixel_queue)[0].user_id == "customer-7"
        assert client.get_user_id() == "customer-7"

    def test_reset_session(self, client, storage, config):
        client.set_user_id("customer-7")
        client.record_visit(URL)
        client.save_state()
        old_session_id = client.get_session_id()

        client.reset_session()

        assert client.get_session_id() != old_session_id
        assert client.session.visited_pages == {}
        assert storage.get_item(config.storage_key) is None
        assert client.get_user_id() == "customer-7"
        # Queued records are not touched
        assert len(client.visit_queue) == 1
        # Ledger is empty, so the same page counts as a first visit again
        assert client.record_visit(URL) is True

    def test_clear_visited_pages_keeps_session_id(self, client):
        session_id = client.get_session_id()
        client.record_visit(URL)

        client.clear_visited_pages()

        assert client.session.visited_pages == {}
        assert client.get_session_id() == session_id

    def test_disabled_by_config(self, make_client):
        client = make_client(config=TrackerConfig(enabled=False))
        assert client.record_visit(URL) is False


class TestPersistence:
    def test_ledger_survives_reload(self, make_client, clock):
        first = make_client()
        first.record_visit(URL)
        clock.advance(45)
        first.record_visit(URL)
        first.record_visit("https://shop.test/")
        first.set_user_id("customer-7")
        assert first.save_state() is True

        second = make_client()

        assert second.session.visited_pages == first.session.visited_pages
        assert second.session.visited_pages[URL].count == 2
        assert second.get_user_id() == "customer-7"
        assert second.get_session_id() != first.get_session_id()

    def test_reload_keeps_deduplicating(self, make_client, clock):
        first = make_client()
        first.record_visit(URL)
        first.save_state()

        clock.advance(5)
        second = make_client()

        assert second.record_visit(URL) is False

    def test_corrupt_state_starts_empty(self, make_client, storage, config):
        storage.set_item(config.storage_key, "{definitely not json")

        client = make_client()

        assert client.session.visited_pages == {}
        assert client.record_visit(URL) is True


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_async_context_manager_flushes_on_exit(self, make_client, transport, storage, config):
        async with make_client() as client:
            client.record_visit(URL)
            client.record_event("click")

        assert len(transport.delivered) == 2
        assert transport.closed is True
        assert storage.get_item(config.storage_key) is not None

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, client, transport):
        await client.close()
        await client.close()
        assert transport.closed is True


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
