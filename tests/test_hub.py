"""Tests for the live reload hub."""

import asyncio

import pytest
from aiohttp import WSMsgType
from aiohttp.test_utils import TestClient, TestServer

from livebuild.debounce import DebounceScheduler
from livebuild.events import CONNECTED, REFRESH_CSS, RELOAD
from livebuild.hub import LiveReloadHub, classify, inject_client
from livebuild.server import StaticFileServer

WINDOW = 0.05


class FakeClient:
    def __init__(self, fail=False):
        self.messages = []
        self.fail = fail

    async def send(self, text):
        if self.fail:
            raise ConnectionResetError("gone")
        self.messages.append(text)


async def settle():
    await asyncio.sleep(WINDOW * 3)


class TestClassify:
    def test_css_only_batch_is_cosmetic(self):
        assert classify(["/src/a.css", "/src/b.CSS"]) == REFRESH_CSS

    def test_images_and_fonts_are_cosmetic(self):
        assert classify(["/a.png", "/b.svg", "/c.woff2", "/d.css"]) == REFRESH_CSS

    def test_mixed_batch_reloads(self):
        assert classify(["/src/a.css", "/src/main.js"]) == RELOAD

    def test_script_reloads(self):
        assert classify(["/src/main.ts"]) == RELOAD

    def test_empty_batch_reloads(self):
        assert classify([]) == RELOAD


def test_inject_client_once():
    html = "<html><body><p>hi</p></body></html>"
    once = inject_client(html)
    assert "__LIVE_RELOAD__" in once
    assert once.index("__LIVE_RELOAD__") < once.index("</body>")
    assert inject_client(once) == once


@pytest.mark.asyncio
async def test_client_is_greeted_once():
    hub = LiveReloadHub(DebounceScheduler(), delay=WINDOW)
    client = FakeClient()
    hub.add(client.send)

    await settle()
    await settle()

    assert client.messages == [CONNECTED]


@pytest.mark.asyncio
async def test_early_and_mid_debounce_clients_each_get_one_message():
    """Clients joining before a change and mid-burst both get connected then one update."""
    hub = LiveReloadHub(DebounceScheduler(), delay=WINDOW)
    early = FakeClient()
    hub.add(early.send)
    await settle()

    hub.record("/src/style.css")
    hub.commit()
    await asyncio.sleep(WINDOW / 2)

    late = FakeClient()
    hub.add(late.send)
    await settle()

    assert early.messages == [CONNECTED, REFRESH_CSS]
    assert late.messages == [CONNECTED, REFRESH_CSS]


@pytest.mark.asyncio
async def test_one_message_per_completed_batch():
    hub = LiveReloadHub(DebounceScheduler(), delay=WINDOW)
    client = FakeClient()
    hub.add(client.send)
    await settle()

    hub.record("/src/a.css")
    hub.record("/src/main.js")
    hub.commit()
    await settle()

    hub.record("/src/a.css")
    hub.commit()
    await settle()

    assert client.messages == [CONNECTED, RELOAD, REFRESH_CSS]


@pytest.mark.asyncio
async def test_taken_batch_leaves_later_changes_pending():
    hub = LiveReloadHub(DebounceScheduler(), delay=WINDOW)
    client = FakeClient()
    hub.add(client.send)
    await settle()

    hub.record("/src/main.js")
    batch = hub.take()
    hub.record("/src/theme.css")
    hub.commit(batch)
    await settle()

    assert client.messages == [CONNECTED, RELOAD]

    failed = hub.take()
    hub.record("/src/logo.png")
    hub.restore(failed)
    hub.commit()
    await settle()

    assert client.messages == [CONNECTED, RELOAD, REFRESH_CSS]


@pytest.mark.asyncio
async def test_uncommitted_changes_are_not_sent():
    hub = LiveReloadHub(DebounceScheduler(), delay=WINDOW)
    client = FakeClient()
    hub.add(client.send)
    await settle()

    hub.record("/src/main.js")
    await settle()

    assert client.messages == [CONNECTED]


@pytest.mark.asyncio
async def test_failing_client_is_removed_without_affecting_others():
    hub = LiveReloadHub(DebounceScheduler(), delay=WINDOW)
    good = FakeClient()
    bad = FakeClient(fail=True)
    hub.add(good.send)
    bad_client = hub.add(bad.send)
    await settle()

    assert bad_client not in hub.clients
    assert len(hub.clients) == 1

    hub.record("/src/main.js")
    hub.commit()
    await settle()

    assert good.messages == [CONNECTED, RELOAD]
    assert bad.messages == []


@pytest.mark.asyncio
async def test_removed_client_gets_nothing_further():
    hub = LiveReloadHub(DebounceScheduler(), delay=WINDOW)
    client = FakeClient()
    registered = hub.add(client.send)
    hub.remove(registered)

    hub.record("/src/main.js")
    hub.commit()
    await settle()

    assert client.messages == []


@pytest.mark.asyncio
async def test_websocket_round_trip(tmp_path):
    hub = LiveReloadHub(DebounceScheduler(), delay=WINDOW)
    static = StaticFileServer(str(tmp_path), hub=hub)

    async with TestClient(TestServer(static.make_app())) as client:
        ws = await client.ws_connect("/__ws")

        msg = await ws.receive(timeout=2)
        assert msg.type == WSMsgType.TEXT
        assert msg.data == CONNECTED

        hub.record(str(tmp_path / "main.js"))
        hub.commit()
        msg = await ws.receive(timeout=2)
        assert msg.data == RELOAD

        await ws.close()
        await asyncio.sleep(0.05)
        assert hub.clients == []
