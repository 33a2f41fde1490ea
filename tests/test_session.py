"""
Receipt session — last‑writer‑wins merge, debounced autosave, modes and OCR import.
"""
import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from receiptsplit.errors import BadRequestError, ExtractionFailure, NotFoundError, PersistenceError
from receiptsplit.schemas import Receipt
from receiptsplit.sync.channel import ChannelState
from receiptsplit.sync.session import EPHEMERAL, OWNER, SHARE, ReceiptSession

TOKEN = "3f2b8c1e-9a4d-4e6f-8b7a-1c2d3e4f5a6b"

pytestmark = pytest.mark.anyio


def _receipt(**overrides):
    now = datetime.now(timezone.utc)
    data = {
        "id": "r1",
        "access_token": TOKEN,
        "name": "Dinner",
        "people": ["Alice"],
        "created_at": now,
        "updated_at": now,
    }
    data.update(overrides)
    return Receipt(**data)


class FakeApi:
    def __init__(self):
        self.calls = []
        self.fail_with = None

    async def _call(self, name, *args):
        self.calls.append((name, *args))
        if self.fail_with is not None:
            raise self.fail_with
        return _receipt()

    async def fetch(self, receipt_id):
        return await self._call("fetch", receipt_id)

    async def fetch_by_token(self, token):
        return await self._call("fetch_by_token", token)

    async def save(self, receipt_id, fields):
        return await self._call("save", receipt_id, fields)

    async def save_by_token(self, token, fields):
        return await self._call("save_by_token", token, fields)

    async def create(self, fields):
        self.calls.append(("create", fields))
        return _receipt(id="new-id", name=fields.name)

    def named(self, name):
        return [c for c in self.calls if c[0] == name]


class FakeChannel:
    instances = []

    def __init__(self, url, receipt_id, *, on_message=None, on_state=None):
        self.url = url
        self.receipt_id = receipt_id
        self.on_message = on_message
        self.on_state = on_state
        self.is_connected = False
        self.sent = []
        self.runs = 0
        self.closed = False
        FakeChannel.instances.append(self)

    async def run(self):
        self.runs += 1
        await asyncio.Event().wait()

    async def send_update(self, changes):
        self.sent.append(changes)
        return True

    async def close(self):
        self.closed = True
        self.is_connected = False


@pytest.fixture()
def api():
    return FakeApi()


@pytest.fixture()
def session(api):
    FakeChannel.instances.clear()
    return ReceiptSession(
        api,
        receipt_id="r1",
        relay_url="ws://test/api/websocket",
        autosave_delay=0.02,
        channel_factory=FakeChannel,
    )


def _update(changes, at, receipt_id="r1"):
    return {
        "type": "state_update",
        "receiptId": receipt_id,
        "changes": changes,
        "userId": "user-other",
        "timestamp": at.isoformat(),
    }


# =====================================================================
# Remote updates
# =====================================================================
class TestLastWriterWins:
    async def test_older_update_discarded_newer_applied(self, session):
        await session.add_person("Bob")
        t = datetime.fromtimestamp(session.last_applied / 1000, tz=timezone.utc)

        assert session.handle_message(_update({"people": ["Old"]}, t - timedelta(seconds=1))) is False
        assert session.state.people == ["Bob"]

        newer = t + timedelta(seconds=1)
        assert session.handle_message(_update({"people": ["New"]}, newer)) is True
        assert session.state.people == ["New"]
        assert session.last_applied == pytest.approx(newer.timestamp() * 1000)
        await session.close()

    async def test_equal_timestamp_discarded(self, session):
        at = datetime.now(timezone.utc)
        assert session.handle_message(_update({"name": "A"}, at))
        assert not session.handle_message(_update({"name": "B"}, at))
        assert session.state.name == "A"

    async def test_whole_field_replacement(self, session):
        await session.add_item("Burger", 10.0)
        await session.add_item("Fries", 4.0)
        later = datetime.now(timezone.utc) + timedelta(minutes=1)
        session.handle_message(_update({"items": [{"name": "Salad", "price": 8}]}, later))
        assert [i.name for i in session.state.items] == ["Salad"]
        await session.close()

    @pytest.mark.parametrize(
        "message",
        [
            {"type": "ping"},
            {"type": "connected", "receiptId": "r1"},
            {"type": "state_update", "receiptId": "other", "changes": {"name": "x"},
             "timestamp": "2099-01-01T00:00:00+00:00"},
            {"type": "state_update", "receiptId": "r1", "changes": {"name": "x"}},
            {"type": "state_update", "receiptId": "r1", "changes": {"name": "x"},
             "timestamp": "not a date"},
            {"type": "state_update", "receiptId": "r1", "changes": {"people": "nope"},
             "timestamp": "2099-01-01T00:00:00+00:00"},
        ],
    )
    async def test_ignored_messages(self, session, message):
        before = session.state
        assert session.handle_message(message) is False
        assert session.state == before

    async def test_remote_update_does_not_schedule_save(self, session, api):
        session.handle_message(_update({"name": "Remote"}, datetime.now(timezone.utc)))
        assert not session.has_pending_save
        await asyncio.sleep(0.05)
        assert api.named("save") == []


# =====================================================================
# Autosave
# =====================================================================
class TestAutosave:
    async def test_edits_coalesce_into_one_save(self, session, api):
        await session.add_person("Bob")
        await session.add_person("Carol")
        await session.update_tip_config(True, 15)
        assert session.has_pending_save

        await asyncio.sleep(0.08)

        saves = api.named("save")
        assert len(saves) == 1
        _, receipt_id, payload = saves[0]
        assert receipt_id == "r1"
        assert payload.people == ["Bob", "Carol"]
        assert payload.tip_config.value == 15
        assert not session.has_pending_save
        assert session.save_error is None

    async def test_failure_reported_not_retried(self, session, api):
        api.fail_with = PersistenceError()
        await session.add_person("Bob")
        await asyncio.sleep(0.08)

        assert session.save_error == "Failed to access receipt storage"
        await asyncio.sleep(0.08)
        assert len(api.named("save")) == 1

        # The next edit arms a fresh attempt
        api.fail_with = None
        await session.add_person("Carol")
        await asyncio.sleep(0.08)
        assert len(api.named("save")) == 2
        assert session.save_error is None

    async def test_close_drops_pending_save(self, session, api):
        await session.add_person("Bob")
        await session.close()
        await asyncio.sleep(0.05)
        assert api.named("save") == []

    async def test_noop_edit_changes_nothing(self, session, api):
        await session.add_person("Bob")
        stamp = session.last_applied
        assert await session.add_person("Bob") is False
        assert session.last_applied == stamp
        await session.close()


# =====================================================================
# Modes
# =====================================================================
class TestModes:
    async def test_owner_load(self, session, api):
        receipt = await session.load()
        assert session.mode == OWNER
        assert api.calls == [("fetch", "r1")]
        assert session.state.people == ["Alice"]
        assert session.access_token == receipt.access_token
        assert session.share_url("https://split.example/") == f"https://split.example/share/{TOKEN}"

    async def test_load_failure_sets_error(self, session, api):
        api.fail_with = NotFoundError()
        with pytest.raises(NotFoundError):
            await session.load()
        assert session.error == "Receipt not found"
        assert session.is_loading is False

    async def test_share_mode_saves_by_token(self, api):
        session = ReceiptSession(api, access_token=TOKEN, autosave_delay=0.01,
                                 channel_factory=FakeChannel)
        assert session.mode == SHARE
        await session.load()
        assert session.receipt_id == "r1"

        await session.add_person("Bob")
        await asyncio.sleep(0.05)
        assert api.named("save") == []
        [(_, token, payload)] = api.named("save_by_token")
        assert token == TOKEN
        assert payload.people == ["Alice", "Bob"]

    async def test_ephemeral_never_autosaves(self, api):
        session = ReceiptSession(api, autosave_delay=0.01, channel_factory=FakeChannel)
        assert session.mode == EPHEMERAL
        assert not session.persisted

        await session.add_person("Bob")
        assert not session.has_pending_save
        await asyncio.sleep(0.03)
        assert api.calls == []

    async def test_ephemeral_save_creates_receipt(self, api):
        session = ReceiptSession(api, autosave_delay=0.01, channel_factory=FakeChannel)
        await session.add_person("Bob")

        receipt = await session.save()

        [(_, payload)] = api.named("create")
        assert payload.name.startswith("Receipt ")
        assert payload.people == ["Bob"]
        assert receipt.id == "new-id"
        assert session.mode == OWNER
        assert session.receipt_id == "new-id"
        assert session.persisted

    async def test_ephemeral_load_rejected(self, api):
        session = ReceiptSession(api, channel_factory=FakeChannel)
        with pytest.raises(BadRequestError):
            await session.load()
        assert session.error


# =====================================================================
# Relay
# =====================================================================
class TestRelay:
    async def test_start_loads_once_and_joins(self, session, api):
        await session.start()
        await asyncio.sleep(0)

        [channel] = FakeChannel.instances
        assert channel.receipt_id == "r1"
        assert channel.url == "ws://test/api/websocket"
        assert channel.runs == 1

        # Reconnects do not re-fetch the document
        channel.on_state(ChannelState.DISCONNECTED)
        channel.on_state(ChannelState.CONNECTED)
        assert api.named("fetch") == [("fetch", "r1")]

        await session.close()
        assert channel.closed

    async def test_local_edit_broadcast_when_connected(self, session):
        await session.connect()
        channel = FakeChannel.instances[0]
        channel.is_connected = True

        await session.add_person("Bob")

        assert channel.sent == [{"people": ["Bob"]}]
        await session.close()

    async def test_json_shaped_changes(self, session):
        await session.connect()
        channel = FakeChannel.instances[0]
        channel.is_connected = True

        await session.add_item("Burger", 10.0)

        [changes] = channel.sent
        assert changes["items"][0]["applicable_taxes"] == {"1": False, "2": False}
        await session.close()

    async def test_not_broadcast_while_disconnected(self, session):
        await session.connect()
        await session.add_person("Bob")
        assert FakeChannel.instances[0].sent == []
        await session.close()

    async def test_connect_needs_receipt_id(self, api):
        session = ReceiptSession(api, channel_factory=FakeChannel)
        with pytest.raises(BadRequestError):
            await session.connect()


# =====================================================================
# OCR import
# =====================================================================
class TestOcrImport:
    async def test_import_appends_items(self, session):
        async def recognize(source, language):
            assert language == "eng"
            return "Burger 10.00\nBeer 6.00\nTAX GST 7%"

        count = await session.import_from_ocr(recognize, source=b"image")

        assert count == 2
        assert [i.name for i in session.state.items] == ["Burger", "Beer"]
        assert session.state.tax_rates[0].rate == 7
        assert session.extraction_error is None
        await session.close()

    async def test_failure_is_not_fatal(self, session):
        async def recognize(source, language):
            raise ExtractionFailure("Could not read image")

        before = session.state
        assert await session.import_from_ocr(recognize) == 0
        assert session.extraction_error == "Could not read image"
        assert session.state == before
