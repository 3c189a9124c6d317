import asyncio
import logging
from datetime import date

from fleetforms.drafts import DraftPersistence, MemoryDraftStore, MongoDraftStore, draft_key
from fleetforms.fields import FieldDef
from fleetforms.forms.transaction import TRANSACTION_FORM
from fleetforms.schemas import FileRef, FormState, PendingFile, StoreSnapshot


class CountingStore(MemoryDraftStore):
    def __init__(self):
        super().__init__()
        self.saves = 0

    async def save(self, draft):
        self.saves += 1
        await super().save(draft)


class FakeCollection:
    """Just enough of a motor collection for the draft store."""

    def __init__(self):
        self.docs = {}

    async def find_one(self, query):
        doc = self.docs.get(query["_id"])
        return dict(doc) if doc else None

    async def replace_one(self, query, doc, upsert=False):
        assert upsert
        self.docs[query["_id"]] = dict(doc)

    async def delete_one(self, query):
        self.docs.pop(query["_id"], None)


def _state(store):
    return FormState(
        formType="transaction",
        values=store.values(),
        touched=sorted(store.touched),
    )


def _filled_store():
    store = TRANSACTION_FORM.new_store()
    store.set("Customer", "Acme Logistics")
    store.set("OpeningKM", 1000)
    store.set("Date", date(2026, 10, 19))
    store.set("VehicleNo", ["MH12AB1234"])
    store.set("VehicleReportingAtHub", "08:00")
    store.set("TripClose", True)
    store.set("OpeningKMImage", FileRef(url="/uploads/odo.jpg", originalName="odo.jpg"), touch=False)
    return store


def test_draft_round_trip_restores_values_and_touched_flags():
    async def scenario():
        store = _filled_store()
        drafts = DraftPersistence(MemoryDraftStore(), "transaction", "client-1")
        await drafts.save(_state(store))

        restored, _ = await drafts.restore(TRANSACTION_FORM.fields)
        fresh = TRANSACTION_FORM.new_store()
        fresh.restore(StoreSnapshot(values=restored.values, touched=restored.touched))
        return store.snapshot(), fresh.snapshot()

    original, restored = asyncio.run(scenario())
    assert restored == original


def test_pending_files_are_not_persisted(tmp_path):
    async def scenario():
        store = TRANSACTION_FORM.new_store()
        pending = PendingFile(path=str(tmp_path / "a.jpg"), filename="a.jpg")
        store.set("ClosingKMImage", pending)
        drafts = DraftPersistence(MemoryDraftStore(), "transaction", "client-1")
        await drafts.save(_state(store))
        restored, _ = await drafts.restore(TRANSACTION_FORM.fields)
        return restored

    restored = asyncio.run(scenario())
    assert restored.values["ClosingKMImage"] is None


def test_saves_are_debounced():
    async def scenario():
        backing = CountingStore()
        drafts = DraftPersistence(backing, "transaction", "client-1", quiet_period=0.05)
        store = TRANSACTION_FORM.new_store()
        for km in (1, 12, 123):
            store.set("OpeningKM", km)
            drafts.schedule(_state(store))
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.15)
        restored, _ = await drafts.restore(TRANSACTION_FORM.fields)
        return backing.saves, restored.values["OpeningKM"]

    saves, km = asyncio.run(scenario())
    assert saves == 1
    assert km == 123


def test_cancel_drops_the_pending_save():
    async def scenario():
        backing = CountingStore()
        drafts = DraftPersistence(backing, "transaction", "client-1", quiet_period=0.05)
        drafts.schedule(_state(TRANSACTION_FORM.new_store()))
        drafts.cancel()
        await asyncio.sleep(0.1)
        return backing.saves

    assert asyncio.run(scenario()) == 0


def test_flush_saves_immediately():
    async def scenario():
        backing = CountingStore()
        drafts = DraftPersistence(backing, "transaction", "client-1", quiet_period=10)
        drafts.schedule(_state(TRANSACTION_FORM.new_store()))
        await drafts.flush(_state(TRANSACTION_FORM.new_store()))
        return backing.saves, drafts.pending

    assert asyncio.run(scenario()) == (1, False)


def test_one_slot_per_client_and_form_type():
    async def scenario():
        backing = MemoryDraftStore()
        mine = DraftPersistence(backing, "transaction", "client-1")
        theirs = DraftPersistence(backing, "transaction", "client-2")

        first = TRANSACTION_FORM.new_store()
        first.set("Customer", "First")
        second = TRANSACTION_FORM.new_store()
        second.set("Customer", "Second")
        await mine.save(_state(first))
        await mine.save(_state(second))

        mine_restored, _ = await mine.restore(TRANSACTION_FORM.fields)
        return mine_restored.values["Customer"], await theirs.restore(TRANSACTION_FORM.fields)

    mine, theirs = asyncio.run(scenario())
    assert mine == "Second"
    assert theirs is None


def test_discard_removes_the_draft():
    async def scenario():
        drafts = DraftPersistence(MemoryDraftStore(), "transaction", "client-1")
        await drafts.save(_state(TRANSACTION_FORM.new_store()))
        await drafts.discard()
        return await drafts.restore(TRANSACTION_FORM.fields)

    assert asyncio.run(scenario()) is None


def test_restore_drops_values_that_no_longer_fit():
    async def scenario():
        store = MemoryDraftStore()
        drafts = DraftPersistence(store, "transaction", "client-1")
        await drafts.save(FormState(
            formType="transaction",
            values={"OpeningKM": "lots", "Customer": "Acme", "Retired": 1},
            touched=["OpeningKM", "Retired"],
        ))
        return await drafts.restore(TRANSACTION_FORM.fields)

    restored, _ = asyncio.run(scenario())
    assert restored.values == {"Customer": "Acme"}
    assert restored.touched == ["OpeningKM"]


def test_mongo_store_upserts_one_document_per_slot():
    async def scenario():
        collection = FakeCollection()
        drafts = DraftPersistence(MongoDraftStore(collection), "customer", "client-1")
        await drafts.save(FormState(formType="customer", values={"Name": "A"}))
        await drafts.save(FormState(formType="customer", values={"Name": "B"}))
        restored, _ = await drafts.restore({"Name": FieldDef("Name", "text")})
        return collection.docs, restored

    docs, restored = asyncio.run(scenario())
    assert list(docs) == [draft_key("client-1", "customer")]
    assert restored.values == {"Name": "B"}


class BrokenStore(MemoryDraftStore):
    async def save(self, draft):
        raise ConnectionError("mongo down")


def test_failed_saves_are_logged_not_raised(caplog):
    async def scenario():
        drafts = DraftPersistence(BrokenStore(), "transaction", "client-1", quiet_period=0.01)
        drafts.schedule(_state(TRANSACTION_FORM.new_store()))
        await asyncio.sleep(0.05)
        scheduled = drafts._task
        drafts.schedule(_state(TRANSACTION_FORM.new_store()))
        await drafts.flush(_state(TRANSACTION_FORM.new_store()))
        return scheduled

    with caplog.at_level(logging.ERROR, logger="fleetforms.drafts"):
        scheduled = asyncio.run(scenario())

    assert scheduled.exception() is None
    failures = [r for r in caplog.records if "Failed to save draft" in r.message]
    assert len(failures) == 2
