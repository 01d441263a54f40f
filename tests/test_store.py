from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from listing_intake.errors import PersistenceError, RecordNotFoundError
from listing_intake.store import HistoryEntry, InMemoryBusinessStore, InMemoryHistoryStore, open_sqlite_stores


def entry(business_id: str, field_name: str, changed_at: str, new_value: str = "v") -> HistoryEntry:
    return HistoryEntry(
        business_id=business_id,
        field_name=field_name,
        old_value=None,
        new_value=new_value,
        changed_by="tester",
        change_source="manual_edit",
        changed_at=changed_at,
    )


class BusinessStoreContract:
    """Shared checks run against every BusinessStore/HistoryStore backend."""

    def make_stores(self):
        raise NotImplementedError

    def setUp(self):
        self.businesses, self.history = self.make_stores()

    def test_insert_get_find(self):
        created = self.businesses.insert_many([{"storeCode": "VIE-1", "businessName": "Cafe", "moreHours": []}])
        business_id = created[0]["id"]
        self.assertIs(created[0]["is_async"], False)
        self.assertEqual(self.businesses.get(business_id)["businessName"], "Cafe")
        self.assertEqual(self.businesses.find("VIE-1")["id"], business_id)
        self.assertIsNone(self.businesses.find("VIE-2"))
        self.assertEqual(self.businesses.get(business_id)["moreHours"], [])

    def test_update_merges_patch(self):
        business_id = self.businesses.insert_many([{"storeCode": "VIE-1", "city": "Vienna"}])[0]["id"]
        updated = self.businesses.update(business_id, {"city": "Graz", "latitude": 47.07})
        self.assertEqual(updated["city"], "Graz")
        self.assertEqual(self.businesses.get(business_id)["latitude"], 47.07)
        self.assertEqual(self.businesses.get(business_id)["storeCode"], "VIE-1")

    def test_missing_records(self):
        with self.assertRaises(RecordNotFoundError):
            self.businesses.get("nope")
        with self.assertRaises(RecordNotFoundError):
            self.businesses.update("nope", {"city": "Graz"})
        with self.assertRaises(RecordNotFoundError):
            self.businesses.delete("nope")

    def test_delete(self):
        business_id = self.businesses.insert_many([{"storeCode": "VIE-1"}])[0]["id"]
        self.businesses.delete(business_id)
        self.assertEqual(self.businesses.all(), [])

    def test_history_is_newest_first(self):
        self.history.append([entry("b1", "city", "2026-01-01T00:00:00.000001Z", "Graz")])
        self.history.append([entry("b1", "city", "2026-01-02T00:00:00.000001Z", "Linz")])
        self.history.append([entry("b1", "country", "2026-01-03T00:00:00.000001Z")])
        self.history.append([entry("b2", "city", "2026-01-04T00:00:00.000001Z")])

        all_entries = self.history.list_for_business("b1")
        self.assertEqual([e.field_name for e in all_entries], ["country", "city", "city"])
        city = self.history.list_for_field("b1", "city")
        self.assertEqual([e.new_value for e in city], ["Linz", "Graz"])
        self.assertEqual(len(self.history.list_for_field("b1", "city", limit=1)), 1)
        self.assertTrue(all(e.id is not None for e in all_entries))

    def test_equal_timestamps_fall_back_to_insertion_order(self):
        stamp = "2026-01-01T00:00:00.000000Z"
        self.history.append([entry("b1", "city", stamp, "first"), entry("b1", "city", stamp, "second")])
        self.assertEqual([e.new_value for e in self.history.list_for_field("b1", "city")], ["second", "first"])

    def test_delete_history_for_business(self):
        self.history.append([entry("b1", "city", "t1"), entry("b1", "city", "t2"), entry("b2", "city", "t3")])
        self.assertEqual(self.history.delete_for_business("b1"), 2)
        self.assertEqual(self.history.list_for_business("b1"), [])
        self.assertEqual(len(self.history.list_for_business("b2")), 1)


class InMemoryStoreTests(BusinessStoreContract, unittest.TestCase):
    def make_stores(self):
        return InMemoryBusinessStore(), InMemoryHistoryStore()

    def test_returned_records_are_copies(self):
        business_id = self.businesses.insert_many([{"storeCode": "VIE-1"}])[0]["id"]
        record = self.businesses.get(business_id)
        record["storeCode"] = "changed"
        self.assertEqual(self.businesses.get(business_id)["storeCode"], "VIE-1")

    def test_duplicate_id_rejected(self):
        self.businesses.insert_many([{"id": "fixed", "storeCode": "A"}])
        with self.assertRaises(PersistenceError):
            self.businesses.insert_many([{"id": "fixed", "storeCode": "B"}])


class SQLiteStoreTests(BusinessStoreContract, unittest.TestCase):
    def make_stores(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        return open_sqlite_stores(Path(self._tmp.name) / "nested" / "intake.db")

    def test_records_survive_reopening(self):
        business_id = self.businesses.insert_many([{"storeCode": "VIE-1", "temporarilyClosed": True}])[0]["id"]
        reopened, _ = open_sqlite_stores(self.businesses.database.path)
        record = reopened.get(business_id)
        self.assertIs(record["temporarilyClosed"], True)
        self.assertEqual(record["id"], business_id)

    def test_duplicate_id_is_persistence_error(self):
        self.businesses.insert_many([{"id": "fixed", "storeCode": "A"}])
        with self.assertRaises(PersistenceError):
            self.businesses.insert_many([{"id": "fixed", "storeCode": "B"}])


if __name__ == "__main__":
    unittest.main()
