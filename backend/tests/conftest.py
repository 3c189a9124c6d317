import asyncio
from datetime import date

import pytest

from fleetforms.drafts import MemoryDraftStore
from fleetforms.errors import AttachmentDeletionError, CodeLookupError, SubmissionNetworkError
from fleetforms.schemas import CreateResult

TODAY = date(2026, 10, 19)


class FakeRecordsAPI:
    """In-memory stand-in for the records backend; records every call."""

    def __init__(self):
        self.calls = []
        self.failing_deletions = set()
        self.fail_submit = False
        self.fail_lookup = False
        self.lookup_delay = 0.0
        self.generated = {}
        self.codes = {}

    async def lookup_code(self, resource, code_field, seed_text):
        self.calls.append(("lookup", resource, seed_text))
        await asyncio.sleep(self.lookup_delay)
        if self.fail_lookup:
            raise CodeLookupError("backend unreachable")
        return self.codes.get(seed_text, "GEN001")

    async def create_record(self, resource, payload):
        self.calls.append(("create", resource, payload))
        if self.fail_submit:
            raise SubmissionNetworkError("connection refused")
        return CreateResult(id="rec-1", generatedFields=dict(self.generated))

    async def update_record(self, resource, record_id, payload):
        self.calls.append(("update", resource, record_id, payload))
        if self.fail_submit:
            raise SubmissionNetworkError("connection refused")

    async def delete_attachment(self, resource, record_id, field_id):
        self.calls.append(("delete", resource, record_id, field_id))
        await asyncio.sleep(0)
        if field_id in self.failing_deletions:
            raise AttachmentDeletionError(field_id, "500 Internal Server Error")

    def calls_of(self, kind):
        return [c for c in self.calls if c[0] == kind]


@pytest.fixture
def records_api():
    return FakeRecordsAPI()


@pytest.fixture
def draft_store():
    return MemoryDraftStore()


@pytest.fixture
def transaction_values():
    """A complete, valid Fixed transaction as the UI would send it."""
    return {
        "Customer": "Acme Logistics",
        "Project": "Last Mile",
        "CustSite": "Pune",
        "Date": "2026-10-19",
        "TypeOfTransaction": "Fixed",
        "VehicleNo": ["MH12AB1234"],
        "DriverID": "DRV-7",
        "TripNo": "1",
        "OpeningKM": 1000,
        "ClosingKM": 1150,
        "VehicleReportingAtHub": "08:00",
        "VehicleEntryInHub": "08:15",
        "VehicleOutFromHubForDelivery": "09:00",
        "VehicleReturnAtHub": "17:00",
        "VehicleEnteredAtHubReturn": "17:15",
        "VehicleOutFromHubFinal": "18:00",
        "FixKm": 100,
        "VFreightFix": 10,
        "VFreightVariable": 12,
        "TollExpenses": 50,
        "ParkingCharges": 20,
    }


@pytest.fixture
def customer_values():
    return {
        "MasterCustomerName": "Blue Dart",
        "Name": "Blue Dart Express",
        "TypeOfServices": "Transportation",
        "CustomerSite": [{"location": "Pune", "sites": ["Hinjewadi"]}],
        "house_flat_no": "12",
        "street_locality": "MG Road",
        "city": "Pune",
        "state": "Maharashtra",
        "pin_code": "411001",
    }
