from uuid import uuid4

import pytest

from happenings.events.dtos import InvalidOverrideError, OverrideDTO
from happenings.events.features.occurrence_overrides.router import get_override_write_model
from happenings.events.features.occurrence_overrides.write_model import OverrideWriteModel
from happenings.events.urls import OCCURRENCE_OVERRIDE_URL
from happenings.occurrences.errors import UnknownOccurrenceError
from happenings.occurrences.overrides import OverrideStatus


class InMemoryOverrideWriteModel(OverrideWriteModel):
    def __init__(self, natural_dates=("2026-02-12", "2026-02-19")):
        self.natural_dates = set(natural_dates)
        self.stored = {}

    async def upsert_override(self, event_id, date_key, status=OverrideStatus.NORMAL, patch=None, **_):
        if date_key not in self.natural_dates:
            raise UnknownOccurrenceError(event_id, date_key)
        patch = dict(patch or {})
        if patch.get("event_date", "9999-12-31") < "2026-02-06":
            raise InvalidOverrideError("target in the past")
        override = OverrideDTO(
            event_id=event_id,
            date_key=date_key,
            status=status,
            override_patch=patch,
            display_date=patch.get("event_date", date_key),
        )
        self.stored[(event_id, date_key)] = override
        return override

    async def delete_override(self, event_id, date_key):
        return self.stored.pop((event_id, date_key), None) is not None


@pytest.mark.asyncio
async def test_put_then_delete_override(client_factory):
    model = InMemoryOverrideWriteModel()
    event_id = uuid4()
    url = OCCURRENCE_OVERRIDE_URL.format(event_id=event_id, date_key="2026-02-12")

    async with client_factory({get_override_write_model: lambda: model}) as client:
        put = await client.put(url, json={"override_patch": {"event_date": "2026-02-14"}})
        deleted = await client.delete(url)
        missing = await client.delete(url)

    assert put.status_code == 200
    assert put.json() == {
        "event_id": str(event_id),
        "date_key": "2026-02-12",
        "status": "normal",
        "override_patch": {"event_date": "2026-02-14"},
        "display_date": "2026-02-14",
    }
    assert deleted.status_code == 204
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_cancel_occurrence(client_factory):
    model = InMemoryOverrideWriteModel()
    url = OCCURRENCE_OVERRIDE_URL.format(event_id=uuid4(), date_key="2026-02-19")

    async with client_factory({get_override_write_model: lambda: model}) as client:
        response = await client.put(url, json={"status": "cancelled"})

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "date_key, body",
    [
        ("2026-02-13", {"status": "cancelled"}),
        ("2026-02-12", {"override_patch": {"event_date": "2026-01-01"}}),
    ],
)
async def test_rejected_overrides_return_400(client_factory, date_key, body):
    model = InMemoryOverrideWriteModel()
    url = OCCURRENCE_OVERRIDE_URL.format(event_id=uuid4(), date_key=date_key)

    async with client_factory({get_override_write_model: lambda: model}) as client:
        response = await client.put(url, json=body)

    assert response.status_code == 400
    assert model.stored == {}
