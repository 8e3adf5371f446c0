"""Concurrent reconciliations against one database."""

import asyncio

import pytest

pytestmark = [pytest.mark.asyncio, pytest.mark.integration]


async def test_simultaneous_new_pair_creates_single_primary(service, all_contacts):
    responses = await asyncio.gather(
        *(service.identify_contact("twin@x.com", "123456") for _ in range(4))
    )

    contacts = await all_contacts()
    assert len(contacts) == 1
    assert contacts[0].is_primary()
    assert {r.primaryContactId for r in responses} == {contacts[0].id}


async def test_simultaneous_overlapping_requests_leave_one_primary(service, all_contacts):
    await service.identify_contact("a@x.com", "111111")
    await service.identify_contact("b@x.com", "222222")

    responses = await asyncio.gather(
        service.identify_contact("a@x.com", "222222"),
        service.identify_contact("b@x.com", "111111"),
        service.identify_contact("c@x.com", "111111"),
    )

    contacts = await all_contacts()
    primaries = [c for c in contacts if c.is_primary()]
    assert [p.id for p in primaries] == [1]
    assert all(c.linked_id == 1 for c in contacts if c.is_secondary())
    assert {r.primaryContactId for r in responses} == {1}
    # only c@x.com brought new information
    assert len(contacts) == 3


async def test_disjoint_requests_do_not_interfere(service, all_contacts):
    responses = await asyncio.gather(
        *(service.identify_contact(f"user{i}@x.com", f"55500{i}") for i in range(5))
    )

    contacts = await all_contacts()
    assert len(contacts) == 5
    assert all(c.is_primary() for c in contacts)
    assert sorted(r.primaryContactId for r in responses) == [c.id for c in contacts]
    assert all(r.secondaryContactIds == [] for r in responses)
