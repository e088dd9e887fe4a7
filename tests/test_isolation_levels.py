"""
Integration tests against a live PostgreSQL server.

Each case runs two overlapping transactions whose interleaving is forced by
fixed pauses, so the outcome depends on timing. Set ANOMALY_DELAY_SCALE above
1 on a loaded machine.
"""

import pytest

import db
from anomaly.dirty_writes import DirtyWrites
from anomaly.non_repeatable_reads import NonRepeatableReads
from anomaly.write_skew import WriteSkew


pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


async def _rows(conninfo, query):
    async with await db.connect(conninfo) as conn:
        async with conn.cursor() as cursor:
            await cursor.execute(query)
            return await cursor.fetchall()


@pytest.mark.parametrize("case", DirtyWrites.cases, ids=str)
async def test_dirty_writes(conninfo, delays, case):
    scenario = DirtyWrites()
    result = await scenario.run_case(conninfo, case, delays)

    assert (result.listing_buyer, result.invoice_recipient) == (case.listing_buyer, case.invoice_recipient)
    assert result.serialization_error == case.serialization_error


@pytest.mark.parametrize("case", NonRepeatableReads.cases, ids=str)
async def test_non_repeatable_reads(conninfo, delays, case):
    scenario = NonRepeatableReads()
    result = await scenario.run_case(conninfo, case, delays)

    assert result.observed_sum == case.expected_sum
    assert result.total_balance == 1000
    assert not result.serialization_error


@pytest.mark.parametrize("case", WriteSkew.cases, ids=str)
async def test_write_skew(conninfo, delays, case):
    scenario = WriteSkew()
    result = await scenario.run_case(conninfo, case, delays)

    assert result.on_call == case.expected_on_call
    assert result.serialization_error == case.serialization_error
    assert scenario.check(case, result) == []


@pytest.mark.parametrize("scenario, query", [
    (DirtyWrites(), "select l.id, l.buyer, i.id as invoice, i.recipient from listings l join invoices i on i.listing_id = l.id"),
    (NonRepeatableReads(), "select a.id, a.balance, u.name from accounts a join users u on u.id = a.user_id order by a.id"),
    (WriteSkew(), "select name, shift_id, on_call from doctors order by name"),
], ids=["dirty-writes", "non-repeatable-reads", "write-skew"])
async def test_fixture_reset_is_idempotent(conninfo, scenario, query):
    async with await db.connect(conninfo) as conn:
        await scenario.reset_fixtures(conn)
    first = await _rows(conninfo, query)

    async with await db.connect(conninfo) as conn:
        await scenario.reset_fixtures(conn)
    second = await _rows(conninfo, query)

    assert first
    assert first == second
