from dataclasses import dataclass
from typing import List, Tuple

from psycopg import AsyncConnection, AsyncCursor, IsolationLevel

import db
from anomaly.base import ActorOutcome, ConcurrentTransactionExample, Delays, Scenario, serialization_error
from anomaly import registry


LISTING_ID = 1234
INVOICE_ID = 1


class Purchase(ConcurrentTransactionExample):
    """Buys the listing: updates its buyer, then the invoice recipient."""

    def __init__(self, conn, level, delays, name, start_after: float = 0, pause_between: float = 0):
        super().__init__(conn, level, delays, name)
        self._start_after = start_after
        self._pause_between = pause_between

    async def run(self, cursor: AsyncCursor):
        await self.pause(self._start_after)
        await self.begin_transaction_with_isolation_level(cursor)

        query = "update listings set buyer = %s where id = %s;"
        await cursor.execute(query, (self.name, LISTING_ID))
        self.print_text(query, f"MODIFIED: {cursor.rowcount}")

        await self.pause(self._pause_between)

        query = "update invoices set recipient = %s where listing_id = %s;"
        await cursor.execute(query, (self.name, LISTING_ID))
        self.print_text(query, f"MODIFIED: {cursor.rowcount}")

        await self.commit(cursor)


@dataclass(frozen=True)
class DirtyWritesCase:
    level: IsolationLevel | None
    listing_buyer: str
    invoice_recipient: str
    serialization_error: bool

    def __str__(self):
        return db.isolation_name(self.level)


@dataclass(frozen=True)
class DirtyWritesResult:
    listing_buyer: str | None
    invoice_recipient: str | None
    serialization_error: bool

    def __str__(self):
        return (
            f"buyer={self.listing_buyer} recipient={self.invoice_recipient}"
            f" serialization_error={self.serialization_error}"
        )


class DirtyWrites(Scenario):

    cases = (
        # Without a transaction each write lands on its own: the listing goes to Bob
        # and the invoice to Alice.
        DirtyWritesCase(None, "Bob", "Alice", serialization_error=False),
        # Alice's transaction holds the listing row lock, Bob waits for her commit
        # and then overwrites both rows.
        DirtyWritesCase(IsolationLevel.READ_COMMITTED, "Bob", "Bob", serialization_error=False),
        # Bob waits on the same lock, but once Alice commits his update conflicts
        # with her snapshot and fails with 40001.
        DirtyWritesCase(IsolationLevel.REPEATABLE_READ, "Alice", "Alice", serialization_error=True),
        DirtyWritesCase(IsolationLevel.SERIALIZABLE, "Alice", "Alice", serialization_error=True),
    )

    async def reset_fixtures(self, conn: AsyncConnection):
        async with conn.cursor() as cursor:
            await cursor.execute("delete from invoices;")
            await cursor.execute("delete from listings;")
            await cursor.execute("insert into listings (id, buyer) values (%s, null);", (LISTING_ID,))
            await cursor.execute(
                "insert into invoices (id, listing_id, recipient) values (%s, %s, null);",
                (INVOICE_ID, LISTING_ID),
            )

    def actors(self, conns: Tuple[AsyncConnection, AsyncConnection], case: DirtyWritesCase, delays: Delays):
        alice = Purchase(conns[0], case.level, delays, "Alice", pause_between=200)
        bob = Purchase(conns[1], case.level, delays, "Bob", start_after=100)
        return alice, bob

    async def observe(self, conn: AsyncConnection, outcomes: List[ActorOutcome]) -> DirtyWritesResult:
        async with conn.cursor() as cursor:
            await cursor.execute("select buyer from listings where id = %s;", (LISTING_ID,))
            listing = await cursor.fetchone()
            await cursor.execute("select recipient from invoices where listing_id = %s;", (LISTING_ID,))
            invoice = await cursor.fetchone()

        return DirtyWritesResult(
            listing_buyer=listing["buyer"] if listing else None,
            invoice_recipient=invoice["recipient"] if invoice else None,
            serialization_error=serialization_error(outcomes),
        )

    def check(self, case: DirtyWritesCase, result: DirtyWritesResult) -> List[str]:
        mismatches = []
        if result.listing_buyer != case.listing_buyer:
            mismatches.append(f"listing buyer {result.listing_buyer}, expected {case.listing_buyer}")
        if result.invoice_recipient != case.invoice_recipient:
            mismatches.append(f"invoice recipient {result.invoice_recipient}, expected {case.invoice_recipient}")
        if result.serialization_error != case.serialization_error:
            mismatches.append(f"serialization error {result.serialization_error}, expected {case.serialization_error}")
        return mismatches


registry.register("dirty-writes", DirtyWrites(), description="""
Alice and Bob try to buy listing 1234 at the same time. A purchase writes twice: the listing gets a buyer,
then the invoice gets a recipient. Bob starts 100ms after Alice, so both his writes land inside the 200ms
pause between Alice's writes.
Without a transaction the listing ends up with Bob and the invoice with Alice.
`read committed` makes Bob wait on the row lock held by Alice, so both rows end up with Bob.
`repeatable read` and `serializable` also make Bob wait, but his update then fails with a serialization error
and both rows stay with Alice.

┌───────┐               ┌─────┐                 ┌────┐
│ Alice │               │ Bob │                 │ DB │
└───┬───┘               └──┬──┘                 └──┬─┘
    │                      │                       │
    ├──────update listing buyer───────────────────►│
    │                      │                       │
    │                      ├──update listing──────►│ waits for Alice inside a transaction
    │                      │                       │
    │                      ├──update invoice──────►│
    │                      │                       │
    ├──────update invoice recipient───────────────►│
    │                      │                       │
    ├──────commit──────────┼──────────────────────►│
    │                      │                       │
    │                      ├──commit/rollback─────►│ 40001 for `repeatable read` and `serializable`
    │                      │                       │
""")
