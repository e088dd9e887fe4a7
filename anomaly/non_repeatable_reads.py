from dataclasses import dataclass
from typing import List, Tuple

from psycopg import AsyncConnection, AsyncCursor, IsolationLevel

import db
from anomaly.base import ActorOutcome, ConcurrentTransactionExample, Delays, Scenario, serialization_error
from anomaly import registry


USER_ID = 1
INITIAL_BALANCE = 500
TRANSFER_AMOUNT = 100


class BalanceReader(ConcurrentTransactionExample):
    """Reads both of Alice's accounts with a pause in between and returns the total."""

    async def run(self, cursor: AsyncCursor) -> int:
        await self.begin_transaction_with_isolation_level(cursor)

        query = "select balance from accounts where id = %s;"
        await cursor.execute(query, (1,))
        first = await cursor.fetchall()
        self.print_query_result(query, first)

        await self.pause(200)

        await cursor.execute(query, (2,))
        second = await cursor.fetchall()
        self.print_query_result(query, second)

        await self.commit(cursor)
        return first[0]["balance"] + second[0]["balance"]


class Transfer(ConcurrentTransactionExample):
    """Moves money from account 2 to account 1 while the reader is paused."""

    async def run(self, cursor: AsyncCursor):
        await self.begin_transaction_with_isolation_level(cursor)

        await self.pause(100)

        query = "update accounts set balance = balance + %s where id = %s;"
        await cursor.execute(query, (TRANSFER_AMOUNT, 1))
        self.print_text(query, f"MODIFIED: {cursor.rowcount}")

        query = "update accounts set balance = balance - %s where id = %s;"
        await cursor.execute(query, (TRANSFER_AMOUNT, 2))
        self.print_text(query, f"MODIFIED: {cursor.rowcount}")

        await self.commit(cursor)


@dataclass(frozen=True)
class NonRepeatableReadsCase:
    level: IsolationLevel
    expected_sum: int

    def __str__(self):
        return db.isolation_name(self.level)


@dataclass(frozen=True)
class NonRepeatableReadsResult:
    observed_sum: int | None
    total_balance: int
    serialization_error: bool

    def __str__(self):
        return (
            f"sum={self.observed_sum} total={self.total_balance}"
            f" serialization_error={self.serialization_error}"
        )


class NonRepeatableReads(Scenario):

    cases = (
        # The first read happens before the transfer commits and the second one after it,
        # so 100 goes missing.
        NonRepeatableReadsCase(IsolationLevel.READ_COMMITTED, expected_sum=900),
        # Both reads come from the snapshot taken at the first read.
        NonRepeatableReadsCase(IsolationLevel.REPEATABLE_READ, expected_sum=1000),
        NonRepeatableReadsCase(IsolationLevel.SERIALIZABLE, expected_sum=1000),
    )

    async def reset_fixtures(self, conn: AsyncConnection):
        async with conn.cursor() as cursor:
            await cursor.execute("delete from accounts;")
            await cursor.execute("delete from users;")
            await cursor.execute("insert into users (id, name) values (%s, %s);", (USER_ID, "Alice"))
            await cursor.executemany(
                "insert into accounts (id, user_id, balance) values (%s, %s, %s);",
                [(1, USER_ID, INITIAL_BALANCE), (2, USER_ID, INITIAL_BALANCE)],
            )

    def actors(self, conns: Tuple[AsyncConnection, AsyncConnection], case: NonRepeatableReadsCase, delays: Delays):
        reader = BalanceReader(conns[0], case.level, delays, "Reader")
        transfer = Transfer(conns[1], IsolationLevel.READ_COMMITTED, delays, "Transfer")
        return reader, transfer

    async def observe(self, conn: AsyncConnection, outcomes: List[ActorOutcome]) -> NonRepeatableReadsResult:
        async with conn.cursor() as cursor:
            await cursor.execute("select sum(balance) as total from accounts where user_id = %s;", (USER_ID,))
            row = await cursor.fetchone()

        return NonRepeatableReadsResult(
            observed_sum=outcomes[0].value,
            total_balance=row["total"],
            serialization_error=serialization_error(outcomes),
        )

    def check(self, case: NonRepeatableReadsCase, result: NonRepeatableReadsResult) -> List[str]:
        mismatches = []
        if result.observed_sum != case.expected_sum:
            mismatches.append(f"observed sum {result.observed_sum}, expected {case.expected_sum}")
        if result.total_balance != 2 * INITIAL_BALANCE:
            mismatches.append(f"total balance {result.total_balance}, expected {2 * INITIAL_BALANCE}")
        if result.serialization_error:
            mismatches.append("unexpected serialization error")
        return mismatches


registry.register("non-repeatable-reads", NonRepeatableReads(), description="""
Alice has two accounts with 500 each. The reader reads the balance of both accounts with two separate queries,
while a `read committed` transfer moves 100 between them in between the two reads.
For `read committed` the reader sees the first balance before the transfer and the second one after it: 900 in total.
For `repeatable read` and `serializable` both reads come from the same snapshot: 1000 in total.

┌────────┐            ┌──────────┐             ┌────┐
│ Reader │            │ Transfer │             │ DB │
└───┬────┘            └────┬─────┘             └──┬─┘
    │                      │                      │
    ├──────select balance of account 1───────────►│  500
    │                      │                      │
    │                      ├──account 1 + 100────►│
    │                      │                      │
    │                      ├──account 2 - 100────►│
    │                      │                      │
    │                      ├──commit─────────────►│
    │                      │                      │
    ├──────select balance of account 2───────────►│  400 or 500 depending on the isolation level
    │                      │                      │
    ├──────commit──────────┼─────────────────────►│
    │                      │                      │
""")
