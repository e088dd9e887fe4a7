from dataclasses import dataclass
from typing import List, Tuple

from psycopg import AsyncConnection, AsyncCursor, IsolationLevel

import db
from anomaly.base import ActorOutcome, ConcurrentTransactionExample, Delays, Scenario, serialization_error
from anomaly import registry


SHIFT_ID = 1234
# a doctor may only go off call while at least this many are on call
MIN_ON_CALL_TO_LEAVE = 2


class GoOffCall(ConcurrentTransactionExample):

    def __init__(self, conn, level, delays, name, lock: bool = False):
        super().__init__(conn, level, delays, name)
        self._lock = lock

    async def run(self, cursor: AsyncCursor) -> bool:
        await self.begin_transaction_with_isolation_level(cursor)

        query = "select name from doctors where on_call = true and shift_id = %s"
        if self._lock:
            query += " for update"
        await cursor.execute(query + ";", (SHIFT_ID,))
        on_call = await cursor.fetchall()
        self.print_query_result(query, on_call)

        await self.pause(100)

        left = len(on_call) >= MIN_ON_CALL_TO_LEAVE
        if left:
            query = "update doctors set on_call = false where name = %s and shift_id = %s;"
            await cursor.execute(query, (self.name, SHIFT_ID))
            self.print_text(query, f"MODIFIED: {cursor.rowcount}")

        await self.commit(cursor)
        return left


@dataclass(frozen=True)
class WriteSkewCase:
    level: IsolationLevel
    lock: bool
    expected_on_call: int
    serialization_error: bool

    def __str__(self):
        return db.isolation_name(self.level) + (" + for update" if self.lock else "")


@dataclass(frozen=True)
class WriteSkewResult:
    on_call: int
    serialization_error: bool

    def __str__(self):
        return f"on_call={self.on_call} serialization_error={self.serialization_error}"


class WriteSkew(Scenario):

    cases = (
        # Both transactions see two doctors on call and both leave.
        WriteSkewCase(IsolationLevel.READ_COMMITTED, lock=False, expected_on_call=0, serialization_error=False),
        # The snapshot does not help: the precondition holds in both snapshots.
        WriteSkewCase(IsolationLevel.REPEATABLE_READ, lock=False, expected_on_call=0, serialization_error=False),
        # The read/write dependency cycle is detected and one transaction is aborted.
        WriteSkewCase(IsolationLevel.SERIALIZABLE, lock=False, expected_on_call=1, serialization_error=True),
        # The second select waits for the first transaction and then only finds one doctor on call.
        WriteSkewCase(IsolationLevel.READ_COMMITTED, lock=True, expected_on_call=1, serialization_error=False),
        # The second select waits too, but the locked rows were changed after its snapshot: 40001.
        WriteSkewCase(IsolationLevel.REPEATABLE_READ, lock=True, expected_on_call=1, serialization_error=True),
    )

    async def reset_fixtures(self, conn: AsyncConnection):
        async with conn.cursor() as cursor:
            await cursor.execute("delete from doctors;")
            await cursor.executemany(
                "insert into doctors (name, shift_id, on_call) values (%s, %s, %s);",
                [("Alice", SHIFT_ID, True), ("Bob", SHIFT_ID, True)],
            )

    def actors(self, conns: Tuple[AsyncConnection, AsyncConnection], case: WriteSkewCase, delays: Delays):
        alice = GoOffCall(conns[0], case.level, delays, "Alice", lock=case.lock)
        bob = GoOffCall(conns[1], case.level, delays, "Bob", lock=case.lock)
        return alice, bob

    async def observe(self, conn: AsyncConnection, outcomes: List[ActorOutcome]) -> WriteSkewResult:
        async with conn.cursor() as cursor:
            await cursor.execute(
                "select count(*) as on_call from doctors where on_call = true and shift_id = %s;",
                (SHIFT_ID,),
            )
            row = await cursor.fetchone()

        return WriteSkewResult(on_call=row["on_call"], serialization_error=serialization_error(outcomes))

    def check(self, case: WriteSkewCase, result: WriteSkewResult) -> List[str]:
        mismatches = []
        if result.on_call != case.expected_on_call:
            mismatches.append(f"{result.on_call} doctors on call, expected {case.expected_on_call}")
        if result.serialization_error != case.serialization_error:
            mismatches.append(f"serialization error {result.serialization_error}, expected {case.serialization_error}")
        return mismatches


registry.register("write-skew", WriteSkew(), description="""
Alice and Bob are both on call for shift 1234 and both ask to go off call at the same time.
A doctor may only leave while at least two doctors are on call, so exactly one of them should remain.
The rule is checked by the transactions themselves, there is no constraint in the database.
`read committed` and `repeatable read` let both leave. `serializable` aborts one of them.
Locking the rows with `for update` fixes `read committed` (the second select waits and sees one doctor)
and makes `repeatable read` fail with a serialization error.

┌───────┐               ┌─────┐                     ┌────┐
│ Alice │               │ Bob │                     │ DB │
└───┬───┘               └──┬──┘                     └──┬─┘
    │                      │                           │
    ├──────count on call (for update)─────────────────►│  2
    │                      │                           │
    │                      ├──count on call───────────►│  2, or waits for Alice when locking
    │                      │                           │
    ├──────update Alice off call──────────────────────►│
    │                      │                           │
    ├──────commit──────────┼──────────────────────────►│
    │                      │                           │
    │                      ├──update Bob off call─────►│  only if Bob saw 2 doctors
    │                      │                           │
    │                      ├──commit/rollback─────────►│
    │                      │                           │
""")
