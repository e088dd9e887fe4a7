import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from os import environ
from typing import Any, Dict, List, Sequence, Tuple

import psycopg
from psycopg import AsyncConnection, AsyncCursor, IsolationLevel

import db


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delays:
    """Injected pauses that force the interleaving of concurrent transactions.

    Every pause is multiplied by `scale`, so slow machines can stretch the
    timeline without touching the scenarios. `Delays(scale=0)` never waits.
    """

    scale: float = 1.0

    def __post_init__(self):
        if self.scale < 0:
            raise ValueError(f"Delay scale must not be negative, got {self.scale}")

    async def __call__(self, milliseconds: float) -> None:
        if self.scale and milliseconds > 0:
            await asyncio.sleep(milliseconds * self.scale / 1000)

    @classmethod
    def from_env(cls) -> "Delays":
        value = environ.get("ANOMALY_DELAY_SCALE")
        if not value:
            return cls()

        try:
            return cls(scale=float(value))
        except ValueError:
            raise ValueError(f"Invalid ANOMALY_DELAY_SCALE {value!r}") from None


@dataclass(frozen=True)
class ActorOutcome:
    actor: str
    sqlstate: str | None = None
    value: Any = None

    @property
    def serialization_failure(self) -> bool:
        return self.sqlstate == db.SERIALIZATION_FAILURE


def serialization_error(outcomes: Sequence[ActorOutcome]) -> bool:
    return any(outcome.serialization_failure for outcome in outcomes)


class ConcurrentTransactionExample(ABC):
    """One of the two actors of a scenario, owning its own connection."""

    conn: AsyncConnection
    name: str
    _isolation_level: IsolationLevel | None
    _delays: Delays

    _global_printer_count: int = 0

    def __init__(self, conn: AsyncConnection, level: IsolationLevel | None, delays: Delays, name: str | None = None):
        self.conn = conn
        self.name = name or self.__class__.__name__
        self._isolation_level = level
        self._delays = delays

    async def __call__(self) -> ActorOutcome:
        self.print_text("BEGIN")
        async with self.conn.cursor() as cursor:
            try:
                value = await self.run(cursor)
            except Exception as exc:
                self.print_text("ERROR", str(exc))
                # the open transaction may hold row locks the other actor is waiting on
                await self._rollback(cursor)
                if not db.is_serialization_failure(exc):
                    raise
                return ActorOutcome(self.name, exc.sqlstate)

        self.print_text("END")
        return ActorOutcome(self.name, value=value)

    async def _rollback(self, cursor: AsyncCursor) -> None:
        try:
            await db.rollback(cursor, self._isolation_level)
        except psycopg.Error as exc:
            logger.warning("%s could not roll back, closing its connection: %s", self.name, exc)
            await self.conn.close()
            return
        if self._isolation_level is not None:
            self.print_text("ROLLBACK")

    @abstractmethod
    async def run(self, cursor: AsyncCursor) -> Any:
        ...

    async def begin_transaction_with_isolation_level(self, cursor: AsyncCursor):
        await db.begin(cursor, self._isolation_level)

    async def commit(self, cursor: AsyncCursor):
        await db.commit(cursor, self._isolation_level)
        if self._isolation_level is not None:
            self.print_text("COMMIT")

    async def pause(self, milliseconds: float):
        await self._delays(milliseconds)

    # printing helpers

    def print_text(self, query: str, text: str | None = None) -> None:
        ConcurrentTransactionExample._global_printer_count += 1
        logger.info("[%02d:%s]: %s", ConcurrentTransactionExample._global_printer_count, self.name, query)
        if text:
            logger.info("%s\n", text)

    def print_query_result(self, query: str, records: List[Dict]) -> None:
        ConcurrentTransactionExample._global_printer_count += 1
        logger.info("[%02d:%s]: %s", ConcurrentTransactionExample._global_printer_count, self.name, query)
        logger.info("%s\n", format_table(records))


async def run_concurrently(*actors: ConcurrentTransactionExample) -> List[ActorOutcome]:
    """Run the actors as concurrent tasks and wait for every one of them.

    Unexpected errors are raised together once all actors have finished, so a
    failing actor never cuts the other one short.
    """
    results = await asyncio.gather(*(actor() for actor in actors), return_exceptions=True)

    errors = [result for result in results if isinstance(result, BaseException)]
    if errors:
        raise BaseExceptionGroup("unexpected errors in concurrent transactions", errors)

    return list(results)


class Scenario(ABC):
    """An anomaly demonstrated by two concurrent actors over a table of cases."""

    cases: Tuple[Any, ...] = ()

    @abstractmethod
    async def reset_fixtures(self, conn: AsyncConnection) -> None:
        ...

    @abstractmethod
    def actors(
        self,
        conns: Tuple[AsyncConnection, AsyncConnection],
        case: Any,
        delays: Delays,
    ) -> Tuple[ConcurrentTransactionExample, ConcurrentTransactionExample]:
        ...

    @abstractmethod
    async def observe(self, conn: AsyncConnection, outcomes: List[ActorOutcome]) -> Any:
        ...

    @abstractmethod
    def check(self, case: Any, result: Any) -> List[str]:
        """Mismatches between the expected and the observed result."""

    async def run_case(self, conninfo: str, case: Any, delays: Delays) -> Any:
        async with await db.connect(conninfo) as conn:
            await self.reset_fixtures(conn)

        async with (await db.connect(conninfo) as c1, await db.connect(conninfo) as c2):
            outcomes = await run_concurrently(*self.actors((c1, c2), case, delays))

        async with await db.connect(conninfo) as conn:
            return await self.observe(conn, outcomes)

    def select_cases(self, level: str | None = None, lock: bool | None = None) -> List[Any]:
        selected = []
        for case in self.cases:
            if level is not None and case.level != db.parse_isolation(level):
                continue
            if lock is not None and getattr(case, "lock", False) != lock:
                continue
            selected.append(case)
        return selected


MIN_COLUMN_WIDTH = 12


def format_table(records: List[Dict]) -> str:
    """Right-aligned columns named after the keys of the first record, widened to fit every value."""
    if not records:
        return "EMPTY"

    columns = list(records[0].keys())
    rows = [["NULL" if record.get(c) is None else str(record.get(c)) for c in columns] for record in records]
    widths = [
        max(MIN_COLUMN_WIDTH, len(column), *(len(row[i]) for row in rows))
        for i, column in enumerate(columns)
    ]

    lines = [columns] + rows
    return "\n".join(
        "|" + "|".join(value.rjust(width) for value, width in zip(line, widths)) + "|"
        for line in lines
    )
