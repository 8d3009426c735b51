"""PostgreSQL implementation of CreditNoteSequence."""

from asyncpg import Pool

from storefront.repositories import CreditNoteSequence


class PostgreSQLCreditNoteSequence(CreditNoteSequence):
    def __init__(self, pool: Pool):
        self.pool = pool

    async def next_value(self) -> int:
        async with self.pool.acquire() as conn:
            value = await conn.fetchval("SELECT nextval('credit_note_seq')")
        return int(value)
