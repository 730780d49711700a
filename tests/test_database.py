"""Tests for the submissions table."""

from __future__ import annotations

import json

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from betslip.database import DatabaseInsertError, SubmissionTable, create_tables
from betslip.submissions import is_duplicate_error
from tests.fakes import make_entry


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'submissions.sqlite'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def table(engine) -> SubmissionTable:
    return SubmissionTable(engine)


async def _fetch_row(engine: AsyncEngine, submission_id: int) -> dict | None:
    async with engine.connect() as conn:
        result = await conn.execute(
            text("SELECT * FROM betting_submissions WHERE id = :id"),
            {"id": submission_id},
        )
        row = result.mappings().first()
    return dict(row) if row is not None else None


class TestSubmissionTable:
    @pytest.mark.asyncio
    async def test_insert_stores_row(self, engine, table) -> None:
        submission_id = await table.insert(make_entry(), "https://cdn.example.com/a.webp")

        record = await _fetch_row(engine, submission_id)

        assert record["name"] == "Alex"
        assert record["email"] == "alex@uni.example"
        assert json.loads(record["sports"]) == ["football", "tennis"]
        assert json.loads(record["teams"]) == ["Arsenal", "Carlos Alcaraz"]
        assert record["payment_confirmation_url"] == "https://cdn.example.com/a.webp"
        assert record["created_at"] is not None

    @pytest.mark.asyncio
    async def test_duplicate_email_is_rejected(self, engine, table) -> None:
        first = await table.insert(make_entry(), "https://cdn.example.com/a.webp")

        with pytest.raises(DatabaseInsertError) as exc_info:
            await table.insert(make_entry(), "https://cdn.example.com/b.webp")

        assert is_duplicate_error(str(exc_info.value))
        assert await _fetch_row(engine, first + 1) is None

    @pytest.mark.asyncio
    async def test_distinct_emails(self, table) -> None:
        first = await table.insert(make_entry("a@uni.example"), "https://cdn.example.com/a.webp")
        second = await table.insert(make_entry("b@uni.example"), "https://cdn.example.com/b.webp")

        assert first != second

    @pytest.mark.asyncio
    async def test_create_tables_is_idempotent(self, engine) -> None:
        await create_tables(engine)
