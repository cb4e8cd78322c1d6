import asyncio
import json

import pytest
from typer.testing import CliRunner

from cacheflow.cli import app
from cacheflow.core.models import Location, Outcome
from cacheflow.core.recorder import MetricsRecorder
from cacheflow.core.repository import SQLiteMetricsRepository

runner = CliRunner()


@pytest.fixture
def populated_db(sqlite_db, clock):
    async def seed():
        repository = SQLiteMetricsRepository(sqlite_db)
        await repository.open()
        recorder = MetricsRecorder(repository, clock=clock)
        await recorder.reset()
        await recorder.observe(
            Outcome.UNCACHED, "getUser", latency_ms=8.0, location=Location.LOCAL, value="abc"
        )
        await recorder.record_score("getUser", 1.25)
        await repository.close()

    asyncio.run(seed())
    return str(sqlite_db)


def test_resolver_json(populated_db):
    result = runner.invoke(app, ["resolver", "getUser", "--db", populated_db, "--json"])
    assert result.exit_code == 0, result.output
    doc = json.loads(result.output)
    assert doc["numberOfCalls"] == 1
    assert doc["dataSize"] == 6
    assert doc["cacheThreshold"] == 1.25


def test_resolver_global_alias(populated_db):
    result = runner.invoke(app, ["resolver", "global", "--db", populated_db, "--json"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["totalRequests"] == 1


def test_global_table(populated_db):
    result = runner.invoke(app, ["global", "--db", populated_db])
    assert result.exit_code == 0, result.output
    assert "totalRequests" in result.output


def test_keys_table(populated_db):
    result = runner.invoke(app, ["keys", "--db", populated_db])
    assert result.exit_code == 0, result.output
    assert "getUser" in result.output
    assert "1.250" in result.output


def test_unknown_key_exits_non_zero(populated_db):
    result = runner.invoke(app, ["resolver", "nope", "--db", populated_db])
    assert result.exit_code == 1
    assert "No metrics recorded" in result.output


def test_empty_database(sqlite_db):
    result = runner.invoke(app, ["global", "--db", str(sqlite_db)])
    assert result.exit_code == 1
    result = runner.invoke(app, ["keys", "--db", str(sqlite_db), "--json"])
    assert result.exit_code == 0
    assert json.loads(result.output) == {}
