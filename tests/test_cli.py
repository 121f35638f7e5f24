"""Tests for the mongo-dlock command-line interface."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from bson import ObjectId

from conftest import FakeServerClock, frozen_clock_sync
from mongo_dlock import cli
from mongo_dlock.core.config import LockOptions, LockSvcOptions
from mongo_dlock.core.exceptions import StoreTransportError
from mongo_dlock.locks.service import LockService


class TestCLIArguments:
    """Test command-line argument parsing"""

    def test_setup_command(self) -> None:
        args = cli.parse_arguments(["--uri", "mongodb://db:27017", "--db", "scheduler", "setup"])
        assert args.command == "setup"
        assert args.uri == "mongodb://db:27017"
        assert args.db_name == "scheduler"
        assert args.collection_name is None

    def test_status_names_optional(self) -> None:
        assert cli.parse_arguments(["status"]).names == []
        assert cli.parse_arguments(["status", "a", "b"]).names == ["a", "b"]

    def test_release_requires_name_and_token(self) -> None:
        with pytest.raises(SystemExit):
            cli.parse_arguments(["release", "nightly-import"])

    def test_reap_options(self) -> None:
        args = cli.parse_arguments(["reap", "--once", "--interval", "2.5", "--batch-size", "10"])
        assert args.once is True
        assert args.interval == 2.5
        assert args.batch_size == 10

    def test_log_options(self) -> None:
        args = cli.parse_arguments(["--log-level", "DEBUG", "--log-format", "json", "setup"])
        assert args.log_level == "DEBUG"
        assert args.log_format == "json"

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            cli.parse_arguments([])

    def test_invalid_log_level_rejected(self) -> None:
        with pytest.raises(SystemExit):
            cli.parse_arguments(["--log-level", "LOUD", "setup"])


@pytest.fixture
def service(mongo_client, svc_options):
    lock_service = LockService(svc_options, client=mongo_client, clock_sync=frozen_clock_sync())
    lock_service.store.server_time = FakeServerClock()
    return lock_service


@pytest.fixture
def run_cli(service):
    def _run(*argv: str) -> int:
        with (
            patch.object(cli, "setup_logging"),
            patch.object(cli, "_build_service", return_value=service),
        ):
            return cli.main(list(argv))

    return _run


def test_main_setup_prints_created_indexes(run_cli, capsys) -> None:
    assert run_cli("setup") == cli.EXIT_OK
    assert len(json.loads(capsys.readouterr().out)["created_indexes"]) == 7


def test_main_status_lists_locks(run_cli, service, capsys) -> None:
    held = service.acquire("nightly-import")

    assert run_cli("status") == cli.EXIT_OK
    payload = json.loads(capsys.readouterr().out)
    assert payload[0]["name"] == "nightly-import"
    assert payload[0]["lock_token"] == str(held.token)


def test_main_status_unknown_name(run_cli, capsys) -> None:
    assert run_cli("status", "missing") == cli.EXIT_OK
    assert json.loads(capsys.readouterr().out) == [{"name": "missing", "state": None}]


def test_main_release_with_holder_token(run_cli, service, capsys) -> None:
    held = service.acquire("nightly-import")

    assert run_cli("release", "nightly-import", str(held.token)) == cli.EXIT_OK
    assert json.loads(capsys.readouterr().out)["status"] == "released"


def test_main_release_not_held(run_cli, service) -> None:
    service.acquire("nightly-import")

    assert run_cli("release", "nightly-import", str(ObjectId())) == cli.EXIT_NOT_HELD


def test_main_release_invalid_token(run_cli, capsys) -> None:
    assert run_cli("release", "nightly-import", "not-a-token") == cli.EXIT_CONFIG_ERROR
    assert "Configuration error" in capsys.readouterr().err


def test_main_reap_once(run_cli, service, capsys) -> None:
    service.acquire("stale-job", LockOptions(inactive_lock_timeout_ms=1_000, heartbeat_interval_ms=100))
    service.store.server_time.advance(seconds=2)

    assert run_cli("reap", "--once") == cli.EXIT_OK
    assert json.loads(capsys.readouterr().out) == {"reclaimed": ["stale-job"]}


def test_main_reports_store_errors(run_cli, service, monkeypatch) -> None:
    def unavailable():
        raise StoreTransportError("Lock store operation failed", operation="index_information")

    monkeypatch.setattr(service.store, "index_information", unavailable)

    assert run_cli("setup") == cli.EXIT_STORE_ERROR


def test_build_service_uses_cli_over_env(monkeypatch) -> None:
    monkeypatch.setenv("MONGO_DLOCK_DB", "from-env")
    monkeypatch.setenv("MONGO_DLOCK_COLLECTION", "env_locks")
    args = cli.parse_arguments(["--db", "from-cli", "setup"])

    with patch.object(cli, "LockService") as service_cls:
        cli._build_service(args)

    options: LockSvcOptions = service_cls.call_args.args[0]
    assert options.db_name == "from-cli"
    assert options.collection_name == "env_locks"
