"""Tests for the SQL command flow."""

import io
import logging
import threading
from unittest.mock import MagicMock, patch

import pytest

from berth import sql
from berth.config import BerthConfig
from berth.errors import LifecycleError, SqlClientError
from berth.types import PortBinding


class TtyStdin(io.StringIO):
    def isatty(self) -> bool:
        return True


class TestReadQuery:
    def test_argument_wins(self) -> None:
        assert sql.read_query("  SELECT 1  ", io.StringIO("SHOW TABLES")) == "SELECT 1"

    def test_piped_stdin(self) -> None:
        assert sql.read_query("", io.StringIO("SHOW TABLES\n")) == "SHOW TABLES"

    def test_terminal_means_interactive(self) -> None:
        assert sql.read_query(None, TtyStdin("ignored")) == ""


class TestSpecs:
    def test_server_spec(self) -> None:
        config = BerthConfig(sql_server_env={"B": "2", "A": "1"})
        spec = sql.sql_server_spec(config)

        assert spec.image == "srcd/gitbase:v0.24.0"
        assert spec.environment == (("A", "1"), ("B", "2"))
        assert spec.ports == (PortBinding(private=3306, public=-1),)

    def test_client_spec_interactive(self) -> None:
        spec = sql.mysql_client_spec(BerthConfig())

        assert spec.image == "srcd/cli-mysql:8.0.16"
        assert spec.command == ("mysql", "-h", "srcd-cli-gitbase")

    def test_client_spec_query(self) -> None:
        spec = sql.mysql_client_spec(BerthConfig(), "SELECT 1")
        assert spec.command == ("mysql", "-h", "srcd-cli-gitbase", "-e", "SELECT 1")


class TestLogAfterTimeout:
    def test_logs_when_slow(self) -> None:
        logged = threading.Event()

        with patch.object(sql.logger, "info", side_effect=lambda msg: logged.set()):
            cancel = sql.log_after_timeout("still working", seconds=0.01)
            assert logged.wait(timeout=2)
            cancel()

    def test_cancelled_before_timeout(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.INFO, logger="berth.sql"):
            cancel = sql.log_after_timeout("still working", seconds=5)
            cancel()
        assert "still working" not in caplog.text


class TestStartSqlServer:
    def test_installs_and_starts(self, handle, fake_api) -> None:
        record = sql.start_sql_server(handle, BerthConfig())

        assert record.name == "srcd-cli-gitbase"
        assert record.is_running
        assert "pull:srcd/gitbase:v0.24.0" in fake_api.calls

    def test_running_server_reused(self, handle, fake_api) -> None:
        first = sql.start_sql_server(handle, BerthConfig())
        fake_api.calls.clear()

        second = sql.start_sql_server(handle, BerthConfig())

        assert second.id == first.id
        assert fake_api.calls == []

    def test_pull_failure(self, handle, fake_api, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(fake_api, "pull", lambda *a, **kw: iter([{"error": "denied"}]))
        with pytest.raises(LifecycleError, match="denied"):
            sql.start_sql_server(handle, BerthConfig())


class TestRunSql:
    @pytest.fixture
    def session(self) -> MagicMock:
        session = MagicMock()
        session.wait.return_value = 0
        return session

    @pytest.fixture
    def flow(self, session):
        with (
            patch.object(sql, "start_sql_server") as start,
            patch.object(sql, "wait_for_sql_server") as wait,
            patch.object(sql.images, "ensure_installed") as install,
            patch.object(sql, "attach", return_value=session) as attach,
            patch.object(sql, "drain_output") as drain,
            patch.object(sql, "attach_stdio") as stdio,
        ):
            yield MagicMock(
                start=start, wait=wait, install=install, attach=attach, drain=drain, stdio=stdio
            )

    def test_query(self, handle, flow, session) -> None:
        sql.run_sql(handle, "SELECT 1", BerthConfig())

        flow.start.assert_called_once()
        flow.wait.assert_called_once()
        flow.install.assert_called_once_with(
            handle, "srcd/cli-mysql", "8.0.16", timeout=600.0
        )
        spec = flow.attach.call_args[0][1]
        assert spec.command[-2:] == ("-e", "SELECT 1")
        flow.drain.assert_called_once()
        flow.stdio.assert_not_called()
        session.close.assert_called_once()
        session.remove.assert_called_once()

    def test_query_failure(self, handle, flow, session) -> None:
        session.wait.return_value = 1

        with pytest.raises(SqlClientError) as exc_info:
            sql.run_sql(handle, "SELEC 1", BerthConfig())

        assert exc_info.value.exit_code == 1
        session.remove.assert_called_once()

    def test_interactive(self, handle, flow, session) -> None:
        sql.run_sql(handle, "", BerthConfig())

        flow.stdio.assert_called_once()
        flow.drain.assert_not_called()
        session.close.assert_called_once()
        session.remove.assert_called_once()
