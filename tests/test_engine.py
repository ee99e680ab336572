"""Tests for the engine gateway."""

from unittest.mock import MagicMock, patch

import pytest
from docker.errors import DockerException

from berth.engine import EngineHandle, api_version, connect, host_os, host_path
from berth.errors import EngineConnectionError, UnsupportedEngineError


def make_client(operating_system: str = "Docker Desktop", os_type: str = "linux") -> MagicMock:
    client = MagicMock()
    client.info.return_value = {"OperatingSystem": operating_system, "OSType": os_type}
    client.version.return_value = {"ApiVersion": "1.43"}
    client.api.api_version = "1.43"
    return client


class TestConnect:
    def test_returns_handle(self) -> None:
        client = make_client()
        with patch("berth.engine.docker.from_env", return_value=client) as from_env:
            handle = connect(timeout=30)

        from_env.assert_called_once_with(timeout=30)
        client.version.assert_called_once()
        assert handle.client is client
        assert handle.api is client.api

    def test_engine_not_running(self) -> None:
        with patch(
            "berth.engine.docker.from_env",
            side_effect=DockerException("Error while fetching server API version"),
        ):
            with pytest.raises(EngineConnectionError, match="could not create docker client"):
                connect()

    def test_info_failure(self) -> None:
        client = make_client()
        client.info.side_effect = DockerException("connection refused")
        with patch("berth.engine.docker.from_env", return_value=client):
            with pytest.raises(EngineConnectionError, match="information about docker server"):
                connect()

    def test_docker_toolbox_rejected(self) -> None:
        client = make_client(operating_system="Boot2Docker 18.09.0 (TCL 8.2.1)")
        with patch("berth.engine.docker.from_env", return_value=client):
            with pytest.raises(UnsupportedEngineError, match="Docker Toolbox is not supported"):
                connect()

        client.version.assert_not_called()

    def test_version_failure(self) -> None:
        client = make_client()
        client.version.side_effect = DockerException("client version 1.43 is too new")
        with patch("berth.engine.docker.from_env", return_value=client):
            with pytest.raises(EngineConnectionError, match="server version"):
                connect()


class TestHandleHelpers:
    def test_api_version(self) -> None:
        client = make_client()
        assert api_version(EngineHandle(client=client)) == "1.43"
        client.ping.assert_called_once()

    def test_api_version_ping_failure(self) -> None:
        client = make_client()
        client.ping.side_effect = DockerException("down")
        with pytest.raises(EngineConnectionError, match="could not ping docker"):
            api_version(EngineHandle(client=client))

    def test_host_os(self) -> None:
        assert host_os(EngineHandle(client=make_client(os_type="linux"))) == "linux"

    def test_host_path_linux_unchanged(self) -> None:
        handle = EngineHandle(client=make_client())
        assert host_path(handle, "/home/me/repos") == "/home/me/repos"

    def test_host_path_windows_drive(self) -> None:
        handle = EngineHandle(client=make_client("Docker for Windows", "windows"))
        assert host_path(handle, "C:/Users/me/repos") == "//c/Users/me/repos"
