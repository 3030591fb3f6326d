"""Tests for the controller entry point."""

from unittest.mock import MagicMock, patch

import pytest

from pki_controller.lib.errors import ConfigurationError
from pki_controller.scripts import run_controller


@pytest.fixture
def bao_env(monkeypatch) -> None:
    monkeypatch.setenv("BAO_ADDR", "http://bao.test:8200")
    monkeypatch.delenv("BAO_TOKEN", raising=False)
    monkeypatch.delenv("PKI_CONTROLLER_CONCURRENCY", raising=False)


class TestMain:
    """Tests for run_controller.main."""

    def test_missing_bao_addr_exits_nonzero(self, monkeypatch) -> None:
        """Startup fails with exit code 1 when BAO_ADDR is not set."""
        monkeypatch.delenv("BAO_ADDR", raising=False)
        assert run_controller.main([]) == 1

    @patch("pki_controller.scripts.run_controller.load_kube_config")
    def test_kube_config_failure_exits_nonzero(self, mock_load, bao_env) -> None:
        """Missing cluster configuration is a startup failure."""
        mock_load.side_effect = ConfigurationError("unable to load kubernetes configuration")
        assert run_controller.main([]) == 1

    @patch("pki_controller.scripts.run_controller.signal.signal")
    @patch("pki_controller.scripts.run_controller.build_controller")
    @patch("pki_controller.scripts.run_controller.load_kube_config")
    def test_runs_controller_until_stopped(
        self, mock_load, mock_build, mock_signal, bao_env
    ) -> None:
        """The controller runs with the CLI concurrency and signal handlers installed."""
        controller = MagicMock()
        mock_build.return_value = controller

        assert run_controller.main(["--concurrency", "3", "--log-level", "INFO"]) == 0

        config = mock_build.call_args.args[0]
        assert config.concurrency == 3
        assert config.bao_addr == "http://bao.test:8200"
        controller.run.assert_called_once_with()
        assert mock_signal.call_count == 2

        handler = mock_signal.call_args.args[1]
        handler(15, None)
        controller.stop.assert_called_once()

    def test_invalid_concurrency_flag(self, bao_env) -> None:
        """A non-positive --concurrency fails startup."""
        assert run_controller.main(["--concurrency", "0"]) == 1
