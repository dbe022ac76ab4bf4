from typer.testing import CliRunner

from client.cli import app as client_app
from server.server import app as server_app

runner = CliRunner()


def test_client_exits_on_malformed_config(tmp_path):
    config = tmp_path / "client.yaml"
    config.write_text("local_port: [1\n")

    result = runner.invoke(client_app, ["--config", str(config)])

    assert result.exit_code == 1


def test_server_exits_on_bad_config_value(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("ws_port: 8080\ntcp_port: not-a-port\n")

    result = runner.invoke(server_app, ["--config", str(config), "--no-ip-report"])

    assert result.exit_code == 1
