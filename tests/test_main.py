import pytest

from freedompro_local import __main__ as cli
from freedompro_local.cloud import DEFAULT_BASE_URL


def test_parser_defaults(monkeypatch):
    monkeypatch.setenv("FREEDOMPRO_API_KEY", "from-env")
    args = cli.build_parser().parse_args([])
    assert args.api_key == "from-env"
    assert args.base_url == DEFAULT_BASE_URL
    assert args.port == cli.DEFAULT_PORT == 4408
    assert args.accessory_poll_interval == 60
    assert args.global_poll_interval == 5
    assert args.no_mdns is False


def test_command_line_overrides_environment(monkeypatch):
    monkeypatch.setenv("FREEDOMPRO_API_KEY", "from-env")
    args = cli.build_parser().parse_args(["--api-key", "explicit", "--global-poll-interval", "10"])
    assert args.api_key == "explicit"
    assert args.global_poll_interval == 10.0


def test_missing_api_key_exits(monkeypatch):
    monkeypatch.delenv("FREEDOMPRO_API_KEY", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        cli.main([])
    assert excinfo.value.code == 2


def test_uvicorn_log_config_follows_mode():
    args = cli.build_parser().parse_args(["--api-key", "k", "--syslog", "/dev/log"])
    config = cli.build_uvicorn_log_config(args)
    assert config["loggers"]["uvicorn"]["propagate"] is True

    args = cli.build_parser().parse_args(["--api-key", "k"])
    config = cli.build_uvicorn_log_config(args)
    assert config["loggers"]["uvicorn"]["handlers"] == ["default"]
