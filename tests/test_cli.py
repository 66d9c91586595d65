from dyntools import cli


def test_cli_parser_defaults():
    parser = cli.build_parser()
    args = parser.parse_args(["serve", "--catalog", "c.yaml", "--mode", "dynamic", "--ttl-s", "60"])
    assert args.command == "serve"
    assert args.catalog == "c.yaml"
    assert args.mode == "DYNAMIC"
    assert args.ttl_s == 60.0
    assert args.max_clients == 1000
    assert args.prune_interval_s == 600.0


def test_cli_without_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "serve" in capsys.readouterr().out


def test_cli_serve_builds_app(monkeypatch, tmp_path):
    captured = {}

    def fake_create_app(**kwargs):
        captured.update(kwargs)
        return "app"

    def fake_run(app, host, port, reload):
        captured["run"] = (app, host, port)

    import dyntools.mcp_server as server

    monkeypatch.setattr(server, "create_app", fake_create_app)
    monkeypatch.setattr(cli.uvicorn, "run", fake_run)
    # recorded so the value main() sets is removed again after the test
    monkeypatch.setenv("DYNTOOLS_LOG_DIR", "unused")
    monkeypatch.delenv("DYNTOOLS_LOG_DIR")
    log_dir = tmp_path / "logs"
    code = cli.main(
        ["serve", "--catalog", "c.yaml", "--port", "9001", "--max-clients", "5", "--ttl-s", "0", "--log-dir", str(log_dir)]
    )
    assert code == 0
    assert captured["run"] == ("app", "0.0.0.0", 9001)
    assert captured["catalog_path"] == "c.yaml"
    assert captured["cache_config"].max_size == 5
    assert captured["cache_config"].ttl_ms == 0
    assert log_dir.exists()
