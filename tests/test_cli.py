import pytest
from conftest import PAGE_URL, FakePersister, FakeTransport, html

from page_archiver import cli
from page_archiver.errors import ConfigError
from page_archiver.job import ArchiveServices
from page_archiver.transport import FetchResult


@pytest.fixture
def fake_services(monkeypatch):
    page = html('<img src="b.png">')
    transport = FakeTransport(
        {
            PAGE_URL: FetchResult(page.encode(), "text/html", "utf-8", PAGE_URL),
            "http://example.com/a/b.png": FetchResult(b"PNG", "image/png"),
        }
    )
    services = ArchiveServices(transport, FakePersister({"http://example.com/a/b.png": b"PNG"}))
    monkeypatch.setattr(ArchiveServices, "default", classmethod(lambda cls, settings=None: services))
    return services


def test_parse_args_defaults():
    args = cli.parse_args([PAGE_URL])
    assert args.output_file is None
    assert args.concurrency == 4
    assert not args.save_iframes and not args.rewrite_links


def test_config_file_supplies_defaults(tmp_path):
    cfg = tmp_path / "c.yaml"
    cfg.write_text("archive:\n  save_iframes: true\n  concurrency: 2\ntransport:\n  timeout: 5\n")
    args = cli.parse_args(["--config", str(cfg), PAGE_URL, "--concurrency", "3"])
    assert args.save_iframes
    assert args.timeout == 5
    # the command line wins over the file
    assert args.concurrency == 3


def test_config_file_unknown_key(tmp_path):
    cfg = tmp_path / "c.toml"
    cfg.write_text("[archive]\nsave_everything = true\n")
    with pytest.raises(ConfigError, match="save_everything"):
        cli.parse_args(["--config", str(cfg), PAGE_URL])


def test_main_rejects_non_http(capsys):
    assert cli.main(["ftp://example.com/x"]) == 1
    assert "Invalid URL" in capsys.readouterr().out


def test_main_archives_page(tmp_path, fake_services, capsys):
    out = tmp_path / "saved.html"
    assert cli.main([PAGE_URL, str(out)]) == 0
    assert 'src="saved_files/b.png"' in out.read_text()
    assert (tmp_path / "saved_files" / "b.png").read_bytes() == b"PNG"
    assert f"Archive success: {out}" in capsys.readouterr().out


def test_main_reports_errors(tmp_path, fake_services, capsys):
    del fake_services.persister.bodies["http://example.com/a/b.png"]
    assert cli.main([PAGE_URL, str(tmp_path / "saved.html")]) == 1
    printed = capsys.readouterr().out
    assert "Archive failure" in printed
    assert "Error persisting URI: http://example.com/a/b.png" in printed


def test_main_refuses_non_html(tmp_path, fake_services, capsys):
    fake_services.transport.responses[PAGE_URL] = FetchResult(b"PNG", "image/png", None, PAGE_URL)
    assert cli.main([PAGE_URL, str(tmp_path / "x.html")]) == 1
    assert "Only HTML documents" in capsys.readouterr().out


def test_main_reports_clobbering_data_folder(tmp_path, fake_services, monkeypatch, capsys):
    monkeypatch.setattr(cli, "data_folder_for", lambda output: output.parent)
    assert cli.main([PAGE_URL, str(tmp_path / "saved.html")]) == 1
    assert "Critical error: data folder" in capsys.readouterr().out
