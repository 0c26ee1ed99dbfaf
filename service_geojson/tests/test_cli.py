"""
Unit tests for the command line interface.
"""

import json

import pytest
from unittest.mock import patch

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_geojson.app import cli
from service_geojson.app.osm.client import OsmApiClient
from shared.errors import UpstreamUnavailableError
from shared.test_helpers import FakeOsmClient, RelationFactory, square


@pytest.fixture
def fake_client():
    factory = RelationFactory()
    return FakeOsmClient([
        factory.area(1, {"name": "Root"}, children=[2, 3]),
        factory.area(2, {"name": "A", "admin_level": "8"}, outer=[square(0, 0)]),
        factory.area(3, {"name": "B", "admin_level": "8"}, outer=[square(2, 0)]),
    ])


@pytest.fixture(autouse=True)
def upstream(fake_client):
    with patch.object(OsmApiClient, "from_context", return_value=fake_client) as mock_from_context:
        yield mock_from_context


class TestSubareaCommand:
    """Test cases for the subarea command."""

    def test_writes_artifact_and_prints_path(self, tmp_path, capsys):
        out = tmp_path / "geo"
        assert cli.main(["--out", str(out), "subarea", "1"]) == 0

        printed = capsys.readouterr().out.strip()
        assert printed == os.path.join(str(out), "1.geojson")
        assert len(json.loads((out / "1.geojson").read_bytes())["features"]) == 2

    def test_flags_select_variant(self, tmp_path, capsys):
        assert cli.main(["-o", str(tmp_path), "subarea", "-r", "-s", "r1"]) == 0
        assert capsys.readouterr().out.strip().endswith("1-raw-separated.geojson")

    def test_existing_artifact_is_reused(self, tmp_path, capsys, fake_client):
        cli.main(["--out", str(tmp_path), "subarea", "1"])
        fake_client.calls.clear()

        assert cli.main(["--out", str(tmp_path), "subarea", "1"]) == 0
        assert fake_client.calls == []

        assert cli.main(["--out", str(tmp_path), "subarea", "--force", "1"]) == 0
        assert 1 in fake_client.calls

    def test_print_mode_writes_to_stdout(self, tmp_path, capsys, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert cli.main(["--out", "", "subarea", "1"]) == 0

        data = json.loads(capsys.readouterr().out)
        assert [f["id"] for f in data["features"]] == ["relation/2", "relation/3"]
        assert os.listdir(tmp_path) == []

    def test_invalid_relation(self, tmp_path, capsys):
        assert cli.main(["--out", str(tmp_path), "subarea", "banana"]) == 1
        assert "INVALID_INPUT" in capsys.readouterr().err

    def test_invalid_depth(self, tmp_path, capsys):
        assert cli.main(["--out", str(tmp_path), "subarea", "--depth", "-1", "1"]) == 1
        assert "max_depth" in capsys.readouterr().err

    def test_unknown_relation(self, tmp_path, capsys):
        assert cli.main(["--out", str(tmp_path), "subarea", "99"]) == 1
        err = capsys.readouterr().err
        assert "NOT_FOUND" in err
        assert not (tmp_path / "99.geojson").exists()

    def test_upstream_unavailable(self, tmp_path, capsys, fake_client):
        fake_client.errors[1] = UpstreamUnavailableError(1, "failed after 3 attempts")
        assert cli.main(["--out", str(tmp_path), "subarea", "1"]) == 1
        assert "UPSTREAM_UNAVAILABLE" in capsys.readouterr().err

    def test_keyboard_interrupt(self, tmp_path):
        with patch("service_geojson.app.cli.asyncio.run", side_effect=KeyboardInterrupt):
            assert cli.main(["--out", str(tmp_path), "subarea", "1"]) == 130

    def test_subcommand_required(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 2


class TestServeCommand:
    """Test cases for the serve command."""

    @patch("service_geojson.app.main.GeoJSONService")
    def test_serve_passes_options(self, mock_service, tmp_path):
        out = tmp_path / "served"
        code = cli.main([
            "--out", str(out), "serve",
            "--address", "0.0.0.0:9000",
            "--origin", "https://maps.example.org",
            "--rate", "2",
            "--rate-burst", "4",
            "--rate-ttl", "30s",
            "--prefix", "files",
            "--resolve-on-miss",
        ])

        assert code == 0
        config = mock_service.call_args[0][0]
        assert config.bind_address() == ("0.0.0.0", 9000)
        assert config.origin == "https://maps.example.org"
        assert (config.rate, config.rate_burst, config.rate_ttl) == (2.0, 4, 30.0)
        assert config.prefix == "/files"
        assert config.resolve_on_miss is True
        assert out.is_dir()
        mock_service.return_value.run.assert_called_once()

    @patch("service_geojson.app.main.GeoJSONService")
    def test_serve_defaults(self, mock_service, tmp_path):
        assert cli.main(["--out", str(tmp_path), "serve"]) == 0
        config = mock_service.call_args[0][0]
        assert config.address == "127.0.0.1:8181"
        assert config.rate_ttl == 120.0
        assert config.resolve_on_miss is False

    def test_serve_needs_directory(self, capsys):
        assert cli.main(["--out", "", "serve"]) == 1
        assert "output directory" in capsys.readouterr().err
