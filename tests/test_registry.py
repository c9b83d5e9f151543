"""NpmRegistryClient tests (mocked httpx) and tarball unpacking."""

import base64
import hashlib
import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from svrx.exceptions import NoSuchVersion, RegistryNotFound, RegistryUnavailable
from svrx.package_manager.registry import NpmRegistryClient, _unpack_tarball

from conftest import TEST_PLUGIN_PATH, make_tarball, package_files

PACKUMENT_URL = "http://registry.invalid/svrx-plugin-hello"
TARBALL_URL = "http://registry.invalid/svrx-plugin-hello/-/svrx-plugin-hello-1.0.1.tgz"


def _json_response(data, status: int = 200):
    mock_resp = MagicMock()
    mock_resp.status_code = status
    mock_resp.raise_for_status = MagicMock()
    mock_resp.json = MagicMock(return_value=data)
    return mock_resp


def _bytes_response(content: bytes):
    mock_resp = MagicMock()
    mock_resp.status_code = 200
    mock_resp.raise_for_status = MagicMock()
    mock_resp.content = content
    return mock_resp


def _mock_client(*responses, side_effect=None):
    mock_client = AsyncMock()
    mock_client.get = AsyncMock(side_effect=side_effect if side_effect is not None else list(responses))
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    return mock_client


def _packument(dist: dict = None) -> dict:
    return {
        "name": "svrx-plugin-hello",
        "dist-tags": {"latest": "1.0.1", "broken": 3},
        "versions": {
            "1.0.0": {"engines": {"svrx": ">=1.0.0"}},
            "1.0.1": {"svrx": "^1.0.0", "dist": dist or {"tarball": TARBALL_URL}},
            "nightly": {"engines": {"svrx": "*"}},
            "2.0.0": {},
        },
    }


# ─── Packument ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestFetchVersions:
    async def test_parses_versions_and_ranges(self, config):
        client = NpmRegistryClient(config)
        mock_client = _mock_client(_json_response(_packument()))

        with patch("httpx.AsyncClient", return_value=mock_client):
            entries = await client.fetch_versions("hello")

        ranges = {e.version: e.svrx_range for e in entries}
        assert ranges == {"1.0.0": ">=1.0.0", "1.0.1": "^1.0.0", "2.0.0": None}
        mock_client.get.assert_awaited_once_with(PACKUMENT_URL)

    async def test_404_is_not_found(self, config):
        client = NpmRegistryClient(config)
        mock_client = _mock_client(_json_response({"error": "Not found"}, status=404))

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RegistryNotFound, match="svrx-plugin-hello"):
                await client.fetch_versions("hello")

    async def test_unpublished_package_is_not_found(self, config):
        client = NpmRegistryClient(config)
        mock_client = _mock_client(_json_response({"name": "svrx-plugin-hello", "time": {"unpublished": {}}}))

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RegistryNotFound):
                await client.fetch_versions("hello")

    async def test_timeout_is_unavailable(self, config):
        client = NpmRegistryClient(config)
        mock_client = _mock_client(side_effect=httpx.TimeoutException("timed out"))

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RegistryUnavailable, match="timed out") as exc_info:
                await client.fetch_versions("hello")
        assert isinstance(exc_info.value.__cause__, httpx.TimeoutException)

    async def test_server_error_is_unavailable(self, config):
        client = NpmRegistryClient(config)
        resp = _json_response({})
        resp.status_code = 500
        resp.raise_for_status = MagicMock(side_effect=httpx.HTTPStatusError(
            "server error",
            request=httpx.Request("GET", PACKUMENT_URL),
            response=httpx.Response(500),
        ))
        mock_client = _mock_client(resp)

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RegistryUnavailable, match="HTTP 500"):
                await client.fetch_versions("hello")

    async def test_connection_error_is_unavailable(self, config):
        client = NpmRegistryClient(config)
        mock_client = _mock_client(side_effect=httpx.ConnectError("connection refused"))

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RegistryUnavailable, match="connection refused"):
                await client.fetch_versions("hello")

    async def test_bad_json_is_unavailable(self, config):
        client = NpmRegistryClient(config)
        resp = _json_response(None)
        resp.json = MagicMock(side_effect=json.JSONDecodeError("Expecting value", "<html>", 0))
        mock_client = _mock_client(resp)

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RegistryUnavailable, match="invalid JSON"):
                await client.fetch_versions("hello")

    async def test_non_object_document_is_unavailable(self, config):
        client = NpmRegistryClient(config)
        mock_client = _mock_client(_json_response(["not", "a", "packument"]))

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RegistryUnavailable):
                await client.fetch_versions("hello")


@pytest.mark.asyncio
class TestFetchTags:
    async def test_reads_dist_tags(self, config):
        client = NpmRegistryClient(config)
        mock_client = _mock_client(_json_response(_packument()))

        with patch("httpx.AsyncClient", return_value=mock_client):
            tags = await client.fetch_tags("hello")

        assert tags == {"latest": "1.0.1"}

    async def test_document_is_fetched_once(self, config):
        client = NpmRegistryClient(config)
        mock_client = _mock_client(_json_response(_packument()))

        with patch("httpx.AsyncClient", return_value=mock_client):
            await client.fetch_versions("hello")
            await client.fetch_tags("hello")

        assert mock_client.get.await_count == 1


# ─── Download ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
class TestDownload:
    async def test_unpacks_and_strips_top_level_dir(self, config, tmp_path):
        tarball = make_tarball(package_files("hello", "1.0.1", "^1.0.0"))
        integrity = "sha512-" + base64.b64encode(hashlib.sha512(tarball).digest()).decode()
        client = NpmRegistryClient(config)
        mock_client = _mock_client(
            _json_response(_packument({"tarball": TARBALL_URL, "integrity": integrity})),
            _bytes_response(tarball),
        )
        dest = tmp_path / "plugins" / "hello" / "1.0.1"

        with patch("httpx.AsyncClient", return_value=mock_client):
            result = await client.download("hello", "1.0.1", dest)

        assert result == dest
        assert json.loads((dest / "package.json").read_text())["version"] == "1.0.1"
        assert (dest / "index.js").is_file()
        assert not (dest / "package").exists()
        # No staging directories left behind
        assert [p.name for p in dest.parent.iterdir()] == ["1.0.1"]

    async def test_shasum_mismatch_is_unavailable(self, config, tmp_path):
        tarball = make_tarball(package_files("hello", "1.0.1", "^1.0.0"))
        client = NpmRegistryClient(config)
        mock_client = _mock_client(
            _json_response(_packument({"tarball": TARBALL_URL, "shasum": "0" * 40})),
            _bytes_response(tarball),
        )
        dest = tmp_path / "hello" / "1.0.1"

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RegistryUnavailable, match="checksum mismatch"):
                await client.download("hello", "1.0.1", dest)
        assert not dest.exists()

    async def test_corrupt_archive_is_unavailable(self, config, tmp_path):
        client = NpmRegistryClient(config)
        mock_client = _mock_client(
            _json_response(_packument()),
            _bytes_response(b"definitely not gzip"),
        )
        dest = tmp_path / "hello" / "1.0.1"

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(RegistryUnavailable, match="cannot unpack"):
                await client.download("hello", "1.0.1", dest)
        assert not dest.exists()
        assert list(dest.parent.iterdir()) == []

    async def test_unpublished_version(self, config, tmp_path):
        client = NpmRegistryClient(config)
        mock_client = _mock_client(_json_response(_packument()))

        with patch("httpx.AsyncClient", return_value=mock_client):
            with pytest.raises(NoSuchVersion, match="'9.9.9'"):
                await client.download("hello", "9.9.9", tmp_path / "9.9.9")

    async def test_existing_install_is_reused(self, config):
        client = NpmRegistryClient(config)
        mock_cls = MagicMock()

        with patch("httpx.AsyncClient", mock_cls):
            result = await client.download("test", "0.0.1", TEST_PLUGIN_PATH)

        assert result == TEST_PLUGIN_PATH
        mock_cls.assert_not_called()


# ─── _unpack_tarball ──────────────────────────────────────────────────────────


class TestUnpackTarball:
    def test_flat_archive_is_not_stripped(self, tmp_path):
        dest = tmp_path / "1.0.0"
        _unpack_tarball(make_tarball(package_files("hello", "1.0.0", None), top=""), dest, "hello")
        assert (dest / "package.json").is_file()

    def test_unsafe_members_are_skipped(self, tmp_path, caplog):
        caplog.set_level(logging.WARNING, logger="svrx")
        files = package_files("hello", "1.0.0", None)
        files["../evil.js"] = "alert(1)"
        dest = tmp_path / "plugins" / "1.0.0"

        _unpack_tarball(make_tarball(files), dest, "hello")

        assert (dest / "package.json").is_file()
        assert not (tmp_path / "plugins" / "evil.js").exists()
        assert not (dest / "evil.js").exists()
        assert "unsafe" in caplog.text

    def test_broken_destination_is_replaced(self, tmp_path):
        dest = tmp_path / "1.0.0"
        dest.mkdir()
        (dest / "leftover.js").write_text("")

        _unpack_tarball(make_tarball(package_files("hello", "1.0.0", None)), dest, "hello")

        assert (dest / "package.json").is_file()
        assert not (dest / "leftover.js").exists()

    def test_valid_destination_is_kept(self, tmp_path):
        dest = tmp_path / "1.0.0"
        dest.mkdir()
        (dest / "package.json").write_text(json.dumps({"name": "svrx-plugin-hello", "version": "1.0.0"}))

        _unpack_tarball(make_tarball(package_files("hello", "1.0.0", None)), dest, "hello")

        assert not (dest / "index.js").exists()
        assert [p.name for p in tmp_path.iterdir()] == ["1.0.0"]
