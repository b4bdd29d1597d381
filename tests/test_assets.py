import os

import pytest

from minerweb.assets import AssetResolver


@pytest.fixture
def root(tmp_path):
    assets = tmp_path / "assets"
    (assets / "css").mkdir(parents=True)
    (assets / "css" / "style.css").write_text("body {}", encoding="utf-8")
    (assets / "logo.png").write_bytes(b"\x89PNG")
    (assets / "blob").write_bytes(b"\x00\x01")
    (tmp_path / "secret.txt").write_text("top secret", encoding="utf-8")
    return assets


def test_resolves_file_with_media_type(root):
    asset = AssetResolver(str(root)).resolve("css/style.css")

    assert asset.data == b"body {}"
    assert asset.media_type == "text/css"


def test_unknown_extension_is_octet_stream(root):
    asset = AssetResolver(str(root)).resolve("blob")
    assert asset.media_type == "application/octet-stream"


def test_missing_file_and_directory_resolve_to_none(root):
    resolver = AssetResolver(str(root))

    assert resolver.resolve("css/missing.css") is None
    assert resolver.resolve("css") is None
    assert resolver.resolve("") is None


@pytest.mark.parametrize("path", [
    "../secret.txt",
    "../../etc/passwd",
    "css/../../secret.txt",
    "..\\secret.txt",
    "/../secret.txt",
    "css/style.css\x00.png",
])
def test_traversal_attempts_resolve_to_none(root, path):
    assert AssetResolver(str(root)).resolve(path) is None


def test_symlink_out_of_root_is_rejected(root):
    link = root / "escape.txt"
    try:
        os.symlink(root.parent / "secret.txt", link)
    except (OSError, NotImplementedError):
        pytest.skip("symlinks not supported")

    assert AssetResolver(str(root)).resolve("escape.txt") is None


def test_leading_slash_stays_inside_root(root):
    asset = AssetResolver(str(root)).resolve("/css/style.css")
    assert asset.data == b"body {}"
