"""Tests for manifest loading and session configuration."""

import os

import pytest

from livebuild.errors import ConfigError
from livebuild.manifest import DevConfig, Manifest, load_json, substitute

PACKAGE_JSON = """{
    // project manifest
    "name": "demo",
    "main": "src/index.ts",
    "homepage": "http://example.com/demo",
    /* build tool section */
    "x4build": {
        "postBuild": "cp -ra ${srcdir}/assets/* ${outdir}",
        "preBuild": ["echo one", "echo two",],
        "external": ["better-sqlite3"],
        "publicPath": "public/path",
        "override": {"treeShaking": true},
    },
}
"""


def write_project(root, package=PACKAGE_JSON, tsconfig=None):
    (root / "package.json").write_text(package)
    if tsconfig is not None:
        (root / "tsconfig.json").write_text(tsconfig)


def test_load_json_strips_comments_and_trailing_commas(tmp_path):
    write_project(tmp_path)
    data = load_json(str(tmp_path / "package.json"))

    assert data["main"] == "src/index.ts"
    assert data["homepage"] == "http://example.com/demo"
    assert data["x4build"]["preBuild"] == ["echo one", "echo two"]


def test_load_json_errors(tmp_path):
    with pytest.raises(ConfigError):
        load_json(str(tmp_path / "missing.json"))

    (tmp_path / "bad.json").write_text("{ nope")
    with pytest.raises(ConfigError):
        load_json(str(tmp_path / "bad.json"))


def test_manifest_load(tmp_path):
    write_project(tmp_path, tsconfig='{"compilerOptions": {"outDir": "../dist", }}')
    manifest = Manifest.load(str(tmp_path))

    assert manifest.entry == str(tmp_path / "src" / "index.ts")
    assert manifest.outdir == os.path.abspath(tmp_path / ".." / "dist")
    assert manifest.post_build == ["cp -ra ${srcdir}/assets/* ${outdir}"]
    assert manifest.pre_build == ["echo one", "echo two"]
    assert manifest.external == ["better-sqlite3"]
    assert manifest.public_path == "public/path"
    assert manifest.override == {"treeShaking": True}


def test_manifest_defaults_outdir_to_bin(tmp_path):
    write_project(tmp_path, package='{"main": "index.js"}')
    manifest = Manifest.load(str(tmp_path))

    assert manifest.outdir == str(tmp_path / "bin")
    assert manifest.post_build == []


def test_manifest_requires_entry(tmp_path):
    write_project(tmp_path, package='{"name": "x"}')
    with pytest.raises(ConfigError):
        Manifest.load(str(tmp_path))


def test_substitute_placeholders():
    command = substitute("cp ${srcdir}/a ${ outdir }/b ${OUTDIR}", "/src", "/out")
    assert command == "cp /src/a /out/b /out"


class TestDevConfig:
    def test_monitor_and_hmr_imply_watch(self):
        assert DevConfig(mode="node", monitor="main.js").watch
        assert DevConfig(mode="html", hmr=True).watch
        assert not DevConfig(mode="html").watch

    def test_unknown_mode(self):
        with pytest.raises(ConfigError):
            DevConfig(mode="java")

    def test_serving_is_html_only(self):
        assert DevConfig(mode="html", serve=True).serves_files
        assert not DevConfig(mode="electron", serve=True).serves_files
        assert not DevConfig(mode="node", serve=True).serves_files

    def test_live_reload_modes(self):
        assert DevConfig(mode="electron", hmr=True).live_reload
        assert not DevConfig(mode="node", hmr=True).live_reload

    def test_monitor_path_is_under_outdir(self, tmp_path):
        manifest = Manifest(entry="x", outdir=str(tmp_path / "bin"))
        config = DevConfig(mode="node", monitor="main.js", manifest=manifest)

        assert config.monitor_path == str(tmp_path / "bin" / "main.js")
        assert config.supervises_process
