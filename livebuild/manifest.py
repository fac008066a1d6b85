"""Project manifest and dev-session configuration."""

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

HTML = "html"
NODE = "node"
ELECTRON = "electron"
MODES = (HTML, NODE, ELECTRON)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9876
DEFAULT_OUTDIR = "./bin"

_COMMENTS = re.compile(r'("(?:\\.|[^"\\\n])*")|/\*.*?\*/|//[^\n]*', re.S)
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_OUTDIR = re.compile(r"\$\{\s*outdir\s*\}", re.I)
_SRCDIR = re.compile(r"\$\{\s*srcdir\s*\}", re.I)


def load_json(fname: str) -> Any:
    """Read a JSON file that may contain comments and trailing commas."""
    try:
        with open(fname, "r", encoding="utf-8") as f:
            raw = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read {fname}: {e}") from e

    raw = _COMMENTS.sub(lambda m: m.group(1) or "", raw)
    raw = _TRAILING_COMMA.sub(r"\1", raw)
    try:
        return json.loads(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid JSON in {fname}: {e}") from e


def as_list(value) -> List:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def substitute(command: str, srcdir: str, outdir: str) -> str:
    command = _OUTDIR.sub(lambda _: os.path.abspath(outdir), command)
    return _SRCDIR.sub(lambda _: os.path.abspath(srcdir), command)


@dataclass
class Manifest:
    """The parts of package.json/tsconfig.json the orchestrator uses."""

    entry: str
    outdir: str
    pre_build: List[str] = field(default_factory=list)
    post_build: List[str] = field(default_factory=list)
    external: List[str] = field(default_factory=list)
    public_path: Optional[str] = None
    override: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def load(cls, srcdir: str = ".") -> "Manifest":
        pkg = load_json(os.path.join(srcdir, "package.json"))

        tsconfig_path = os.path.join(srcdir, "tsconfig.json")
        tscfg = load_json(tsconfig_path) if os.path.exists(tsconfig_path) else {}

        entry = pkg.get("main")
        if not entry:
            raise ConfigError("package.json has no 'main' entry point")

        section = pkg.get("x4build") or {}
        outdir = (tscfg.get("compilerOptions") or {}).get("outDir") or DEFAULT_OUTDIR

        override = section.get("override") or {}
        if not isinstance(override, dict):
            raise ConfigError("x4build.override must be an object")

        logger.debug(f"Loaded manifest from {srcdir}: entry={entry} outdir={outdir}")
        return cls(
            entry=os.path.abspath(os.path.join(srcdir, entry)),
            outdir=os.path.abspath(os.path.join(srcdir, outdir)),
            pre_build=[str(c) for c in as_list(section.get("preBuild"))],
            post_build=[str(c) for c in as_list(section.get("postBuild"))],
            external=[str(e) for e in as_list(section.get("external"))],
            public_path=section.get("publicPath"),
            override=override,
        )


@dataclass
class DevConfig:
    mode: str = HTML
    release: bool = False
    watch: bool = False
    serve: bool = False
    hmr: bool = False
    monitor: Optional[str] = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    srcdir: str = "."
    rebuild_delay: float = 1.0
    reload_delay: float = 2.0
    restart_delay: float = 0.1
    default_document: str = "index.html"
    manifest: Optional[Manifest] = None

    def __post_init__(self):
        if self.mode not in MODES:
            raise ConfigError(f"Unknown project type {self.mode!r}, expected one of {', '.join(MODES)}")
        self.srcdir = os.path.abspath(self.srcdir)
        if self.monitor or self.hmr:
            self.watch = True

    @property
    def is_server_side(self) -> bool:
        return self.mode in (NODE, ELECTRON)

    @property
    def outdir(self) -> str:
        if self.manifest is None:
            return os.path.abspath(os.path.join(self.srcdir, DEFAULT_OUTDIR))
        return self.manifest.outdir

    @property
    def monitor_path(self) -> Optional[str]:
        if not self.monitor:
            return None
        return os.path.abspath(os.path.join(self.outdir, self.monitor))

    @property
    def serves_files(self) -> bool:
        return self.serve and self.mode == HTML

    @property
    def live_reload(self) -> bool:
        return self.hmr and self.mode != NODE

    @property
    def supervises_process(self) -> bool:
        return self.mode == NODE and self.monitor_path is not None
