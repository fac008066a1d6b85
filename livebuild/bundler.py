"""Bundler collaborator and the invoker that drives it."""

import asyncio
import logging
import re
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .errors import BuildFailure
from .events import BuildResult
from .manifest import ELECTRON, DevConfig, substitute

logger = logging.getLogger(__name__)

DEFAULT_LOADERS = {
    ".png": "file",
    ".svg": "file",
    ".json": "json",
    ".ttf": "dataurl",
}


@dataclass
class BuildOptions:
    entry: str
    outdir: str
    minify: bool = False
    sourcemap: Optional[str] = "external"
    target: str = "esnext"
    platform: str = "browser"
    external: List[str] = field(default_factory=list)
    public_path: Optional[str] = None
    define: Dict[str, str] = field(default_factory=dict)
    loaders: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_LOADERS))
    override: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: DevConfig) -> "BuildOptions":
        manifest = config.manifest
        if manifest is None:
            raise ValueError("DevConfig has no manifest")

        external = ["electron"] if config.mode == ELECTRON else list(manifest.external)
        return cls(
            entry=manifest.entry,
            outdir=manifest.outdir,
            minify=config.release,
            sourcemap=None if config.release else "external",
            target="node16" if config.is_server_side else "esnext",
            platform="node" if config.is_server_side else "browser",
            external=external,
            public_path=manifest.public_path,
            define={"DEBUG": "false" if config.release else "true"},
            override=dict(manifest.override),
        )


class Bundler(ABC):
    """
    Opaque bundling engine.

    ``build`` returns a result and a context that ``rebuild`` can reuse.
    Implementations raise ``BuildFailure`` when the bundle has errors.
    """

    @abstractmethod
    async def build(self, options: BuildOptions) -> Any:
        """Bundle once and return a rebuild context."""

    @abstractmethod
    async def rebuild(self, context: Any) -> None:
        """Rebuild from an established context."""


def _flag_name(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "-", key).lower()


def esbuild_argv(options: BuildOptions, executable: str = "esbuild") -> List[str]:
    argv = [
        executable,
        options.entry,
        "--bundle",
        f"--outdir={options.outdir}",
        f"--target={options.target}",
        f"--platform={options.platform}",
        "--format=iife",
        "--charset=utf8",
        "--keep-names",
        "--legal-comments=none",
        "--asset-names=assets/[name]",
        "--chunk-names=assets/[name]",
        "--allow-overwrite",
        "--log-level=warning",
    ]
    if options.minify:
        argv.append("--minify")
    if options.sourcemap:
        argv.append(f"--sourcemap={options.sourcemap}")
    if options.public_path:
        argv.append(f"--public-path={options.public_path}")
    for name in options.external:
        argv.append(f"--external:{name}")
    for name, value in options.define.items():
        argv.append(f"--define:{name}={value}")
    for ext, loader in options.loaders.items():
        argv.append(f"--loader:{ext}={loader}")

    for key, value in options.override.items():
        flag = _flag_name(key)
        if value is True:
            argv.append(f"--{flag}")
        elif value is False or value is None:
            continue
        elif isinstance(value, list):
            argv.extend(f"--{flag}:{item}" for item in value)
        elif isinstance(value, dict):
            argv.extend(f"--{flag}:{k}={v}" for k, v in value.items())
        else:
            argv.append(f"--{flag}={value}")
    return argv


class EsbuildBundler(Bundler):
    """Runs the esbuild command line; the rebuild context is the argv."""

    def __init__(self, executable: Optional[str] = None, cwd: Optional[str] = None):
        self.executable = executable or shutil.which("esbuild") or "esbuild"
        self.cwd = cwd

    async def build(self, options: BuildOptions) -> List[str]:
        argv = esbuild_argv(options, self.executable)
        await self._run(argv)
        return argv

    async def rebuild(self, context: List[str]) -> None:
        await self._run(context)

    async def _run(self, argv: Sequence[str]) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise BuildFailure(f"Cannot run {argv[0]}: {e}") from e

        out, err = await proc.communicate()
        text = (err or b"").decode("utf-8", "replace").strip()
        if proc.returncode != 0:
            diagnostics = [line for line in text.splitlines() if line.strip()]
            raise BuildFailure(f"esbuild exited with code {proc.returncode}", diagnostics or None)
        if text:
            logger.warning(text)


async def run_commands(commands: Sequence[str], srcdir: str, outdir: str) -> List[int]:
    """Run shell commands in order from ``srcdir``; return their exit codes."""
    codes = []
    for command in commands:
        task = substitute(command, srcdir, outdir)
        logger.info(f"> {task}")
        proc = await asyncio.create_subprocess_shell(task, cwd=srcdir)
        code = await proc.wait()
        if code != 0:
            logger.warning(f"Command exited with code {code}: {task}")
        codes.append(code)
    return codes


class BuildInvoker:
    """
    Issue builds against a Bundler and turn the outcome into a BuildResult.

    Builds are serialized. The invoker never raises for bundler errors and
    never ends the process; failures are returned as diagnostics.
    """

    def __init__(
        self,
        bundler: Bundler,
        options: BuildOptions,
        srcdir: str = ".",
        pre_build: Sequence[str] = (),
        post_build: Sequence[str] = (),
    ):
        self.bundler = bundler
        self.options = options
        self.srcdir = srcdir
        self.pre_build = list(pre_build)
        self.post_build = list(post_build)

        self._context: Any = None
        self._lock = asyncio.Lock()
        self.builds = 0

    @classmethod
    def from_config(cls, bundler: Bundler, config: DevConfig) -> "BuildInvoker":
        manifest = config.manifest
        return cls(
            bundler,
            BuildOptions.from_config(config),
            srcdir=config.srcdir,
            pre_build=manifest.pre_build if manifest else (),
            post_build=manifest.post_build if manifest else (),
        )

    @property
    def has_context(self) -> bool:
        return self._context is not None

    async def build(self) -> BuildResult:
        async with self._lock:
            return await self._invoke(fresh=True)

    async def rebuild(self) -> BuildResult:
        async with self._lock:
            return await self._invoke(fresh=self._context is None)

    async def _invoke(self, fresh: bool) -> BuildResult:
        self.builds += 1
        try:
            if self.pre_build:
                await run_commands(self.pre_build, self.srcdir, self.options.outdir)
            if fresh:
                self._context = await self.bundler.build(self.options)
            else:
                await self.bundler.rebuild(self._context)
        except BuildFailure as e:
            for message in e.diagnostics:
                logger.error(message)
            return BuildResult(ok=False, diagnostics=e.diagnostics)
        except Exception as e:
            logger.exception("Bundler raised an unexpected error")
            return BuildResult.failed(f"{type(e).__name__}: {e}")

        if self.post_build:
            logger.info("... calling post build action ...")
            try:
                await run_commands(self.post_build, self.srcdir, self.options.outdir)
            except OSError as e:
                logger.error(f"Post build action failed: {e}")
        return BuildResult(ok=True)
