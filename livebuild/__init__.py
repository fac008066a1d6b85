"""Development build orchestrator: watch, rebuild, live reload, serve, supervise."""

from .bundler import BuildInvoker, BuildOptions, Bundler, EsbuildBundler
from .debounce import DebounceScheduler
from .errors import (
    BuildFailure,
    ConfigError,
    LiveBuildError,
    ProcessFailure,
    RequestResolutionFailure,
    WatchFailure,
)
from .events import BuildResult, ChangeEvent, ChangeKind
from .hub import LiveReloadHub
from .manifest import DevConfig, Manifest
from .server import StaticFileServer
from .session import OrchestratorSession
from .supervisor import ProcessSupervisor, SupervisedProcess
from .watcher import ChangeDetector

__version__ = "0.1.0"

__all__ = [
    "BuildFailure",
    "BuildInvoker",
    "BuildOptions",
    "BuildResult",
    "Bundler",
    "ChangeDetector",
    "ChangeEvent",
    "ChangeKind",
    "ConfigError",
    "DebounceScheduler",
    "DevConfig",
    "EsbuildBundler",
    "LiveBuildError",
    "LiveReloadHub",
    "Manifest",
    "OrchestratorSession",
    "ProcessFailure",
    "ProcessSupervisor",
    "RequestResolutionFailure",
    "StaticFileServer",
    "SupervisedProcess",
    "WatchFailure",
]
