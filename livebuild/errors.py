"""Error taxonomy for the build orchestrator."""


class LiveBuildError(Exception):
    """Base class for livebuild errors."""


class ConfigError(LiveBuildError):
    """Manifest or command line configuration is unusable."""


class WatchFailure(LiveBuildError):
    """A watch root cannot be observed."""


class BuildFailure(LiveBuildError):
    """The bundler reported errors."""

    def __init__(self, message, diagnostics=None):
        super().__init__(message)
        self.diagnostics = list(diagnostics or [message])


class ProcessFailure(LiveBuildError):
    """The supervised process could not be started."""


class RequestResolutionFailure(LiveBuildError):
    """A static request does not map to a servable file."""
