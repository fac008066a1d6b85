import argparse
import asyncio
import logging
import signal
import sys

from .bundler import EsbuildBundler
from .errors import ConfigError
from .manifest import DEFAULT_HOST, DEFAULT_PORT, MODES, DevConfig, Manifest
from .session import OrchestratorSession

logger = logging.getLogger("livebuild")


def build_parser():
    parser = argparse.ArgumentParser(prog="livebuild", description="Build, serve and live-reload a web/app project")
    parser.add_argument("mode", nargs="?", default="html", choices=MODES, help="project type")
    parser.add_argument("--release", action="store_true", help="minified build without sourcemaps")
    parser.add_argument("--watch", action="store_true", help="rebuild on source changes")
    parser.add_argument("--serve", action="store_true", help="serve the output directory (html only)")
    parser.add_argument("--hmr", action="store_true", help="live reload connected browsers")
    parser.add_argument("--monitor", metavar="FILE", help="run and restart FILE from the output directory (node)")
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--srcdir", default=".", help="project directory holding package.json")
    parser.add_argument("--esbuild", default=None, help="path to the esbuild executable")
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def config_from_args(args) -> DevConfig:
    manifest = Manifest.load(args.srcdir)
    return DevConfig(
        mode=args.mode,
        release=args.release,
        watch=args.watch,
        serve=args.serve,
        hmr=args.hmr,
        monitor=args.monitor,
        host=args.host,
        port=args.port,
        srcdir=args.srcdir,
        manifest=manifest,
    )


def describe(config: DevConfig) -> None:
    logger.info(f"type....: {config.mode}")
    logger.info(f"outdir..: {config.outdir}")
    logger.info(f"watch...: {'yes' if config.watch else 'no'}")
    logger.info(f"mode....: {'release' if config.release else 'debug'}")
    logger.info(f"serve...: {'yes' if config.serves_files else 'no'}")
    logger.info(f"hmr.....: {'yes' if config.live_reload else 'no'}")
    logger.info(f"monitor.: {'yes' if config.supervises_process else 'no'}")


async def serve(config: DevConfig, executable=None) -> int:
    session = OrchestratorSession(config, EsbuildBundler(executable, cwd=config.srcdir))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(session.close()))
        except NotImplementedError:
            pass

    try:
        await session.run()
    finally:
        await session.close()

    initial = session.initial
    return 0 if initial is not None and initial.ok else 1


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        config = config_from_args(args)
    except ConfigError as e:
        logger.error(str(e))
        return 2

    describe(config)
    try:
        return asyncio.run(serve(config, args.esbuild))
    except OSError as e:
        # port in use, unreadable project dir
        logger.error(f"Cannot start session: {e}")
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
