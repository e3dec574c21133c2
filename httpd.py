import argparse
import logging
import os
import sys

from spaserver.config import Config, ConfigError
from spaserver.server import ThreadedHTTPServer as Server

DEFAULT_ROOT = os.path.join(os.path.dirname(os.path.abspath(__file__)), "public")

logger = logging.getLogger("httpd")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Static file server with single-page app fallback")
    parser.add_argument("--host", "-H", type=str, default="0.0.0.0", help="host to listen on")
    parser.add_argument("--port", "-p", type=int, default=None, help="port to listen on (default: $PORT or 8080)")
    parser.add_argument("--root", "-r", type=str, default=DEFAULT_ROOT, help="directory to serve")
    parser.add_argument("--index", "-i", type=str, default="index.html", help="document served for unmatched paths")
    parser.add_argument("--workers", "-w", type=int, default=4, help="number of worker threads")
    parser.add_argument("--debug", "-D", action="store_true", help="enable debug logging")
    return parser.parse_args(argv)


def main(argv=None, environ=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = Config.from_env(
        environ,
        host=args.host,
        port=args.port,
        root=args.root,
        index=args.index,
        workers=args.workers,
        debug=args.debug,
    )
    try:
        config.validate()
    except ConfigError as e:
        logger.error("Refusing to start: %s", e)
        return 1

    logger.debug("Starting server on port %d, serving directory '%s' with %d workers.",
                 config.port, config.root, config.workers)
    server = Server(config)
    try:
        server.run()
    except OSError as e:
        logger.error("Cannot listen on %s:%d: %s", config.host, config.port, e)
        return 1
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
