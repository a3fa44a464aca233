import argparse
import logging

import trio

from hello_overlay.config import FORWARDER_SOCKET_PATH, ConfigError, ServerConfig
from hello_overlay.face import Face
from hello_server.responder import BoundedResponder

logger = logging.getLogger("server")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="hello-server",
        usage="%(prog)s [options] NAME-PREFIX",
        description="Respond to Hello World requests.",
    )
    p.add_argument("prefix", metavar="NAME-PREFIX", help="name prefix to serve")
    p.add_argument("-c", "--count", type=int, help="maximum number of requests to respond to")
    p.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="turn off logging of request reception and response generation",
    )
    p.add_argument("--socket", default=FORWARDER_SOCKET_PATH, help="forwarder Unix socket path")
    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = ServerConfig(prefix=args.prefix, max_count=args.count, quiet=args.quiet).validate()
    except ConfigError as e:
        parser.error(str(e))

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    responder = BoundedResponder(config, Face(args.socket))
    try:
        return int(trio.run(responder.run))
    except KeyboardInterrupt:
        logger.info("Server stopped by user")
        return int(responder.exit_status())


if __name__ == "__main__":
    raise SystemExit(main())
