import argparse
import logging

import trio

from hello_client.scheduler import RequestScheduler
from hello_overlay.config import DEFAULT_INTERVAL, FORWARDER_SOCKET_PATH, ClientConfig, ConfigError
from hello_overlay.face import Face

logger = logging.getLogger("client")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="hello-client",
        usage="%(prog)s [options] NAME-PREFIX",
        description=(
            "Generate requests for Hello World. Requests are continuously "
            "generated unless a total number is specified."
        ),
    )
    p.add_argument("prefix", metavar="NAME-PREFIX", help="name prefix of the requests")
    p.add_argument("-c", "--count", type=int, help="total number of requests to be generated")
    p.add_argument(
        "-i",
        "--interval",
        type=int,
        default=round(DEFAULT_INTERVAL * 1000),
        help="request generation interval in milliseconds (default: %(default)s)",
    )
    p.add_argument("--socket", default=FORWARDER_SOCKET_PATH, help="forwarder Unix socket path")
    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = ClientConfig(
            prefix=args.prefix, max_count=args.count, interval=args.interval / 1000
        ).validate()
    except ConfigError as e:
        parser.error(str(e))

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    scheduler = RequestScheduler(config, Face(args.socket))
    try:
        return int(trio.run(scheduler.run))
    except KeyboardInterrupt:
        logger.info("Client stopped by user")
        return int(scheduler.exit_status())


if __name__ == "__main__":
    raise SystemExit(main())
