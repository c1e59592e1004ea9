"""
Command line entry point.

Usage:
    # Control plane (default):
    node-bootstrap

    # Worker joining a control plane:
    node-bootstrap -t worker -h 10.0.0.5 -u ubuntu -s <password>

    # Tear down:
    node-bootstrap -c 0
    node-bootstrap -t worker -c 0 -h 10.0.0.5 -u ubuntu -s <password>

Exit codes: 0 on success, 1 on any validation or command failure.
"""

import argparse
import sys
from datetime import datetime, timezone
from typing import List, Optional

from .common import configure_logging, log_error
from .config import Config
from .controller import NodeLifecycleController
from .errors import ExternalCommandFailure, InvalidParameters, LifecycleError, PreconditionUnset
from .models import RemoteEndpoint

USAGE = """\
Usage: node-bootstrap [-t <controlplane|worker>] [-c <int>] [-hpus <string>]
    -v              Enable verbose logging
    -t  <string>    Type of node <controlplane|worker>
    -c  <int>       Count of nodes. Use 0 to run 'kubeadm reset' on the node
    -h  <string>    Hostname for the control plane node
    -p  <string>    Port for the control plane node
    -u  <string>    Username for the control plane node
    -s  <string>    Password for the control plane node
    --dry-run       Validate and print the planned action without executing
    --help          Show this message
"""


def timestamped(message: str) -> str:
    now = datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%d %H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
    return f"[{stamp}] {message}"


def usage_error(message: str, *, show_usage: bool = True) -> int:
    """Print usage and a timestamped error to stderr; return the exit code."""
    if show_usage:
        sys.stderr.write(USAGE)
    sys.stderr.write(timestamped(f"ERROR: {message}") + "\n")
    return 1


class _Parser(argparse.ArgumentParser):
    def error(self, message):
        raise InvalidParameters(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="node-bootstrap", usage=USAGE, add_help=False)
    parser.add_argument("-v", dest="verbose", action="store_true")
    parser.add_argument("-t", dest="type", default="controlplane")
    parser.add_argument("-c", dest="count", default="1")
    parser.add_argument("-h", dest="host", default="")
    parser.add_argument("-p", dest="port", default="22")
    parser.add_argument("-u", dest="username", default="")
    parser.add_argument("-s", dest="credential", default="")
    parser.add_argument("--dry-run", action="store_true")
    parser.add_argument("--help", action="store_true")
    return parser


def endpoint_from_args(args: argparse.Namespace) -> Optional[RemoteEndpoint]:
    if args.type != "worker" and not (args.host or args.username or args.credential):
        return None
    return RemoteEndpoint(
        host=args.host,
        username=args.username,
        credential=args.credential,
        port=args.port,
    )


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except InvalidParameters as exc:
        return usage_error(str(exc))

    if args.help:
        sys.stdout.write(USAGE)
        return 0

    configure_logging(verbose=args.verbose)

    try:
        controller = NodeLifecycleController(Config(), dry_run=args.dry_run)
        controller.apply(args.type, args.count, endpoint_from_args(args))
    except InvalidParameters as exc:
        return usage_error(str(exc))
    except PreconditionUnset as exc:
        return usage_error(str(exc), show_usage=False)
    except ExternalCommandFailure as exc:
        log_error(str(exc), exit=exc.returncode, host=exc.host)
        return 1
    except LifecycleError as exc:
        log_error(str(exc))
        return 1
    except KeyboardInterrupt:
        log_error("✗ Bootstrap interrupted")
        return 130
    except Exception as exc:
        log_error(f"✗ Bootstrap failed: {exc}", error=type(exc).__name__)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
