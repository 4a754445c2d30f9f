"""Command-line entry point: ``tinysdb deploy|push|shell``."""

import argparse
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from tqdm import tqdm

from .client import Client
from .config import SdbConfig
from .constants import DEFAULT_IDENTITY, DEFAULT_PORT
from .deploy import deploy
from .errors import LocalFileError, SdbError
from .sync import ProgressCallback

console = Console(highlight=False)
err_console = Console(stderr=True, highlight=False, soft_wrap=True)


def print_line(text: str) -> None:
    console.print(escape(text))


def print_error(message: str) -> None:
    """Report a failure as a single ``error:`` line on stderr."""
    line = message.replace("\n", " ")
    err_console.print(f"[red]error:[/red] {escape(line)}")


@contextmanager
def progress_bar(enabled: bool, desc: str) -> Iterator[ProgressCallback | None]:
    """Yield a push progress callback backed by a tqdm bar, or None when disabled."""
    if not enabled:
        yield None
        return

    bar = tqdm(total=0, desc=desc, unit="B", unit_scale=True, leave=False)

    def update(sent: int, total: int) -> None:
        bar.total = total
        bar.update(sent - bar.n)

    try:
        yield update
    finally:
        bar.close()


def _connect(config: SdbConfig) -> Client:
    try:
        client = Client.from_config(config)
    except OSError as exc:
        raise SdbError(f"connect {config.host}:{config.port} failed: {exc}") from exc
    try:
        peer = client.connect(config.identity)
    except SdbError:
        client.shutdown()
        raise
    console.print(f"connected to [bold]{escape(peer)}[/bold]")
    return client


def cmd_deploy(args: argparse.Namespace, config: SdbConfig) -> int:
    if not os.path.isfile(args.package):
        raise LocalFileError(f"deploy: unable to open {args.package}")

    with _connect(config) as client, progress_bar(args.progress, "push") as progress:
        report = deploy(client, args.package, config, on_text=print_line, progress_callback=progress)

    console.print(f"[green]deployed[/green] {escape(report.package)} ({report.push.size} bytes, crc32c {report.push.crc32c})")
    return 0


def cmd_push(args: argparse.Namespace, config: SdbConfig) -> int:
    if not os.path.isfile(args.local):
        raise LocalFileError(f"push: unable to open {args.local}")

    with _connect(config) as client, progress_bar(args.progress, "push") as progress:
        result = client.push(args.local, args.remote, 1, on_text=print_line, progress_callback=progress)

    console.print(f"[green]pushed[/green] {escape(result.local_path)} -> {escape(result.remote_path)} "
                  f"({result.size} bytes in {result.chunks} chunks, crc32c {result.crc32c})")
    return 0


def cmd_shell(args: argparse.Namespace, config: SdbConfig) -> int:
    with _connect(config) as client:
        client.service(f"shell:{args.command}", 1, on_text=print_line)
    return 0


COMMANDS: dict[str, Callable[[argparse.Namespace, SdbConfig], int]] = {
    "deploy": cmd_deploy,
    "push": cmd_push,
    "shell": cmd_shell,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tinysdb", description="Deploy packages to a device over SDB")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Daemon TCP port")
    parser.add_argument("--identity", default=DEFAULT_IDENTITY, help="System identity sent on connect")
    parser.add_argument("--timeout", type=float, default=None, help="Socket timeout in seconds (default: none)")
    parser.add_argument("--remote-dir", default=None, help="Staging directory on the device")
    parser.add_argument("--verify-checksum", action="store_true", help="Reject frames with a bad payload checksum")
    parser.add_argument("--no-progress", dest="progress", action="store_false", help="Hide the push progress bar")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Log protocol activity (-vv for frames)")

    sub = parser.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("deploy", help="Kill, push, install, clean up and launch a package")
    p.add_argument("host", help="Device address")
    p.add_argument("package", help="Local package file")

    p = sub.add_parser("push", help="Push a single file")
    p.add_argument("host", help="Device address")
    p.add_argument("local", help="Local file")
    p.add_argument("remote", help="Destination path on the device")

    p = sub.add_parser("shell", help="Run a shell command and print its output")
    p.add_argument("host", help="Device address")
    p.add_argument("command", help="Command line to run")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    level = [logging.WARNING, logging.INFO, logging.DEBUG][min(args.verbose, 2)]
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(message)s")

    try:
        settings = {"host": args.host, "port": args.port, "identity": args.identity, "timeout": args.timeout,
                    "verify_checksum": args.verify_checksum}
        if args.remote_dir:
            settings["remote_dir"] = args.remote_dir
        config = SdbConfig(**settings)
    except ValidationError as exc:
        problems = "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
        print_error(f"invalid settings: {problems}")
        return 2

    try:
        return COMMANDS[args.cmd](args, config)
    except SdbError as exc:
        print_error(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
