"""Package deployment: kill, push, install, clean up and launch.

Each step uses its own local stream id (1 to 5) and runs to completion before
the next one starts.
"""

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field

from .client import Client
from .config import SdbConfig
from .errors import LocalFileError
from .sync import ProgressCallback, PushResult


@dataclass
class StepResult:
    """Output of one workflow step."""

    name: str
    destination: str
    output: list[str] = field(default_factory=list)


@dataclass
class DeployReport:
    """Everything a deployment produced."""

    package: str
    steps: list[StepResult] = field(default_factory=list)
    push: PushResult | None = None


def package_name(path: str | os.PathLike) -> str:
    """Application id of a package: its file name up to the first ``-``."""
    filename = os.path.basename(os.fspath(path))
    return next((part for part in filename.split("-") if part), filename)


def _check_package(path: str | os.PathLike) -> None:
    if not os.path.isfile(path) or not os.access(path, os.R_OK):
        raise LocalFileError(f"deploy: unable to open {os.fspath(path)}")


def deploy(
    client: Client,
    package_path: str | os.PathLike,
    config: SdbConfig,
    on_text: Callable[[str], None] | None = None,
    progress_callback: ProgressCallback | None = None,
) -> DeployReport:
    """Install and launch a package on a connected device.

    Args:
        client: Client that has completed the CNXN handshake
        package_path: Local package file
        config: Settings providing the remote staging directory
        on_text: Called with every line of device output
        progress_callback: Forwarded to the push step

    Returns:
        Report of every step

    Raises:
        LocalFileError: If the package cannot be read; raised before any I/O
    """
    _check_package(package_path)

    filename = os.path.basename(os.fspath(package_path))
    pkg = package_name(filename)
    remote_path = config.remote_path(filename)
    report = DeployReport(package=pkg)

    def run(name: str, destination: str, local_id: int) -> None:
        logging.info("%s: cmd=%s", name, destination)
        report.steps.append(StepResult(name, destination, client.service(destination, local_id, on_text)))

    run("kill", f"appcmd:killapp:{pkg}:", 1)

    report.push = client.push(package_path, remote_path, 2, on_text=on_text, progress_callback=progress_callback)
    report.steps.append(StepResult("push", remote_path, [report.push.status] if report.push.status else []))

    run("install", f"shell:0 appinstall tpk {filename}", 3)
    run("cleanup", f"shell:0 rmfile {remote_path}", 4)
    run("launch", f"appcmd:runapp:{pkg}:", 5)
    return report
