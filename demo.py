#!/usr/bin/env python3
"""Demo script showing a package deployment against the in-process SDB daemon."""

import os
import tempfile

from tinysdb import Client, SdbConfig, Server, deploy


def demo_server() -> Server:
    """Run a mock daemon that answers each command with one line."""
    print("Starting SDB server on 127.0.0.1...")

    def on_command(destination: str) -> list[str]:
        print(f"Server received: {destination}")
        return [f"{destination} ... ok"]

    server = Server("127.0.0.1", 0, on_command=on_command)
    server.start()
    return server


def demo_client(port: int, package_path: str):
    """Connect, handshake and deploy a package."""
    print("Starting SDB client...")
    config = SdbConfig(host="127.0.0.1", port=port)

    with Client.from_config(config) as client:
        print(f"Connected to: {client.connect(config.identity)}")
        report = deploy(client, package_path, config, on_text=lambda line: print(f"  device: {line}"))

    print(f"Pushed {report.push.size} bytes in {report.push.chunks} chunks (crc32c {report.push.crc32c})")
    for step in report.steps:
        print(f"{step.name:8} {step.destination}")


def main():
    """Run the demo."""
    print("SDB Demo - Package Deployment")
    print("=" * 40)

    server = demo_server()
    try:
        with tempfile.TemporaryDirectory() as tmp:
            package_path = os.path.join(tmp, "org.example.hello-1.0.0-arm.tpk")
            with open(package_path, "wb") as f:
                f.write(os.urandom(20_000))
            demo_client(server.port, package_path)
            print(f"Server holds: {sorted(server.files)}")
    finally:
        server.stop()

    print("\nDemo completed!")


if __name__ == "__main__":
    main()
