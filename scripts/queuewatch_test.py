from __future__ import annotations

import argparse
import asyncio
import sys

import httpx

from queuewatch.core.config import Settings, get_settings
from queuewatch.services.client import QueuewatchClient
from queuewatch.services.reports import ReportSettings, build_test_report


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Test the connection to Queuewatch.")
    parser.add_argument(
        "--send-test",
        action="store_true",
        help="Send a test failure report after the connection check",
    )
    return parser


def mask_api_key(api_key: str | None) -> str:
    if not api_key:
        return "<not set>"
    return f"{api_key[:8]}...{api_key[-4:]}"


def _print_configuration(settings: Settings, client: QueuewatchClient) -> None:
    print("Configuration:")
    print(f"  API Key:     {mask_api_key(client.api_key)}")
    print(f"  Endpoint:    {client.endpoint}")
    print(f"  Project:     {settings.project_name}")
    print(f"  Environment: {settings.environment}")
    print(f"  Enabled:     {'Yes' if settings.enabled else 'No'}")
    print(f"  Queue:       {settings.queue}")
    print()


def _response_message(response: httpx.Response) -> str | None:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return data["message"]
    return None


async def _send_test_failure(settings: Settings, client: QueuewatchClient) -> bool:
    print("Sending test failure report...")
    report = build_test_report(ReportSettings.from_settings(settings))
    try:
        response = await client.report_failure(report)
    except httpx.HTTPError as exc:
        print("  x Failed to send test report")
        print(f"    Error: {exc}")
        return False
    if response.is_success:
        print("  ok Test failure report sent successfully!")
        print("    Check your Queuewatch dashboard to see the test failure.")
        return True
    print("  x Failed to send test report")
    print(f"    Status: {response.status_code}")
    print(f"    Response: {response.text}")
    return False


async def _run(
    args: argparse.Namespace,
    *,
    settings: Settings | None = None,
    client: QueuewatchClient | None = None,
) -> int:
    resolved = settings or get_settings()
    client = client or QueuewatchClient.from_settings(resolved)
    print("Queuewatch Connection Test")
    print("--------------------------")
    _print_configuration(resolved, client)

    if not client.is_configured():
        print("API key not configured. Set QUEUEWATCH_API_KEY in your environment.", file=sys.stderr)
        return 1

    print("Testing connection to Queuewatch...")
    try:
        response = await client.test_connection()
    except httpx.HTTPError as exc:
        print("  x Connection failed")
        print(f"    Error: {exc}")
        return 1
    if not response.is_success:
        print("  x Connection failed")
        print(f"    Status: {response.status_code}")
        print(f"    Response: {response.text}")
        return 1

    print("  ok Connection successful!")
    message = _response_message(response)
    if message:
        print(f"    {message}")

    if args.send_test:
        print()
        # A failed test report is shown but does not fail the connection check.
        await _send_test_failure(resolved, client)
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
