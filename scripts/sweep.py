"""Run one sweep of the transient file directories.

Meant for deployments that drive the cadence from cron or a similar
scheduler instead of the in-process sweep loop.
"""

from __future__ import annotations

import asyncio

from signature_formatter.config.settings import get_settings
from signature_formatter.monitoring.logging import configure_logging
from signature_formatter.workers.cleanup import FileLifecycleManager, SweepReport


def _format_report(report: SweepReport) -> str:
    status = "✅" if not report.failed else "❌"
    return f"{status} scanned {report.scanned}, deleted {report.deleted}, failed {report.failed}"


def main() -> None:
    configure_logging()
    manager = FileLifecycleManager.from_settings(get_settings())
    report = asyncio.run(manager.sweep())
    print(_format_report(report))


if __name__ == "__main__":
    main()
