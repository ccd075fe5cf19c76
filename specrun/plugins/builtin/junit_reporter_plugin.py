"""JUnit XML reporter -- one testsuite per run, one testcase per task."""

from __future__ import annotations

from pathlib import Path
from xml.etree import ElementTree as ET

import aiofiles  # type: ignore[import-untyped]

from specrun.models import RunResult, TaskStatus
from specrun.plugins.base import BaseReporter
from specrun.utils.file_utils import ensure_dir

REPORT_NAME = "junit.xml"


def build_junit(run_result: RunResult) -> ET.Element:
    summary = run_result.summary
    suite = ET.Element(
        "testsuite",
        name=f"specrun-{run_result.run_id}",
        tests=str(summary.total),
        failures=str(summary.failed),
        skipped=str(summary.skipped),
        errors="0",
        time=f"{run_result.duration_ms / 1000:.3f}",
        timestamp=run_result.started_at.isoformat(),
    )
    for task_id, task in run_result.tasks.items():
        case = ET.SubElement(
            suite,
            "testcase",
            classname=task_id,
            name=task.title or task_id,
            time=f"{task.duration_ms / 1000:.3f}",
        )
        if task.status == TaskStatus.FAILED:
            failure = ET.SubElement(case, "failure", message=task.failure_reason or "Task failed")
            lines = [f"{a.action_id}: {a.error}" for a in task.failed_actions()]
            lines += [f"[{fa.category}] {fa.description}" for fa in task.failure_analysis]
            failure.text = "\n".join(lines)
        elif task.status == TaskStatus.SKIPPED:
            ET.SubElement(case, "skipped", message=task.failure_reason or "Skipped")
    return suite


class JUnitReporter(BaseReporter):
    name = "junit-reporter"
    description = "Writes a JUnit XML report for CI systems"
    format = "junit"

    async def generate(self, run_result: RunResult, output_dir: Path) -> Path | None:
        suite = build_junit(run_result)
        ET.indent(suite)
        path = ensure_dir(output_dir) / REPORT_NAME
        async with aiofiles.open(path, mode="w", encoding="utf-8") as fh:
            await fh.write(ET.tostring(suite, encoding="unicode", xml_declaration=True))
        return path
