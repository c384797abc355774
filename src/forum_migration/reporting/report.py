"""Migration report generation.

Writes the run summary (per-phase counters, skipped items and errors) as
JSON and Markdown.
"""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from forum_migration.reporting.events import RunSummary
from forum_migration.utils.logging import get_logger

logger = get_logger(__name__)

MAX_LISTED_ITEMS = 25


class MigrationReport:
    """Renders a run summary for humans and machines."""

    def __init__(self, run_id: str, summary: RunSummary | dict[str, Any]):
        """Initialize migration report.

        Args:
            run_id: Identifier used in file names and headings
            summary: Run summary from the coordinator, or its dict form
        """
        self.run_id = run_id
        self.summary = summary.to_dict() if isinstance(summary, RunSummary) else summary
        self.generated_at = datetime.now(UTC)

    def generate_json(self, output_path: str | Path | None = None) -> str:
        """Generate JSON report.

        Args:
            output_path: Optional path to save report

        Returns:
            JSON report as string
        """
        report = {
            "report_version": "1.0",
            "generated_at": self.generated_at.isoformat(),
            "run_id": self.run_id,
            "summary": self.summary,
            "recommendations": self._generate_recommendations(),
        }

        json_str = json.dumps(report, indent=2, default=str)

        if output_path:
            Path(output_path).write_text(json_str)
            logger.info("json_report_saved", path=str(output_path))

        return json_str

    def generate_markdown(self, output_path: str | Path | None = None) -> str:
        """Generate Markdown report.

        Args:
            output_path: Optional path to save report

        Returns:
            Markdown report as string
        """
        status = "success" if self.summary.get("success") else "failed"
        lines = [
            "# Forum Migration Report",
            "",
            f"**Run ID:** `{self.run_id}`  ",
            f"**Generated:** {self.generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}  ",
            f"**Status:** {status}  ",
            "",
            "## Summary",
            "",
            f"- **Start Time:** {self.summary.get('started_at', 'N/A')}",
            f"- **End Time:** {self.summary.get('finished_at') or 'N/A'}",
            f"- **Flushed:** {'Yes' if self.summary.get('flushed') else 'No'}",
            f"- **Resumed:** {'Yes' if self.summary.get('resumed') else 'No'}",
            f"- **Imported:** {self.summary.get('total_imported', 0):,}",
            f"- **Skipped:** {self.summary.get('total_skipped', 0):,}",
            "",
            "## Phases",
            "",
            "| Phase | Status | Imported | Already imported | Skipped | Duration |",
            "|-------|--------|---------:|-----------------:|--------:|---------:|",
        ]

        for phase in self.summary.get("phases", []):
            lines.append(
                f"| {phase['phase']} | {phase['status']} "
                f"| {phase['imported']:,}/{phase['total']:,} "
                f"| {phase['already_imported']:,} | {phase['skipped']:,} "
                f"| {self._format_duration(phase.get('duration_seconds'))} |"
            )
        lines.append("")

        skipped_phases = self.summary.get("skipped_phases", [])
        if skipped_phases:
            lines.extend(["## Phases Skipped On Resume", ""])
            lines.extend(f"- {name}" for name in skipped_phases)
            lines.append("")

        errors = self.summary.get("errors", [])
        if errors:
            lines.extend(["## Errors", ""])
            for error in errors:
                lines.append(f"- **{error.get('phase', 'unknown')}:** {error.get('error')}")
            lines.append("")

        skipped_items = self.summary.get("skipped_items", [])
        if skipped_items:
            lines.extend(
                [
                    "## Skipped Items",
                    "",
                    f"Total items skipped: {len(skipped_items)}",
                    "",
                    "| Phase | Type | Source ID | Reason |",
                    "|-------|------|-----------|--------|",
                ]
            )
            for item in skipped_items[:MAX_LISTED_ITEMS]:
                lines.append(
                    f"| {item['phase']} | {item['entity_type']} "
                    f"| {item.get('source_id') or '-'} | {item['reason']} |"
                )
            if len(skipped_items) > MAX_LISTED_ITEMS:
                lines.append("")
                lines.append(
                    f"*... and {len(skipped_items) - MAX_LISTED_ITEMS} more skipped items*"
                )
            lines.append("")

        recommendations = self._generate_recommendations()
        if recommendations:
            lines.extend(["## Recommendations", ""])
            lines.extend(f"- {rec}" for rec in recommendations)
            lines.append("")

        markdown = "\n".join(lines)

        if output_path:
            Path(output_path).write_text(markdown)
            logger.info("markdown_report_saved", path=str(output_path))

        return markdown

    def _generate_recommendations(self) -> list[str]:
        recommendations = []

        if not self.summary.get("success"):
            recommendations.append(
                "The run stopped on a fatal error. Fix the cause and run "
                "`forum-bridge resume`; finished phases are not repeated."
            )

        skipped = len(self.summary.get("skipped_items", []))
        if skipped:
            recommendations.append(
                f"{skipped} items were skipped. Fix their dependencies in the source and "
                "rerun; already imported items are left untouched."
            )

        return recommendations

    def _format_duration(self, seconds: float | None) -> str:
        if seconds is None:
            return "N/A"

        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        secs = int(seconds % 60)

        if hours > 0:
            return f"{hours}h {minutes}m {secs}s"
        elif minutes > 0:
            return f"{minutes}m {secs}s"
        else:
            return f"{secs}s"


def generate_migration_report(
    run_id: str,
    summary: RunSummary | dict[str, Any],
    output_dir: str | Path = "./reports",
    formats: list[str] | None = None,
) -> dict[str, str]:
    """Generate migration reports in multiple formats.

    Args:
        run_id: Run identifier
        summary: Run summary from the coordinator
        output_dir: Directory to save reports
        formats: Formats to generate (json, markdown). Default: both

    Returns:
        Dictionary mapping format to file path
    """
    if formats is None:
        formats = ["json", "markdown"]

    report = MigrationReport(run_id, summary)
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    generated_files = {}
    base_filename = f"migration_report_{run_id}"

    if "json" in formats:
        json_path = output_path / f"{base_filename}.json"
        report.generate_json(json_path)
        generated_files["json"] = str(json_path)

    if "markdown" in formats:
        md_path = output_path / f"{base_filename}.md"
        report.generate_markdown(md_path)
        generated_files["markdown"] = str(md_path)

    logger.info("migration_reports_generated", run_id=run_id, files=generated_files)

    return generated_files
