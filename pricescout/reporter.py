"""Run report generation: Excel workbook and interactive HTML dashboard.

Turns a RunSummary into two self-contained deliverables:
- An Excel workbook with per-target results, run totals and the failure
  list an operator works through after a run
- A Plotly dashboard showing outcomes by target type, failure reasons and
  how values were recovered (primary URL vs fallback)

Design Rationale:
    The summary already carries every ScrapeResult, so reports are built
    purely from it and never touch the store or the browser. Plotly writes
    standalone HTML, so a report can be opened on a machine without Python.
"""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pandas as pd
import plotly.graph_objects as go
from plotly.subplots import make_subplots

from config.settings import GlobalConfig, get_config
from pricescout.exceptions import ReportGenerationError
from pricescout.logger import get_logger
from pricescout.models import RunSummary

log = get_logger(__name__)

RESULT_COLUMNS = [
    "target_type",
    "target_id",
    "description",
    "outcome",
    "raw_value",
    "normalized_value",
    "currency_code",
    "error_code",
    "error",
    "fallback_used",
    "url",
]


class RunReportGenerator:
    """Generates Excel and HTML reports for one run.

    Attributes:
        config: GlobalConfig instance for output paths.

    Example:
        reporter = RunReportGenerator()
        paths = reporter.generate_all(summary)
    """

    def __init__(self, config: GlobalConfig | None = None) -> None:
        self.config = config or get_config()
        self._timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")

    def _ensure_output_dir(self) -> Path:
        try:
            self.config.output_dir.mkdir(parents=True, exist_ok=True)
            return self.config.output_dir
        except OSError as exc:
            raise ReportGenerationError(
                report_type="output_directory",
                reason=f"Cannot create output directory: {exc}",
                output_path=str(self.config.output_dir),
            ) from exc

    def results_frame(self, summary: RunSummary) -> pd.DataFrame:
        """One row per scraped target, in run order."""
        records = [
            {
                "target_type": result.target_type.value,
                "target_id": result.target_id,
                "description": result.description,
                "outcome": _outcome(result.success, result.fallback_used),
                "raw_value": result.raw_value,
                "normalized_value": result.normalized_value,
                "currency_code": result.currency_code,
                "error_code": result.error_code.value if result.error_code else None,
                "error": result.error,
                "fallback_used": result.fallback_used,
                "url": result.url,
            }
            for result in summary.results
        ]
        return pd.DataFrame(records, columns=RESULT_COLUMNS)

    def summary_stats(self, summary: RunSummary) -> dict[str, Any]:
        """Run totals as a flat mapping for the Summary sheet."""
        attempted = len(summary.results)
        succeeded = summary.price_success_count + summary.benchmark_success_count
        return {
            "Report Generated": datetime.now(UTC).isoformat(),
            "Scrape Time": summary.scrape_time.isoformat(),
            "Status": summary.status.value,
            "Started By": summary.started_by.name.lower(),
            "Attempt Number": summary.attempt_number,
            "Delay Profile": summary.delay_profile,
            "Currency": "OK" if summary.currency_success else "FAILED",
            "Currency Message": summary.currency_message,
            "Prices OK": summary.price_success_count,
            "Prices Failed": summary.price_fail_count,
            "Benchmarks OK": summary.benchmark_success_count,
            "Benchmarks Failed": summary.benchmark_fail_count,
            "Success Rate": f"{succeeded / attempted:.1%}" if attempted else "N/A",
            "Browser Relaunches": summary.relaunch_count,
            "Error": summary.error or "",
        }

    def generate_excel(self, summary: RunSummary, filename: str | None = None) -> Path:
        """Write Results, Summary and Failures sheets.

        Raises:
            ReportGenerationError: If the workbook cannot be written.
        """
        output_dir = self._ensure_output_dir()
        filename = filename or f"pricescout_run_{self._timestamp}"
        output_path = output_dir / f"{filename}.xlsx"

        log.info("Generating Excel report", output_path=str(output_path))

        try:
            df = self.results_frame(summary)
            failures = df[df["outcome"] == "failed"][
                ["target_type", "target_id", "description", "error_code", "error", "url"]
            ]

            with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
                df.to_excel(writer, sheet_name="Results", index=False)
                pd.DataFrame([self.summary_stats(summary)]).to_excel(
                    writer, sheet_name="Summary", index=False
                )
                failures.to_excel(writer, sheet_name="Failures", index=False)

            log.info(
                "Excel report generated successfully",
                output_path=str(output_path),
                results=len(df),
                failures=len(failures),
            )
            return output_path

        except Exception as exc:
            raise ReportGenerationError(
                report_type="Excel",
                reason=str(exc),
                output_path=str(output_path),
            ) from exc

    def generate_dashboard(self, summary: RunSummary, filename: str | None = None) -> Path:
        """Write a standalone Plotly dashboard for the run.

        Raises:
            ReportGenerationError: If the run has no results or writing fails.
        """
        output_dir = self._ensure_output_dir()
        filename = filename or f"pricescout_dashboard_{self._timestamp}"
        output_path = output_dir / f"{filename}.html"

        log.info("Generating HTML dashboard", output_path=str(output_path))

        try:
            df = self.results_frame(summary)

            if len(df) == 0:
                raise ReportGenerationError(
                    report_type="Dashboard",
                    reason="No results available for visualization",
                    output_path=str(output_path),
                )

            fig = make_subplots(
                rows=1,
                cols=3,
                subplot_titles=("Outcome by Target Type", "Failure Reasons", "Recovery Path"),
                specs=[[{"type": "bar"}, {"type": "pie"}, {"type": "bar"}]],
                horizontal_spacing=0.08,
            )

            by_type = (
                df.assign(ok=df["outcome"] != "failed")
                .groupby(["target_type", "ok"])
                .size()
                .unstack(fill_value=0)
                .reindex(columns=[True, False], fill_value=0)
            )
            fig.add_trace(
                go.Bar(
                    x=by_type.index.tolist(),
                    y=by_type[True].tolist(),
                    name="Succeeded",
                    marker_color="#27ae60",
                ),
                row=1,
                col=1,
            )
            fig.add_trace(
                go.Bar(
                    x=by_type.index.tolist(),
                    y=by_type[False].tolist(),
                    name="Failed",
                    marker_color="#e74c3c",
                ),
                row=1,
                col=1,
            )

            reasons = df["error_code"].dropna().value_counts()
            fig.add_trace(
                go.Pie(
                    labels=reasons.index.tolist() or ["none"],
                    values=reasons.values.tolist() or [1],
                    name="Failures",
                    hovertemplate="%{label}: %{value} (%{percent})<extra></extra>",
                ),
                row=1,
                col=2,
            )

            paths = df["outcome"].value_counts().reindex(
                ["primary", "fallback", "failed"], fill_value=0
            )
            fig.add_trace(
                go.Bar(
                    x=paths.index.tolist(),
                    y=paths.values.tolist(),
                    name="Targets",
                    marker_color=["#3498db", "#f39c12", "#e74c3c"],
                    text=paths.values.tolist(),
                    textposition="auto",
                ),
                row=1,
                col=3,
            )

            fig.update_layout(
                title={
                    "text": (
                        f"<b>PriceScout Run</b><br>"
                        f"<sup>Status: {summary.status.value} | "
                        f"Targets: {len(df)} | "
                        f"Relaunches: {summary.relaunch_count} | "
                        f"Scraped: {summary.scrape_time.strftime('%Y-%m-%d %H:%M UTC')}</sup>"
                    ),
                    "x": 0.5,
                    "xanchor": "center",
                },
                barmode="stack",
                height=500,
                template="plotly_white",
                font={"family": "Arial, sans-serif"},
            )

            fig.write_html(str(output_path), include_plotlyjs=True, full_html=True)

            log.info("HTML dashboard generated successfully", output_path=str(output_path))
            return output_path

        except ReportGenerationError:
            raise
        except Exception as exc:
            raise ReportGenerationError(
                report_type="Dashboard",
                reason=str(exc),
                output_path=str(output_path),
            ) from exc

    def generate_all(self, summary: RunSummary) -> dict[str, Path]:
        return {
            "excel": self.generate_excel(summary),
            "dashboard": self.generate_dashboard(summary),
        }


def _outcome(success: bool, fallback_used: bool) -> str:
    if not success:
        return "failed"
    return "fallback" if fallback_used else "primary"
