"""Rich console output and markdown file save for fusion run responses."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.text import Text

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_PHASE_TITLES = {
    "initial": "Initial Responses",
    "crossAnalysis": "Cross-Analysis",
    "refinement": "Refinement",
}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(content: str, words: int = 50) -> str:
    """Return first N words of a response."""
    all_words = content.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def print_phase_summary(phase_key: str, results: list[dict]) -> None:
    """Print a brief summary of one phase's results to the console."""
    if not results:
        return
    console.print(Rule(f"[bold cyan]{_PHASE_TITLES.get(phase_key, phase_key)}[/bold cyan]"))
    for res in results:
        failed = res["status"] != "success"
        body = res.get("error", "failed") if failed else _preview(res["content"])
        console.print(
            Panel(
                body,
                title=f"[bold]{res['slug']}[/bold]",
                subtitle=f"{res['tokens']} tokens",
                border_style="red" if failed else "dim",
            )
        )


def print_result(response: dict) -> None:
    """Print the final answer, its sources and run stats using Rich markdown."""
    console.print(Rule("[bold green]Fusion Result[/bold green]"))
    verified = "web-verified" if response["web_verified"] else "not web-verified"
    console.print(
        Text(
            f"Master: {response['debug_info']['master_model']} | "
            f"Mode: {response['fusion_mode']} | "
            f"Tokens: {response['token_usage']['total']} | "
            f"{verified}",
            style="dim",
        )
    )
    console.print(Markdown(response["fusion"]))

    report = (response["phases"].get("synthesis") or {}).get("fact_check_report")
    if report:
        console.print(
            Text(
                f"Reliability: {report['verified_claims']} points verified, "
                f"{report['consensus_percentage']}% consensus, "
                f"{report['contradictions_found']} contradictions resolved",
                style="dim",
            )
        )
    for citation in response["citations"]:
        console.print(f"  [{citation['index']}] {citation['title']} [dim]{citation['url']}[/dim]")


def save_to_file(question: str, response: dict, output_dir: Path) -> Path:
    """Save the full run transcript as a markdown file.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(question)}.md"

    phases = response["phases"]
    panel = ", ".join(r["slug"] for r in phases["initial"])

    lines: list[str] = [
        f"# Fusion Run: {question[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Mode:** {response['fusion_mode']}",
        f"**Panel:** {panel}",
        f"**Master:** {response['debug_info']['master_model']}",
        f"**Tokens:** {response['token_usage']['total']}",
        f"**Web verified:** {'yes' if response['web_verified'] else 'no'}",
        "",
        "---",
        "",
    ]

    for key, title in _PHASE_TITLES.items():
        if not phases.get(key):
            continue
        lines += [f"## {title}", ""]
        for res in phases[key]:
            lines += [f"### {res['slug']}", ""]
            if res["status"] == "success":
                lines.append(res["content"])
            else:
                lines.append(f"*Failed: {res.get('error', 'unknown error')}*")
            lines += ["", f"*Tokens: {res['tokens']}*", ""]

    lines += [
        f"## Answer (by {response['debug_info']['master_model']})",
        "",
        response["fusion"],
        "",
    ]
    if response["citations"]:
        lines += ["## Sources", ""]
        lines += [f"[{c['index']}] [{c['title']}]({c['url']})" for c in response["citations"]]
        lines.append("")

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Run saved to: %s", filepath)
    return filepath
