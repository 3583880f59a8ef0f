"""Click CLI: orchestrates config loading, model selection, the fusion run, and output."""

import asyncio
import logging
import sys
from pathlib import Path

import click
import httpx
import uvicorn
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_config
from fusion.adapter import ModelAdapter
from fusion.credentials import default_credentials
from fusion.errors import FusionError
from fusion.healthcheck import run_health_checks
from fusion.models import FUSION_MODES, CredentialSet, FusionRequest
from fusion.output import print_phase_summary, print_result, save_to_file
from fusion.providers.registry import ModelRegistry
from fusion.server import create_app
from fusion.service import create_service

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _determine_panel(config: AppConfig, models_arg: str | None, mode: str) -> list[str]:
    """--models overrides the configured panel; solo keeps only the first model."""
    if models_arg:
        panel = [m.strip() for m in models_arg.split(",") if m.strip()]
    else:
        panel = list(config.defaults.default_panel)
    return panel[:1] if mode == "solo" else panel


def _check_and_filter_models(
    config: AppConfig,
    panel: list[str],
    master: str,
    credentials: CredentialSet,
) -> list[str]:
    """Ping panel and master, print results, and ask user what to do on failures.

    Returns the panel with failing models removed. Exits if the user
    declines to continue or no panel model passes.
    """
    adapter = ModelAdapter(ModelRegistry.from_config(config), config.prompts)
    to_check = list(dict.fromkeys([*panel, master]))

    console.print("\n[bold]Checking models...[/bold]")
    results = asyncio.run(run_health_checks(adapter, to_check, credentials))

    failed: list[str] = []
    for model_id in to_check:
        ok, err = results[model_id]
        if ok:
            console.print(f"  [green]OK  [/green] {model_id}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {model_id}: {short_err}")
            failed.append(model_id)

    if not failed:
        console.print()
        return panel

    working = [m for m in panel if m not in failed]
    if not working:
        console.print("\n[bold red]Error:[/bold red] No panel model passed the health check.")
        sys.exit(1)

    console.print(f"\n[yellow]{len(failed)} model(s) failed:[/yellow] {', '.join(failed)}")
    if master in failed:
        console.print(f"[yellow]Master {master} failed; synthesis will fall back to the best single answer.[/yellow]")
    console.print(f"Working panel: {', '.join(working)}")

    if not click.confirm("Continue with working models only?", default=True):
        sys.exit(0)

    console.print()
    return working


async def _run_single(
    config: AppConfig,
    request: FusionRequest,
    credentials: CredentialSet,
    output_dir: Path,
) -> Path:
    """Run one fusion locally and return the saved transcript path."""
    panel = ", ".join(request.model_slugs)
    console.print(f"\n[bold cyan]Fusion Council[/bold cyan] | mode {request.fusion_mode}")
    console.print(f"Panel: {panel}")
    console.print(f"Master: {request.master_model_slug}")
    console.print(f"Prompt: [italic]{request.prompt[:80]}{'...' if len(request.prompt) > 80 else ''}[/italic]\n")

    async with httpx.AsyncClient(timeout=config.services.timeout_sec) as http:
        service = create_service(config, http, credentials=credentials)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(f"Running {request.fusion_mode}...", total=None)
            response = await service.handle(request)

    for key in ("initial", "crossAnalysis", "refinement"):
        print_phase_summary(key, response["phases"][key])

    print_result(response)

    saved_path = save_to_file(request.prompt, response, output_dir)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    return saved_path


@click.command()
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read prompt from a text or .md file")
@click.option("--mode", type=click.Choice(FUSION_MODES), default=None, help="Fusion mode (default: from config)")
@click.option("--models", default=None, help="Comma-separated model ids, overrides the configured panel")
@click.option("--master", default=None, help="Model that synthesizes the final answer (default: from config)")
@click.option("--web-verify", is_flag=True, default=False, help="Fact-check the answer against web sources")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--skip-health-check", is_flag=True, default=False,
              help="Skip the API connectivity check at startup")
@click.option("--serve", is_flag=True, default=False, help="Start the HTTP server instead of running a prompt")
@click.option("--host", default="127.0.0.1", show_default=True, help="Server bind address")
@click.option("--port", default=8000, type=int, show_default=True, help="Server port")
def main(
    prompt: str | None,
    prompt_file: str | None,
    mode: str | None,
    models: str | None,
    master: str | None,
    web_verify: bool,
    output_path: str | None,
    verbose: bool,
    skip_health_check: bool,
    serve: bool,
    host: str,
    port: int,
) -> None:
    """Fusion Council -- ask several models, get one fused answer.

    \b
    Examples:
      python -m fusion.cli "What is the capital of France?" --mode solo
      python -m fusion.cli "Explain CRDTs" --models gpt-5.2,claude-opus-4.6
      python -m fusion.cli "Is coffee healthy?" --mode supernova --web-verify
      python -m fusion.cli --file prompt.md --master gemini-3.0-pro
      python -m fusion.cli --serve --port 8080
    """
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config()
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    if serve:
        uvicorn.run(create_app(config), host=host, port=port)
        return

    if prompt_file:
        prompt_text = Path(prompt_file).read_text(encoding="utf-8").strip()
    elif prompt:
        prompt_text = prompt
    else:
        console.print("[bold red]Error:[/bold red] Provide a PROMPT argument, --file, or --serve.")
        sys.exit(1)

    effective_mode = mode or config.defaults.fusion_mode
    effective_master = master or config.defaults.master_model
    effective_output = Path(output_path) if output_path else config.defaults.output_dir
    panel = _determine_panel(config, models, effective_mode)
    credentials = default_credentials(config)

    if not panel:
        console.print("[bold red]Error:[/bold red] No models selected. Use --models or set default_panel.")
        sys.exit(1)

    if not skip_health_check and effective_mode not in ("image", "manus"):
        panel = _check_and_filter_models(config, panel, effective_master, credentials)

    request = FusionRequest(
        prompt=prompt_text,
        model_slugs=panel,
        master_model_slug=effective_master,
        fusion_mode=effective_mode,
        web_verify=web_verify,
        skip_save=True,
    )

    try:
        asyncio.run(_run_single(config, request, credentials, effective_output))
    except FusionError as exc:
        console.print(f"[bold red]Error:[/bold red] {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
