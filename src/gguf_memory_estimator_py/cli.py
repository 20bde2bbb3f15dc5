"""Command-line interface for GGUF Memory Estimator."""

from pathlib import Path
from typing import List, Optional

import typer
from gguf_parser import GGUFParseError
from typing_extensions import Annotated

from gguf_memory_estimator_py.config import TOKEN_ENV, EstimatorConfig
from gguf_memory_estimator_py.core import MemoryEstimator
from gguf_memory_estimator_py.ggufreader import DecodeStatus, GGUFMetadataReader, is_url
from gguf_memory_estimator_py.grouping import group_gguf_files, missing_parts
from gguf_memory_estimator_py.httpfile import HttpFileError
from gguf_memory_estimator_py.models import UNAVAILABLE_LABEL
from gguf_memory_estimator_py.quantization import detect_quantization, sort_by_priority
from gguf_memory_estimator_py.tracker import EstimateBoard

VERSION = "0.1.0"

app = typer.Typer(
    name="gguf-memory-estimator-py",
    help="Estimate memory requirements of GGUF models without downloading them",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"gguf-memory-estimator-py {VERSION}")
        raise typer.Exit()


@app.callback()
def main_callback(
    verbose: Annotated[
        bool, typer.Option("--verbose", help="Enable verbose output for debugging")
    ] = False,
    version: Annotated[
        bool,
        typer.Option("--version", help="Show version information and exit",
                     callback=_version_callback, is_eager=True),
    ] = False,
) -> None:
    """Estimate memory requirements of GGUF models without downloading them."""
    if verbose:
        import logging

        logging.basicConfig(level=logging.DEBUG, force=True)


def _build_config(context: Optional[int], token: Optional[str], timeout: Optional[float]) -> EstimatorConfig:
    try:
        return EstimatorConfig().with_overrides(
            context_length=context, token=token, timeout=timeout
        )
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _check_location(location: str) -> None:
    if not is_url(location) and not Path(location).exists():
        typer.echo(f"Error: GGUF file not found: {location}", err=True)
        raise typer.Exit(1)


ContextOption = Annotated[
    Optional[int],
    typer.Option("--context", "-c", help="Context size in tokens (default: 16384)"),
]
TokenOption = Annotated[
    Optional[str],
    typer.Option("--token", envvar=TOKEN_ENV, help="Bearer token for gated repositories"),
]
TimeoutOption = Annotated[
    Optional[float],
    typer.Option("--timeout", help="Per-request timeout in seconds"),
]


@app.command()
def estimate(
    location: Annotated[str, typer.Argument(help="URL or file path of the (first) GGUF part")],
    parts: Annotated[
        Optional[List[str]],
        typer.Argument(help="Remaining parts of a split model, in order"),
    ] = None,
    context: ContextOption = None,
    token: TokenOption = None,
    timeout: TimeoutOption = None,
) -> None:
    """Estimate total memory (model + KV cache) for one GGUF model."""
    config = _build_config(context, token, timeout)
    all_parts = [location] + list(parts or [])
    for part in all_parts:
        _check_location(part)

    result = MemoryEstimator(config).estimate_location(location, all_parts)
    if result is None:
        typer.echo(UNAVAILABLE_LABEL)
        raise typer.Exit(1)
    typer.echo(result.display_string)


@app.command()
def inspect(
    location: Annotated[str, typer.Argument(help="URL or file path of the GGUF model")],
    token: TokenOption = None,
    timeout: TimeoutOption = None,
) -> None:
    """Show the hyperparameters decoded from a GGUF header."""
    config = _build_config(None, token, timeout)
    _check_location(location)

    reader = GGUFMetadataReader(chunk_size=config.chunk_size, timeout=config.timeout)
    try:
        result = reader.decode_path(location, token=config.token)
    except (HttpFileError, GGUFParseError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"Status: {result.status.value}")
    if result.version is not None:
        typer.echo(f"GGUF version: {result.version}")
    if result.detail:
        typer.echo(f"Detail: {result.detail}")
    if result.status is not DecodeStatus.OK:
        raise typer.Exit(1)

    params = result.params
    typer.echo(f"Hidden size: {params.hidden_size}")
    typer.echo(f"Attention heads: {params.attention_heads}")
    typer.echo(f"KV heads: {params.kv_heads}")
    typer.echo(f"Layers: {params.hidden_layers}")


@app.command()
def group(
    filenames: Annotated[List[str], typer.Argument(help="Filenames from one model repository")],
) -> None:
    """Group split GGUF filenames into logical model files."""
    for grouped in sort_by_priority(group_gguf_files(filenames), name_of=lambda g: g.actual_name):
        quant = detect_quantization(grouped.actual_name)
        parts = f"{len(grouped.part_files)}/{grouped.part_count} parts" if grouped.is_multipart else "1 part"
        typer.echo(f"{grouped.display_name}  [{quant.type}]  {parts}")
        absent = missing_parts(grouped)
        if absent:
            typer.echo(f"# Warning: {grouped.display_name} is missing parts {absent}", err=True)


@app.command()
def browse(
    repo_id: Annotated[str, typer.Argument(help="Hugging Face repository id, e.g. org/model-GGUF")],
    filenames: Annotated[List[str], typer.Argument(help="GGUF filenames in the repository")],
    context: ContextOption = None,
    token: TokenOption = None,
    timeout: TimeoutOption = None,
    wait: Annotated[
        float, typer.Option("--wait", help="Seconds to wait for all estimates")
    ] = 60.0,
    workers: Annotated[
        int, typer.Option("--workers", help="Concurrent estimates")
    ] = 4,
) -> None:
    """Estimate memory for every model file of a repository concurrently."""
    config = _build_config(context, token, timeout)
    if workers <= 0:
        typer.echo("Error: --workers must be positive", err=True)
        raise typer.Exit(1)

    files = group_gguf_files(filenames)
    if not files:
        typer.echo("No model files available.")
        raise typer.Exit()

    estimator = MemoryEstimator(config)
    with EstimateBoard(estimator, files, repo_id=repo_id, max_workers=workers) as board:
        typer.echo(f"Calculating memory usage for {len(files)} file(s)...", err=True)
        finished = board.wait(timeout=wait)
        if not finished:
            typer.echo("# Memory calculation timeout (showing partial results)", err=True)
        for row in sort_by_priority(board.rows, name_of=lambda r: r.file.actual_name):
            quant = row.quantization.type if row.quantization else "Unknown"
            typer.echo(f"{row.file.display_name}  [{quant}]  {row.label}")


if __name__ == "__main__":
    app()
