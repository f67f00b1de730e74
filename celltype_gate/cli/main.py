"""Command-line interface for celltype-gate.

Provides CLI commands for gating cells against signature models,
combining precomputed model calls, and inspecting model files.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from celltype_gate import __version__


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("celltype_gate")


@click.group()
@click.version_option(version=__version__, prog_name="celltype-gate")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """celltype-gate: hierarchical signature gating of single-cell data.

    Keeps the cells of a target population by scoring gene signatures
    level by level and removing cells that fail any level.

    Examples:

        # Gate B cells
        celltype-gate gate --input data.h5ad --model Bcell_Model.tsv --out gated/

        # Gate several models and label cells by consensus
        celltype-gate gate -i data.h5ad -m Bcell.tsv -m Tcell.tsv -o gated/

        # Show a model
        celltype-gate show-model Bcell_Model.tsv
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad)")
@click.option("--model", "-m", "model_paths", required=True, multiple=True,
              type=click.Path(exists=True), help="Gating model TSV (repeatable)")
@click.option("--model-name", "model_names", multiple=True,
              help="Name for each --model, in order (default: file name)")
@click.option("--master-table", type=click.Path(exists=True),
              help="Master table TSV of named signatures")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Gating parameters (YAML)")
@click.option("--pos-thr", type=float, help="Positive signature threshold")
@click.option("--neg-thr", type=float, help="Negative signature threshold")
@click.option("--min-cells", type=int, help="Minimum population/cluster/label size")
@click.option("--param-decay", type=float, help="Per-level decay of clustering parameters")
@click.option("--by-knn/--by-cluster", default=None,
              help="Smooth scores over neighbors or vote by cluster")
@click.option("--seed", type=int, help="Random seed")
@click.option("--n-workers", type=int, help="Parallel workers")
@click.option("--layer", help="Expression layer to use")
@click.option("--reduction", help="obsm key of a precomputed embedding for smoothing")
@click.option("--save-levels/--no-save-levels", default=None, help="Keep per-level columns")
@click.option("--multi-as-na/--multi-as-label", default=None,
              help="Label cells Pure under several models as NA instead of Multi")
@click.pass_context
def gate(
    ctx: click.Context,
    input_path: str,
    model_paths: Tuple[str, ...],
    model_names: Tuple[str, ...],
    master_table: Optional[str],
    output_path: str,
    config: Optional[str],
    **overrides,
) -> None:
    """Gate cells against one or more models.

    Writes the annotated AnnData, a CSV of gating columns, a per-level
    summary and a YAML run record to the output directory.
    """
    logger = ctx.obj["logger"]

    # Import here to avoid slow startup
    import scanpy as sc
    from celltype_gate.core.errors import GatingConfigError
    from celltype_gate.core.gating import GatingEngine, GatingParams
    from celltype_gate.core.model import load_model, model_name_from_path
    from celltype_gate.io import (
        build_run_record,
        ensure_output_dir,
        get_logger,
        log_yaml,
        write_annotations,
        write_level_summary,
    )

    if model_names and len(model_names) != len(model_paths):
        raise click.BadParameter(
            f"Got {len(model_names)} --model-name for {len(model_paths)} --model",
            param_hint="--model-name",
        )

    try:
        params = GatingParams.from_yaml(Path(config)) if config else GatingParams()
        updates = {k: v for k, v in overrides.items() if v is not None}
        if updates:
            merged = params.to_dict()
            merged.update(updates)
            params = GatingParams(**merged)

        models = {}
        for i, path in enumerate(model_paths):
            name = model_names[i] if model_names else model_name_from_path(path)
            if name in models:
                raise GatingConfigError(f"Duplicate model name '{name}'")
            models[name] = load_model(path, master_table=master_table, logger=logger)
        if len(models) == 1 and not model_names:
            models = next(iter(models.values()))
    except GatingConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    out_dir = ensure_output_dir(output_path)
    logger, log_path = get_logger(
        "celltype_gate.run",
        out_dir / "gating.log",
        level=logging.DEBUG if ctx.obj["debug"] else logging.INFO,
        propagate=ctx.obj["verbose"] or ctx.obj["debug"],
    )
    logger.info(f"Gating {len(model_paths)} model(s) on {input_path}")

    logger.info("Loading AnnData...")
    adata = sc.read_h5ad(input_path)
    logger.info(f"Loaded {adata.n_obs} cells, {adata.n_vars} genes")

    try:
        result = GatingEngine(models, params, logger=logger).run(adata)
    except GatingConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    output_file = out_dir / "gated.h5ad"
    adata.write_h5ad(output_file)
    write_annotations(adata, result.columns, out_dir / "gating_annotations.csv")
    write_level_summary(result.model_results, out_dir / "gating_level_summary.csv")
    record = build_run_record(
        params.to_dict(),
        result.model_results,
        inputs={"input": input_path, "models": list(model_paths)},
    )
    log_yaml(out_dir / "gating_run.yaml", record)
    log_yaml(None, record, logger=logger)

    for name, model_result in result.model_results.items():
        n = len(model_result.final)
        click.echo(f"{name}: {n - model_result.n_impure}/{n} cells Pure")
    click.echo(f"Output saved to: {output_file}")
    click.echo(f"Run log: {log_path}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad) with purity columns")
@click.option("--model-name", "model_names", multiple=True,
              help="Model names to combine (repeatable; default: all <prefix>_* columns)")
@click.option("--prefix", default="is.pure", show_default=True,
              help="Purity column prefix")
@click.option("--min-cells", type=int, default=30, show_default=True,
              help="Labels with fewer cells are reset to NA")
@click.option("--multi-as-na", is_flag=True,
              help="Label cells Pure under several models as NA instead of Multi")
@click.option("--column", default="gate_multi", show_default=True,
              help="Output column for the consensus label")
@click.option("--out", "-o", "output_path", type=click.Path(),
              help="Output AnnData file (default: overwrite input)")
@click.pass_context
def combine(
    ctx: click.Context,
    input_path: str,
    model_names: Tuple[str, ...],
    prefix: str,
    min_cells: int,
    multi_as_na: bool,
    column: str,
    output_path: Optional[str],
) -> None:
    """Combine precomputed per-model purity columns into a consensus label."""
    logger = ctx.obj["logger"]

    import pandas as pd
    import scanpy as sc
    from celltype_gate.core.errors import GatingConfigError
    from celltype_gate.core.gating import combine_multiclass

    adata = sc.read_h5ad(input_path)
    logger.info(f"Loaded {adata.n_obs} cells")

    try:
        labels = combine_multiclass(
            adata.obs,
            list(model_names) or None,
            prefix=prefix,
            min_cells=min_cells,
            multi_as_na=multi_as_na,
            logger=logger,
        )
    except GatingConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    adata.obs[column] = labels.values
    output_file = Path(output_path) if output_path else Path(input_path)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    adata.write_h5ad(output_file)

    for label, count in labels.value_counts(dropna=False).items():
        click.echo(f"{'NA' if pd.isna(label) else label}: {count}")
    click.echo(f"Output saved to: {output_file}")


@cli.command("show-model")
@click.argument("model_path", type=click.Path(exists=True))
@click.option("--master-table", type=click.Path(exists=True),
              help="Master table TSV of named signatures")
@click.pass_context
def show_model(ctx: click.Context, model_path: str, master_table: Optional[str]) -> None:
    """Print the levels and signatures of a model file."""
    from celltype_gate.core.errors import GatingConfigError
    from celltype_gate.core.model import load_model

    try:
        model = load_model(model_path, master_table=master_table, logger=ctx.obj["logger"])
    except GatingConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    click.echo(f"{Path(model_path).name}: {model.n_levels} level(s)")
    for level in model.levels:
        click.echo(f"  {level.name}")
        for sig in level.positive:
            click.echo(f"    + {sig.name}: {';'.join(sig.genes)}")
        for sig in level.negative:
            click.echo(f"    - {sig.name}: {';'.join(sig.genes)}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
