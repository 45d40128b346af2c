"""Command-line interface for callset refinement."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import click

from .config import RefinementConfig, load_config
from .config_validator import validate_config_file
from .exceptions import CallsetRefineError
from .filtering_engine import build_engine, filter_report, verdicts_to_frame
from .io import (
    BufferedSource,
    InMemoryPanel,
    JsonLinesSiteSink,
    JsonLinesSiteSource,
    SiteSource,
)
from .logging_config import setup_logging
from .pedigree import Pedigree
from .pipeline import PosteriorPipeline


@dataclass
class CLIContext:
    """Shared CLI configuration."""

    config: RefinementConfig
    config_path: Optional[Path]


def _load_refinement_config(config_path: Optional[Path]) -> RefinementConfig:
    if config_path is None:
        return RefinementConfig().validate()
    if not config_path.exists():
        raise click.ClickException(f"Configuration file not found: {config_path}")
    try:
        return load_config(config_path)
    except CallsetRefineError as exc:
        raise click.ClickException(f"Failed to load configuration {config_path}: {exc}") from exc


def _first_sample_ids(source: SiteSource) -> Tuple[list, dict]:
    for site in source.open():
        return site.sample_ids, {g.sample_id: g.ploidy for g in site.genotypes}
    return [], {}


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path),
    help="Path to a refinement configuration file. Defaults to built-in settings.",
)
@click.option("--log-level", default=None, help="Override the configured logging level.")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path], log_level: Optional[str]) -> None:
    """callset-refine: genotype posterior refinement and two-phase variant filtering."""
    if ctx.invoked_subcommand == "validate-config":
        ctx.obj = CLIContext(config=RefinementConfig(), config_path=config_path)
        return
    config = _load_refinement_config(config_path)
    setup_logging(
        level=log_level or config.logging.level,
        log_file=Path(config.logging.log_file) if config.logging.log_file else None,
    )
    ctx.obj = CLIContext(config=config, config_path=config_path)


@main.command("posteriors")
@click.option("--sites", "sites_path", required=True, type=click.Path(exists=True, path_type=Path),
              help="Input sites, one JSON record per line.")
@click.option("--out", "out_path", required=True, type=click.Path(path_type=Path),
              help="Output path for refined sites.")
@click.option("--pedigree", "pedigree_path", type=click.Path(exists=True, path_type=Path),
              help="PED file describing trios.")
@click.option("--panel", "panel_paths", multiple=True, type=click.Path(exists=True, path_type=Path),
              help="Population panel records, one JSON record per line. May be repeated.")
@click.pass_obj
def posteriors_cmd(
    ctx: CLIContext,
    sites_path: Path,
    out_path: Path,
    pedigree_path: Optional[Path],
    panel_paths: Tuple[Path, ...],
) -> None:
    """Compute genotype posteriors using population and family priors."""
    config = ctx.config
    source = JsonLinesSiteSource(sites_path)
    panel = InMemoryPanel.from_jsonl(*panel_paths) if panel_paths else None

    trios = []
    try:
        if pedigree_path is not None:
            samples, ploidies = _first_sample_ids(source)
            trios = Pedigree.from_ped(pedigree_path).valid_trios(samples, ploidies)

        pipeline = PosteriorPipeline.from_config(config, panel=panel, trios=trios)
        with JsonLinesSiteSink(out_path) as sink:
            pipeline.run(source.open(), sink)
    except CallsetRefineError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(json.dumps({
        "stage": "posteriors",
        "config_hash": config.config_hash(),
        "sites": pipeline.n_processed,
        "skipped": pipeline.n_skipped,
        "trios": len(pipeline.family_refiner.trios),
        "output": str(out_path),
    }, indent=2))


@main.command("filter")
@click.option("--sites", "sites_path", required=True, type=click.Path(exists=True, path_type=Path),
              help="Input sites, one JSON record per line.")
@click.option("--out", "out_path", required=True, type=click.Path(path_type=Path),
              help="Output TSV of per-site verdicts.")
@click.option("--report", "report_path", type=click.Path(path_type=Path),
              help="Optional TSV of per-filter counts.")
@click.pass_obj
def filter_cmd(ctx: CLIContext, sites_path: Path, out_path: Path, report_path: Optional[Path]) -> None:
    """Learn filter parameters and write per-site filter verdicts."""
    filter_config = ctx.config.filtering
    file_source = JsonLinesSiteSource(sites_path)
    if filter_config.two_pass_mode == "restream":
        source: SiteSource = file_source
    else:
        source = BufferedSource(file_source.open())

    try:
        engine = build_engine(filter_config)
        verdicts = engine.run(source)
    except CallsetRefineError as exc:
        raise click.ClickException(str(exc)) from exc

    out_path.parent.mkdir(parents=True, exist_ok=True)
    verdicts_to_frame(verdicts).to_csv(out_path, sep="\t", index=False)
    report = filter_report(verdicts, [s.filter_name for s in engine.strategies])
    if report_path is not None:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report.to_csv(report_path, sep="\t", index=False)

    click.echo(json.dumps({
        "stage": "filter",
        "sites": len(verdicts),
        "passed": sum(1 for v in verdicts if v.passed),
        "flagged": {row["filter"]: int(row["n_flagged"]) for row in report.to_dict("records")},
        "output": str(out_path),
    }, indent=2))


@main.command("validate-config")
@click.argument("config_file", type=click.Path(path_type=Path))
def validate_config_cmd(config_file: Path) -> None:
    """Validate a refinement configuration file."""
    try:
        is_valid, errors, warnings = validate_config_file(config_file)
    except CallsetRefineError as exc:
        raise click.ClickException(str(exc)) from exc

    for warning in warnings:
        click.echo(f"WARNING: {warning}")
    for error in errors:
        click.echo(f"ERROR: {error}")

    if not is_valid:
        raise click.ClickException(f"{config_file} is not a valid configuration ({len(errors)} errors)")
    click.echo(f"{config_file} is valid")


if __name__ == "__main__":  # pragma: no cover
    main()
