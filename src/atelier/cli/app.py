"""Typer CLI wiring the generation pipeline."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from uuid import UUID

import typer

from atelier.config import AppSettings
from atelier.domain import (
    ArtifactKind,
    AssetId,
    BatchId,
    CostEstimate,
    GenerationSpec,
    RefinementMode,
    RetryReport,
    SubmissionAborted,
)
from atelier.orchestration.observers import describe_quote

from .deps import get_container

app = typer.Typer(help="Atelier generation pipeline command-line interface")


@app.callback()
def _configure_logging() -> None:
    settings = AppSettings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _parse_batch_id(value: str) -> BatchId:
    try:
        return BatchId(UUID(value))
    except ValueError as exc:
        raise typer.BadParameter("batch-id must be a valid UUID") from exc


def _parse_references(values: list[str] | None) -> dict[str, Path]:
    references: dict[str, Path] = {}
    for value in values or []:
        name, sep, path = value.partition("=")
        if not sep or not name or not path:
            raise typer.BadParameter(f"reference {value!r} must look like name=path")
        references[name.strip()] = Path(path).expanduser()
    return references


def _build_spec(
    kind: ArtifactKind,
    mode: RefinementMode,
    prompt: str,
    negative_prompt: str,
    model: str | None,
    variations: int,
    seed: int | None,
    references: list[str] | None,
    auto_apply: bool = False,
) -> GenerationSpec:
    return GenerationSpec(
        kind=kind,
        refinement_mode=mode,
        prompt=prompt,
        negative_prompt=negative_prompt,
        model_id=model,
        variations=variations,
        custom_seed=seed,
        references=_parse_references(references),
        auto_apply=auto_apply,
    )


def _echo_report(report: RetryReport) -> None:
    batch = report.batch
    typer.echo(
        f"Batch {batch.batch_id}: {report.status} after {report.attempts} attempt(s), "
        f"{len(report.artifacts)} stored, {len(report.dropped)} dropped"
    )
    for artifact in report.artifacts:
        typer.echo(f"  {artifact.primary_path}")
    if report.applied:
        typer.echo(f"Applied to {batch.asset}")


KindOption = typer.Option(ArtifactKind.IMAGE, "--kind", help="Artifact kind to generate")
ModeOption = typer.Option(RefinementMode.GENERATION, "--mode", help="Refinement mode")
PromptOption = typer.Option("", "--prompt", help="Positive prompt")
NegativeOption = typer.Option("", "--negative-prompt", help="Negative prompt")
ModelOption = typer.Option(None, "--model", help="Remote model identifier")
VariationsOption = typer.Option(1, "--variations", min=1, help="Number of variations")
SeedOption = typer.Option(None, "--seed", min=0, help="Custom seed")
ReferenceOption = typer.Option(None, "--reference", help="Reference file as name=path")


@app.command("show-settings")
def show_settings() -> None:
    """Print the resolved application settings."""

    container = get_container()
    settings = container.settings
    typer.echo("Environment:\t" + settings.environment)
    typer.echo("Database URL:\t" + settings.database_url)
    typer.echo("Artifacts Root:\t" + str(settings.artifacts_root))
    typer.echo("API Base:\t" + settings.api_base)
    typer.echo("Backend:\t" + type(container.backend).__name__)
    typer.echo(f"Retries:\t{settings.retry_count}")


@app.command("quote")
def quote(
    asset: str,
    kind: ArtifactKind = KindOption,
    mode: RefinementMode = ModeOption,
    prompt: str = PromptOption,
    negative_prompt: str = NegativeOption,
    model: str | None = ModelOption,
    variations: int = VariationsOption,
    seed: int | None = SeedOption,
    reference: list[str] | None = ReferenceOption,
) -> None:
    """Estimate the points a generation would cost."""

    container = get_container()
    spec = _build_spec(kind, mode, prompt, negative_prompt, model, variations, seed, reference)
    outcome = asyncio.run(container.pipeline.quote(AssetId(asset), spec))
    if outcome is None:
        typer.echo("Quote superseded")
        raise typer.Exit(code=1)
    if not isinstance(outcome, CostEstimate):
        typer.echo(f"Quote failed: {describe_quote(outcome)}")
        raise typer.Exit(code=1)
    typer.echo(f"Estimated cost: {outcome.points_cost} points")


@app.command("generate")
def generate(
    asset: str,
    kind: ArtifactKind = KindOption,
    mode: RefinementMode = ModeOption,
    prompt: str = PromptOption,
    negative_prompt: str = NegativeOption,
    model: str | None = ModelOption,
    variations: int = VariationsOption,
    seed: int | None = SeedOption,
    reference: list[str] | None = ReferenceOption,
    auto_apply: bool = typer.Option(False, "--auto-apply", help="Apply the first result"),
) -> None:
    """Submit a generation and download its results."""

    container = get_container()
    spec = _build_spec(
        kind, mode, prompt, negative_prompt, model, variations, seed, reference, auto_apply
    )
    result = asyncio.run(container.pipeline.generate(AssetId(asset), spec))
    if isinstance(result, SubmissionAborted):
        typer.echo(f"Submission aborted: {result.reason}")
        raise typer.Exit(code=1)
    _echo_report(result)
    if not result.succeeded:
        raise typer.Exit(code=1)


@app.command("interrupted")
def interrupted(asset: str | None = typer.Option(None, help="Only show this asset")) -> None:
    """List batches that were still downloading when a process stopped."""

    container = get_container()
    batches = asyncio.run(
        container.pipeline.interrupted(AssetId(asset) if asset is not None else None)
    )
    if not batches:
        typer.echo("No interrupted batches")
        return
    for batch in batches:
        typer.echo(f"{batch.batch_id}\t{batch.asset}\t{batch.kind}\t{len(batch.groups)} groups")


@app.command("resume")
def resume(batch_id: str | None = typer.Argument(None, help="Resume only this batch")) -> None:
    """Resume interrupted batches left by earlier runs."""

    container = get_container()
    target = _parse_batch_id(batch_id) if batch_id is not None else None
    reports = asyncio.run(container.pipeline.resume(target))
    if not reports:
        typer.echo("Nothing to resume")
        return
    for report in reports:
        _echo_report(report)
    if not all(report.succeeded for report in reports):
        raise typer.Exit(code=1)


@app.command("discard")
def discard(
    batch_id: str | None = typer.Argument(None, help="Batch to discard"),
    all_batches: bool = typer.Option(False, "--all", help="Discard every interrupted batch"),
) -> None:
    """Forget interrupted batches without downloading them."""

    container = get_container()
    if all_batches:
        removed = asyncio.run(container.pipeline.discard_all())
        typer.echo(f"Discarded {removed} batches")
        return
    if batch_id is None:
        typer.echo("Provide a batch id or --all")
        raise typer.Exit(code=1)
    target = _parse_batch_id(batch_id)
    if not asyncio.run(container.pipeline.discard(target)):
        typer.echo(f"Batch {batch_id} not found")
        raise typer.Exit(code=1)
    typer.echo(f"Discarded {target}")


__all__ = ["app"]
