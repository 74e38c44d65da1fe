"""kubesum command line.

    kubesum run                      run the controller (same as python -m kubesum)
    kubesum drift                    audit declared checksums; exit 1 on drift
    kubesum checksum FILE            print the digest kubesum would declare
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import BinaryIO

import click

from kubesum import __version__
from kubesum.checksum.engine import checksum as compute_checksum
from kubesum.checksum.engine import normalize
from kubesum.config import load_config
from kubesum.models.drift import DriftReport
from kubesum.models.sources import NormalizationPolicy
from kubesum.models.workloads import WorkloadKind
from kubesum.observability.logging import setup_logging

_POLICIES = [p.value for p in NormalizationPolicy]
_KINDS = [k.value for k in WorkloadKind]


@click.group()
@click.version_option(__version__, prog_name="kubesum")
def cli() -> None:
    """Roll out workloads when the Secrets and ConfigMaps they consume change."""


@cli.command()
def run() -> None:
    """Run the reconciliation controller until SIGTERM/SIGINT."""
    from kubesum.app import main

    asyncio.run(main())


@cli.command()
@click.option("--namespace", "-n", "namespaces", multiple=True, help="Namespace to audit (repeatable).")
@click.option("--kind", "kinds", multiple=True, type=click.Choice(_KINDS), help="Workload kind (repeatable).")
@click.option("--selector", default=None, help="Opt-in label selector (default: KUBESUM_OPT_IN_SELECTOR).")
@click.option(
    "--source-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Read sources from <dir>/<ns>/configmap|secret/<name>/<key> instead of the cluster.",
)
@click.option(
    "--manifests",
    "manifests",
    multiple=True,
    type=click.Path(exists=True, path_type=Path),
    help="YAML file or directory of rendered manifests to audit offline (repeatable).",
)
@click.option("--output", "-o", type=click.Choice(["text", "json"]), default="text", show_default=True)
@click.option("--log-level", default="warning", show_default=True)
def drift(
    namespaces: tuple[str, ...],
    kinds: tuple[str, ...],
    selector: str | None,
    source_dir: Path | None,
    manifests: tuple[Path, ...],
    output: str,
    log_level: str,
) -> None:
    """Report workloads whose declared checksums no longer match their sources."""
    setup_logging(log_level)
    report = asyncio.run(_run_drift(list(namespaces), list(kinds), selector, source_dir, list(manifests)))

    if output == "json":
        click.echo(json.dumps(report.to_records(), indent=2))
    else:
        _print_report(report)
    sys.exit(1 if report.has_drift else 0)


async def _run_drift(
    namespaces: list[str],
    kinds: list[str],
    selector: str | None,
    source_dir: Path | None,
    manifests: list[Path],
) -> DriftReport:
    from kubesum.controller.selector import LabelSelector
    from kubesum.drift import DriftDetector, ManifestSet
    from kubesum.fetcher import ContentFetcher, FileSourceReader
    from kubesum.graph import ReferenceGraphBuilder

    config = load_config()
    workload_kinds = [WorkloadKind(k) for k in kinds] or config.watch.workload_kinds
    scope = namespaces or config.watch.namespaces
    label_selector = config.watch.opt_in_selector if selector is None else selector

    if manifests:
        manifest_set = ManifestSet.load(manifests)
        opt_in = LabelSelector.parse(label_selector)
        workloads = [
            (ref, obj)
            for ref, obj in manifest_set.workloads
            if ref.kind in workload_kinds
            and (not scope or ref.namespace in scope)
            and opt_in.matches((obj.get("metadata") or {}).get("labels") or {})
        ]
        reader = manifest_set
    else:
        from kubesum.app import load_kubernetes_config
        from kubesum.cluster import ClusterClient

        await load_kubernetes_config()
        cluster = ClusterClient()
        workloads = await cluster.list_tracked_workloads(workload_kinds, scope, label_selector)
        reader = cluster

    if source_dir is not None:
        reader = FileSourceReader(source_dir)

    detector = DriftDetector(
        builder=ReferenceGraphBuilder(default_policy=config.checksum.default_normalization),
        fetcher=ContentFetcher(reader),  # type: ignore[arg-type]
        algorithm=config.checksum.algorithm,
    )
    return await detector.detect(workloads)


def _print_report(report: DriftReport) -> None:
    if not report.entries:
        click.echo("No tracked workloads found.")
        return
    for entry in report.entries:
        if not entry.has_drift:
            click.echo(f"ok       {entry.workload}")
            continue
        click.echo(f"DRIFT    {entry.workload}")
        if entry.error:
            click.echo(f"  error:   {entry.error}")
        for key in entry.stale_keys:
            click.echo(f"  stale:   {key}")
        for key in entry.missing_keys:
            click.echo(f"  missing: {key}")
    drifted = len(report.drifted())
    click.echo(f"\n{drifted} of {len(report.entries)} workload(s) drifted.")


@cli.command()
@click.argument("file", type=click.File("rb"))
@click.option("--policy", type=click.Choice(_POLICIES), default=NormalizationPolicy.PRESERVE.value, show_default=True)
@click.option("--algorithm", default=None, help="hashlib algorithm (default: KUBESUM_HASH_ALGORITHM or sha256).")
def checksum(file: BinaryIO, policy: str, algorithm: str | None) -> None:
    """Print the checksum kubesum declares for FILE's content ('-' for stdin)."""
    algo = algorithm or load_config().checksum.algorithm
    content = normalize(file.read(), NormalizationPolicy(policy))
    try:
        digest = compute_checksum(content, algo)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--algorithm") from exc
    click.echo(digest)
