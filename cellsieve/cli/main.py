"""Command-line interface for cellsieve.

Provides CLI commands for QC, clustering and the full run.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click

from .. import __version__
from ..errors import CellSieveError


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("cellsieve")


def _load_config(config: Optional[str]):
    from cellsieve.pipeline import SieveConfig

    if config:
        return SieveConfig.from_yaml(Path(config))
    return SieveConfig()


def _gene_sets(
    counts: Any,
    logger: logging.Logger,
    mito_prefix: str,
    mito_genes: Optional[str],
    spike_prefix: str,
    spike_genes: Optional[str],
) -> Tuple[Dict[str, Any], Optional[Any]]:
    """Resolve the mitochondrial subset and spike-in set from files or name prefixes."""
    from cellsieve.core.qc import genes_with_prefix
    from cellsieve.io import load_gene_list

    if mito_genes:
        present = set(counts.gene_names)
        mito = [g for g in load_gene_list(mito_genes) if g in present]
    else:
        mito = genes_with_prefix(counts, mito_prefix)
    n_mito = int(mito.sum()) if hasattr(mito, "dtype") else len(mito)
    if n_mito == 0:
        logger.warning("No mitochondrial genes found; subset_percent will be 0")

    if spike_genes:
        present = set(counts.gene_names)
        spike = [g for g in load_gene_list(spike_genes) if g in present]
        spike = spike or None
    else:
        spike = genes_with_prefix(counts, spike_prefix)
        spike = spike if spike.any() else None
    if spike is None:
        logger.info("No spike-in features found; altexp_percent will be 0")

    return {"Mito": mito}, spike


def _gene_options(func):
    options = [
        click.option("--layer", default=None, help="Layer holding raw counts (default: X)"),
        click.option("--mito-prefix", default="mt-", show_default=True,
                     help="Gene-name prefix of mitochondrial genes"),
        click.option("--mito-genes", type=click.Path(exists=True),
                     help="File listing mitochondrial genes (overrides the prefix)"),
        click.option("--spike-prefix", default="ERCC-", show_default=True,
                     help="Gene-name prefix of spike-in features"),
        click.option("--spike-genes", type=click.Path(exists=True),
                     help="File listing spike-in features (overrides the prefix)"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group()
@click.version_option(version=__version__, prog_name="cellsieve")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """cellsieve: QC and clustering decisions for single-cell count data.

    Examples:

        # Compare cell QC policies and filter with the configured one
        cellsieve qc --input raw.h5ad --out qc/

        # Cluster filtered cells with all four methods
        cellsieve cluster --input qc/filtered.h5ad --out clusters/

        # Run everything from one config
        cellsieve run --input raw.h5ad --out results/ --config cellsieve.yaml
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad) with raw counts")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML)")
@_gene_options
@click.pass_context
def qc(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    layer: Optional[str],
    mito_prefix: str,
    mito_genes: Optional[str],
    spike_prefix: str,
    spike_genes: Optional[str],
) -> None:
    """Compute QC metrics, run all discard policies and filter.

    Writes per-policy masks, agreement tables and the filtered matrix.
    """
    logger = ctx.obj["logger"]

    import anndata as ad
    from cellsieve.core.qc import CountMatrix, QCEngine
    from cellsieve.io import ensure_output_dir, write_qc_reports

    out_dir = ensure_output_dir(output_path)
    try:
        cfg = _load_config(config)
        logger.info("Loading AnnData from %s", input_path)
        counts = CountMatrix.from_anndata(ad.read_h5ad(input_path), layer=layer)
        subsets, spike = _gene_sets(counts, logger, mito_prefix, mito_genes, spike_prefix, spike_genes)
        result = QCEngine(cfg.qc, logger).run(counts, subsets=subsets, spike_in=spike)
    except CellSieveError as e:
        raise click.ClickException(str(e)) from e

    write_qc_reports(result, out_dir)
    output_file = out_dir / "filtered.h5ad"
    result.filtered.to_anndata().write_h5ad(output_file)

    click.echo(
        f"QC complete ({result.selected_cell_policy}): "
        f"{result.filtered.n_cells}/{counts.n_cells} cells, "
        f"{result.filtered.n_genes}/{counts.n_genes} genes kept"
    )
    click.echo(f"Output saved to: {output_file}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad) of QC-filtered cells")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML)")
@click.option("--basis", default="X_pca", show_default=True,
              help="Embedding in adata.obsm; computed by PCA if absent")
@click.option("--n-dims", type=int, default=None, help="Use only the first N embedding dimensions")
@click.option("--layer", default=None, help="Layer holding raw counts, for PCA (default: X)")
@click.option("--method", type=click.Choice(["walktrap", "louvain", "kmeans", "hclust"]),
              default=None, help="Canonical method (overrides the config)")
@click.pass_context
def cluster(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    basis: str,
    n_dims: Optional[int],
    layer: Optional[str],
    method: Optional[str],
) -> None:
    """Cluster cells with walktrap, louvain, k-means and hierarchical methods.

    Labels are added to obs as ``cluster_<method>`` plus ``cluster`` for the
    canonical method.
    """
    logger = ctx.obj["logger"]

    import anndata as ad
    from cellsieve.core.clustering import ClusteringEngine, Embedding, compute_pca
    from cellsieve.core.qc import CountMatrix
    from cellsieve.io import ensure_output_dir, write_clustering_reports

    out_dir = ensure_output_dir(output_path)
    try:
        cfg = _load_config(config)
        if method:
            cfg.clustering.cluster.selected_method = method

        logger.info("Loading AnnData from %s", input_path)
        adata = ad.read_h5ad(input_path)
        if basis in adata.obsm:
            embedding = Embedding.from_anndata(adata, basis=basis, n_dims=n_dims)
        else:
            logger.info("Embedding '%s' not found; computing PCA", basis)
            emb_cfg = cfg.embedding
            embedding = compute_pca(
                CountMatrix.from_anndata(adata, layer=layer),
                n_comps=n_dims or emb_cfg.n_comps,
                seed=emb_cfg.seed,
                target_sum=emb_cfg.target_sum,
            )
            adata.obsm["X_pca"] = embedding.values

        result = ClusteringEngine(cfg.clustering, logger).run(embedding)
    except CellSieveError as e:
        raise click.ClickException(str(e)) from e

    write_clustering_reports(result, out_dir)
    for name, labeling in result.clusters.items():
        adata.obs[f"cluster_{name}"] = labeling.to_series().astype(str).astype("category").values
    adata.obs["cluster"] = result.selected.to_series().astype(str).astype("category").values
    output_file = out_dir / "clustered.h5ad"
    adata.write_h5ad(output_file)

    for name, n in result.n_clusters.items():
        marker = " (selected)" if name == result.clusters.selected_method else ""
        click.echo(f"{name}: {n} clusters{marker}")
    click.echo(f"Output saved to: {output_file}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad) with raw counts")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML)")
@_gene_options
@click.pass_context
def run(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    layer: Optional[str],
    mito_prefix: str,
    mito_genes: Optional[str],
    spike_prefix: str,
    spike_genes: Optional[str],
) -> None:
    """Run QC, PCA and clustering end to end.

    Stage logs are written to ``<out>/logs``.
    """
    logger = ctx.obj["logger"]
    verbose = ctx.obj["verbose"] or ctx.obj["debug"]

    import anndata as ad
    from cellsieve.core.qc import CountMatrix
    from cellsieve.io import ensure_output_dir, log_json, write_clustering_reports, write_qc_reports
    from cellsieve.pipeline import PipelineLogger, SievePipeline

    out_dir = ensure_output_dir(output_path)
    pipeline_logger = PipelineLogger(
        str(out_dir / "logs"), log_level="DEBUG" if verbose else "INFO"
    )
    pipeline_logger.setup()

    try:
        cfg = _load_config(config)
        logger.info("Loading AnnData from %s", input_path)
        counts = CountMatrix.from_anndata(ad.read_h5ad(input_path), layer=layer)
        subsets, spike = _gene_sets(counts, logger, mito_prefix, mito_genes, spike_prefix, spike_genes)
        result = SievePipeline(cfg, pipeline_logger).run(counts, subsets=subsets, spike_in=spike)
    except CellSieveError as e:
        raise click.ClickException(str(e)) from e
    finally:
        pipeline_logger.close()

    write_qc_reports(result.qc, out_dir / "qc")
    write_clustering_reports(result.clustering, out_dir / "clustering")
    cfg.to_yaml(out_dir / "config_used.yaml")
    log_json(
        out_dir / "logs" / "runs.jsonl",
        {"input": str(input_path), "config": config, **result.to_dict()},
    )

    adata = result.filtered.to_anndata()
    adata.obsm["X_pca"] = result.embedding.values
    for name, labeling in result.clustering.clusters.items():
        adata.obs[f"cluster_{name}"] = labeling.to_series().astype(str).astype("category").values
    adata.obs["cluster"] = result.clustering.selected.to_series().astype(str).astype("category").values
    output_file = out_dir / "cellsieve.h5ad"
    adata.write_h5ad(output_file)

    click.echo(
        f"Pipeline complete: {result.filtered.n_cells} cells, "
        f"{result.clustering.selected.n_clusters} clusters "
        f"({result.clustering.clusters.selected_method})"
    )
    click.echo(f"Output saved to: {output_file}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
