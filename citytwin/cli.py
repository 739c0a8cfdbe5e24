"""Click CLI commands for citytwin."""

import logging
import pathlib
import sys
from dataclasses import replace

import click

from . import classify as classify_mod
from .config import ExportConfig
from .errors import DocumentOpenError
from .exporter import export_file
from .models import ClassifyMode, ExportStatus
from .scene import open_document

logger = logging.getLogger(__name__)

EXIT_CODES = {
    ExportStatus.success: 0,
    ExportStatus.failure: 1,
    ExportStatus.cancel: 2,
    ExportStatus.nothing: 3,
}


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def cli(verbose: bool):
    """Export layered city models to ASCII STL solids."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(message)s")


@cli.command()
@click.argument('input_path', type=click.Path(dir_okay=False))
@click.argument('output_path', type=click.Path(dir_okay=False))
@click.option('--mode', type=click.Choice([m.value for m in ClassifyMode]),
              default=None, help='Export every category, or buildings only')
@click.option('--other-as-building', is_flag=True,
              help="Name unclassified solids 'building<n>' instead of 'other<n>'")
@click.option('--plane-y', type=float, default=None, help='Height of the datum plane')
@click.option('--center-vertical', is_flag=True,
              help='Also centre the model vertically')
@click.option('--workers', '-j', type=int, default=None,
              help='Tessellation worker threads')
@click.option('--metadata-dir', type=click.Path(file_okay=False), default=None,
              help='Write per-category CSV attribute tables here')
@click.option('--max-edge-length', type=float, default=None,
              help='Longest triangle edge produced when meshing surfaces')
def export(input_path: str, output_path: str, mode, other_as_building, plane_y,
           center_vertical, workers, metadata_dir, max_edge_length):
    """Export INPUT_PATH (.3dm or .json) to an ASCII STL at OUTPUT_PATH."""
    config = ExportConfig.from_env(
        mode=ClassifyMode(mode) if mode else None,
        other_as_building=True if other_as_building else None,
        plane_y=plane_y,
        center_vertical=True if center_vertical else None,
        workers=workers,
        metadata_dir=pathlib.Path(metadata_dir) if metadata_dir else None,
        show_progress=True,
    )
    if max_edge_length is not None:
        config.meshing = replace(config.meshing, max_edge_length=max_edge_length)

    try:
        result = export_file(input_path, output_path, config)
    except KeyboardInterrupt:
        click.echo("cancel: interrupted", err=True)
        sys.exit(EXIT_CODES[ExportStatus.cancel])

    if result.status == ExportStatus.success:
        click.echo(f"\n{'='*50}")
        click.echo(f"Exported {len(result.solids)} solids to {result.output_path}")
        for solid in result.solids:
            click.echo(f"  {solid.name}: {solid.facets} facets")
        if result.omitted:
            click.echo(f"Omitted {len(result.omitted)} empty solids")
        for family, path in result.metadata_files.items():
            click.echo(f"  {family} table: {path}")
        click.echo(f"{'='*50}")
    else:
        click.echo(f"{result.status.value}: {result.message}", err=True)
    sys.exit(EXIT_CODES[result.status])


@cli.command()
@click.argument('input_path', type=click.Path(dir_okay=False))
def layers(input_path: str):
    """List every layer of INPUT_PATH with its resolved category."""
    try:
        with open_document(input_path) as document:
            layer_map = classify_mod.build_layer_map(document)
            for layer_id in document.layers:
                category = classify_mod.classify_layer(layer_id, layer_map, document)
                click.echo(f"{document.full_path(layer_id)}\t{category.value}")
    except DocumentOpenError as e:
        raise click.ClickException(str(e))


def main():
    cli()


if __name__ == '__main__':
    main()
