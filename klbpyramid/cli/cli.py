import logging
import pathlib

import click

from klbpyramid._version import __version__
from klbpyramid.builder import PyramidBuilder
from klbpyramid.codec import PyKlbCodec
from klbpyramid.dataset import (
    DescriptionParseError,
    DescriptionWriteError,
    load_description,
)
from klbpyramid.models import MipmapSettings
from klbpyramid.planner import log_plan

VERSION = __version__
_logger = logging.getLogger(__name__)

_DESCRIPTION_PATH = click.Path(
    dir_okay=False, resolve_path=True, path_type=pathlib.Path
)


@click.command()
@click.help_option("-h", "--help")
@click.version_option(version=VERSION)
@click.argument("description", type=_DESCRIPTION_PATH)
@click.argument("flags", nargs=-1)
@click.option(
    "--skip-first",
    is_flag=True,
    help="Do not write the first downsampled level "
    "(same as the 'skipfirst' token)",
)
@click.option(
    "--num-workers",
    "-j",
    type=click.IntRange(min=0),
    default=1,
    show_default=True,
    help="Number of views processed concurrently, 0 for one per processor",
)
@click.option(
    "--max-level-size",
    type=click.IntRange(min=1),
    default=MipmapSettings().max_level_size,
    show_default=True,
    help="Add levels while the coarsest level is larger than this size",
)
@click.option(
    "--max-levels",
    type=click.IntRange(min=1),
    default=MipmapSettings().max_levels,
    show_default=True,
    help="Maximum number of levels including full resolution",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Only log the planned levels, do not write any file",
)
def cli(
    description,
    flags,
    skip_first,
    num_workers,
    max_level_size,
    max_levels,
    dry_run,
):
    """\u001b[34;1m klb-pyramid: resolution levels for KLB datasets \u001b[0m

    Downsamples every view of the dataset in the DESCRIPTION XML file
    and advertises the new levels in the description.

    >> klb-pyramid dataset.xml

    Skip the first downsampled level:

    >> klb-pyramid dataset.xml skipfirst
    """
    for flag in flags:
        if flag.lower() == "skipfirst":
            skip_first = True
        else:
            _logger.warning(f"Ignoring unknown argument '{flag}'")
    settings = MipmapSettings(
        max_level_size=max_level_size, max_levels=max_levels
    )
    try:
        sequence = load_description(description, codec=PyKlbCodec())
        builder = PyramidBuilder(
            sequence,
            skip_first=skip_first,
            settings=settings,
            num_workers=num_workers,
        )
        if dry_run:
            log_plan(builder.plan)
            click.echo(
                f"Planned {builder.max_resolution_levels} resolution level(s)"
            )
            return
        report = builder()
    except (DescriptionParseError, DescriptionWriteError) as e:
        raise click.ClickException(str(e))
    click.echo(
        f"Wrote {len(report.written)} file(s) with "
        f"{report.num_levels} resolution level(s), "
        f"{len(report.failures)} failure(s)"
    )
