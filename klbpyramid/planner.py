"""Plan the resolution levels of each view setup.

A proposal lists *cumulative* downsampling factors per level
(relative to full resolution). The plan holds, per level, the image
dimensions, the voxel spacing, and the *relative* factor that turns
the previous level into this one.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Mapping, Sequence

from klbpyramid.models import MipmapSettings, ViewSetup

_logger = logging.getLogger(__name__)

Factors = tuple[int, int, int]


@dataclass(frozen=True)
class LevelInfo:
    """Geometry of one resolution level, in XYZ order."""

    dimensions: tuple[int, int, int]
    spacing: tuple[float, float, float]
    factor: Factors = (1, 1, 1)


MipmapPlan = Mapping[int, tuple[LevelInfo, ...]]


def _largest_power_of_two(value: int) -> int:
    return 1 << (max(1, value).bit_length() - 1)


def propose_mipmaps(
    setup: ViewSetup, settings: MipmapSettings | None = None
) -> list[Factors]:
    """Propose cumulative power-of-two downsampling factors for a setup.

    Anisotropic axes are downsampled later than the finest axis
    until the voxel size is closer to isotropic.

    Parameters
    ----------
    setup : ViewSetup
        View setup with its full resolution size and voxel size.
    settings : MipmapSettings, optional
        Proposer settings, by default ``MipmapSettings()``

    Returns
    -------
    list[Factors]
        Cumulative XYZ factors per level, starting with ``(1, 1, 1)``.
    """
    settings = settings or MipmapSettings()
    finest = min(setup.voxel_size)
    delays = [round(math.log2(s / finest)) for s in setup.voxel_size]
    # an axis stops being reduced once it is down to one sample
    caps = [_largest_power_of_two(size) for size in setup.size]
    resolutions = [(1, 1, 1)]
    while len(resolutions) < settings.max_levels:
        current = resolutions[-1]
        if max(n // f for n, f in zip(setup.size, current)) <= (
            settings.max_level_size
        ):
            break
        level = len(resolutions)
        proposal = tuple(
            min(2 ** max(0, level - delay), cap)
            for delay, cap in zip(delays, caps)
        )
        if proposal == current:
            break
        resolutions.append(proposal)
    return resolutions


def plan_levels(
    dimensions: Sequence[int],
    spacing: Sequence[float],
    resolutions: Sequence[Sequence[int]],
) -> tuple[LevelInfo, ...]:
    """Turn cumulative factors into a chain of levels.

    Each cumulative factor must be an integer multiple
    of the factor of the previous level.

    Parameters
    ----------
    dimensions : Sequence[int]
        XYZ dimensions at full resolution.
    spacing : Sequence[float]
        XYZ voxel spacing at full resolution.
    resolutions : Sequence[Sequence[int]]
        Cumulative XYZ factors per level, the first being ``(1, 1, 1)``.
        It is not modified.

    Returns
    -------
    tuple[LevelInfo, ...]
        One entry per level, level 0 being full resolution.
    """
    levels = [LevelInfo(tuple(dimensions), tuple(map(float, spacing)))]
    for previous, cumulative in zip(resolutions, resolutions[1:]):
        factor = tuple(c // p for c, p in zip(cumulative, previous))
        last = levels[-1]
        levels.append(
            LevelInfo(
                dimensions=tuple(
                    n // f for n, f in zip(last.dimensions, factor)
                ),
                spacing=tuple(s * f for s, f in zip(last.spacing, factor)),
                factor=factor,
            )
        )
    return tuple(levels)


def skip_first_level(levels: Sequence[LevelInfo]) -> tuple[LevelInfo, ...]:
    """Drop the first downsampled level of a chain.

    The factor of the dropped level is folded into the next one,
    so that the new level 1 is computed from full resolution directly.
    Coarser levels are kept as they are.
    A chain of one or two levels keeps full resolution only.
    """
    if len(levels) < 2:
        return tuple(levels)
    skipped = list(levels[:1])
    if len(levels) > 2:
        folded = levels[2]
        skipped.append(
            LevelInfo(
                dimensions=folded.dimensions,
                spacing=folded.spacing,
                factor=tuple(
                    a * b for a, b in zip(folded.factor, levels[1].factor)
                ),
            )
        )
        skipped.extend(levels[3:])
    return tuple(skipped)


def plan_mipmaps(
    view_setups: Sequence[ViewSetup],
    proposals: Mapping[int, Sequence[Sequence[int]]] | None = None,
    skip_first: bool = False,
    settings: MipmapSettings | None = None,
) -> dict[int, tuple[LevelInfo, ...]]:
    """Plan the level chain of every view setup.

    Parameters
    ----------
    view_setups : Sequence[ViewSetup]
        View setups of the dataset.
    proposals : Mapping[int, Sequence[Sequence[int]]], optional
        Cumulative factors per view setup id, proposed with
        :func:`propose_mipmaps` for setups that are missing,
        by default None
    skip_first : bool, optional
        Drop the first downsampled level, by default False
    settings : MipmapSettings, optional
        Proposer settings, by default None

    Returns
    -------
    dict[int, tuple[LevelInfo, ...]]
        Level chain per view setup id.
    """
    proposals = proposals or {}
    plan = {}
    for setup in view_setups:
        resolutions = proposals.get(setup.id)
        if resolutions is None:
            resolutions = propose_mipmaps(setup, settings)
        levels = plan_levels(setup.size, setup.voxel_size, resolutions)
        if skip_first:
            levels = skip_first_level(levels)
        plan[setup.id] = levels
    return plan


def num_resolution_levels(plan: MipmapPlan) -> dict[int, int]:
    """Number of levels per view setup id."""
    return {setup_id: len(levels) for setup_id, levels in plan.items()}


def max_resolution_levels(plan: MipmapPlan) -> int:
    """Highest number of levels across view setups, 1 for an empty plan."""
    return max(num_resolution_levels(plan).values(), default=1)


def log_plan(plan: MipmapPlan) -> None:
    _logger.info("Downsampling factors and image dimensions")
    for setup_id, levels in plan.items():
        _logger.info(f"ViewSetupId {setup_id}")
        for level, info in enumerate(levels):
            _logger.info(
                f"  Level {level} image dimensions      {info.dimensions}"
            )
            _logger.info(f"          sampling              {info.spacing}")
            _logger.info(f"          relative downsampling {info.factor}")
