"""Generate the resolution levels of a KLB dataset."""

from __future__ import annotations

import logging
import multiprocessing as mp
from dataclasses import dataclass, field
from enum import Enum
from multiprocessing.pool import ThreadPool
from typing import Callable, Mapping, Sequence

from tqdm import tqdm
from tqdm.contrib.logging import logging_redirect_tqdm

from klbpyramid.codec import CodecWriteError, HeaderReadError, KlbCodec
from klbpyramid.dataset import SequenceDescription, update_resolution_level_tag
from klbpyramid.downsample import (
    UnsupportedSampleType,
    VolumeTooLarge,
    downsample,
    to_le_bytes,
)
from klbpyramid.models import MipmapSettings
from klbpyramid.planner import (
    log_plan,
    max_resolution_levels,
    num_resolution_levels,
    plan_mipmaps,
)

__all__ = ["BuildReport", "PyramidBuilder", "ViewState"]
_logger = logging.getLogger(__name__)


class ViewState(str, Enum):
    LOADING = "LOADING"
    LEVEL = "LEVEL"
    DONE = "DONE"


@dataclass(frozen=True)
class LevelFailure:
    time_point: int
    setup: int
    level: int
    error: str


@dataclass
class BuildReport:
    """Outcome of a pyramid build.

    ``num_levels`` is the planned number of levels, which is advertised
    in the description even when some files could not be written.
    """

    num_levels: int = 1
    written: list[str] = field(default_factory=list)
    failures: list[LevelFailure] = field(default_factory=list)

    def extend(self, other: "BuildReport") -> None:
        self.written.extend(other.written)
        self.failures.extend(other.failures)


class PyramidBuilder:
    """Downsample every view of a KLB dataset into resolution levels.

    Each level is computed from the previous one by block averaging
    and written next to the full resolution file.
    Failures are logged and collected, they do not stop the build.

    Parameters
    ----------
    sequence : SequenceDescription
        Loaded dataset description.
    codec : KlbCodec, optional
        Codec used to write the levels,
        by default the codec of the image loader
    skip_first : bool, optional
        Do not write the first downsampled level, by default False
    proposals : Mapping[int, Sequence[Sequence[int]]], optional
        Cumulative downsampling factors per view setup id,
        proposed from the voxel size when missing, by default None
    settings : MipmapSettings, optional
        Mipmap proposer settings, by default None
    num_workers : int, optional
        Number of views processed concurrently, 0 for one per processor,
        by default 1
    on_state : Callable[[int, int, ViewState, int], None], optional
        Called with (time point, setup id, state, level)
        whenever a view changes state, by default None
    """

    def __init__(
        self,
        sequence: SequenceDescription,
        codec: KlbCodec | None = None,
        skip_first: bool = False,
        proposals: Mapping[int, Sequence[Sequence[int]]] | None = None,
        settings: MipmapSettings | None = None,
        num_workers: int = 1,
        on_state: Callable[[int, int, ViewState, int], None] | None = None,
    ):
        self.sequence = sequence
        self.codec = codec or sequence.image_loader.codec
        self.skip_first = skip_first
        self.num_workers = num_workers or mp.cpu_count()
        self._on_state = on_state
        self.plan = plan_mipmaps(
            sequence.view_setups,
            proposals=proposals,
            skip_first=skip_first,
            settings=settings,
        )
        self.num_resolution_levels = num_resolution_levels(self.plan)

    @property
    def max_resolution_levels(self) -> int:
        return max_resolution_levels(self.plan)

    def _notify(
        self, time_point: int, setup: int, state: ViewState, level: int = 0
    ) -> None:
        _logger.debug(
            f"Time point {time_point} view setup {setup}: {state.value}"
            + (f" {level} of {len(self.plan[setup])}" if level else "")
        )
        if self._on_state is not None:
            self._on_state(time_point, setup, state, level)

    def build_view(self, time_point: int, setup: int) -> BuildReport:
        """Write all downsampled levels of one view.

        Parameters
        ----------
        time_point : int
            Time point id.
        setup : int
            View setup id.

        Returns
        -------
        BuildReport
            Written paths and failures of this view.
        """
        levels = self.plan[setup]
        report = BuildReport(num_levels=len(levels))
        if len(levels) < 2:
            self._notify(time_point, setup, ViewState.DONE)
            return report
        loader = self.sequence.image_loader
        self._notify(time_point, setup, ViewState.LOADING)
        try:
            sample_type = loader.image_type(setup)
            current = loader.load_full(time_point, setup)
        except HeaderReadError as e:
            _logger.error(str(e))
            report.failures.append(LevelFailure(time_point, setup, 0, str(e)))
            self._notify(time_point, setup, ViewState.DONE)
            return report
        for level, info in enumerate(levels[1:], start=1):
            self._notify(time_point, setup, ViewState.LEVEL, level)
            _logger.debug(f"     image dimensions      {info.dimensions}")
            _logger.debug(f"     sampling              {info.spacing}")
            _logger.debug(f"     relative downsampling {info.factor}")
            downsampled = downsample(current, info.factor, sample_type)
            # the previous level is no longer needed
            current = None
            dimensions = tuple(reversed(downsampled.shape))
            if dimensions != tuple(info.dimensions):
                _logger.warning(
                    f"Level {level} of view setup {setup} at time point "
                    f"{time_point} has dimensions {dimensions}, "
                    f"planned {info.dimensions}."
                )
            try:
                data = to_le_bytes(downsampled, sample_type)
            except (UnsupportedSampleType, VolumeTooLarge) as e:
                _logger.error(
                    f"Skipping levels {level} to {len(levels) - 1} of view "
                    f"setup {setup} at time point {time_point}: {e}"
                )
                report.failures.append(
                    LevelFailure(time_point, setup, level, str(e))
                )
                break
            path = self.sequence.resolver.file_path(time_point, setup, level)
            _logger.debug(path)
            try:
                self.codec.write_full(
                    data,
                    path,
                    dimensions=(*dimensions, 1, 1),
                    sample_type=sample_type,
                    spacing=(*info.spacing, 1.0, 1.0),
                )
            except CodecWriteError as e:
                _logger.error(str(e))
                report.failures.append(
                    LevelFailure(time_point, setup, level, str(e))
                )
            else:
                report.written.append(path)
            current = downsampled
        self._notify(time_point, setup, ViewState.DONE)
        return report

    def _build_unit(self, unit: tuple[int, int]) -> BuildReport:
        return self.build_view(*unit)

    def __call__(self, update_description: bool = True) -> BuildReport:
        """Build the pyramid of every view and update the description.

        Parameters
        ----------
        update_description : bool, optional
            Advertise the planned number of levels in the
            dataset description, by default True

        Returns
        -------
        BuildReport
            Written paths and failures, ordered by time point
            then view setup.
        """
        log_plan(self.plan)
        report = BuildReport(num_levels=self.max_resolution_levels)
        units = [
            (time_point, setup.id)
            for time_point in self.sequence.time_points
            for setup in self.sequence.view_setups
        ]
        _logger.info("Starting downsampling")
        with logging_redirect_tqdm():
            if self.num_workers > 1 and len(units) > 1:
                num_workers = min(self.num_workers, len(units))
                _logger.info(f"Starting thread pool with {num_workers} threads")
                with ThreadPool(num_workers) as pool:
                    results = pool.imap(self._build_unit, units)
                    for result in tqdm(results, total=len(units)):
                        report.extend(result)
            else:
                for unit in tqdm(units):
                    report.extend(self._build_unit(unit))
        if report.failures:
            _logger.warning(
                f"{len(report.failures)} level(s) could not be written."
            )
        if update_description:
            update_resolution_level_tag(
                self.sequence.xml_path, report.num_levels
            )
        _logger.info("Done.")
        return report
