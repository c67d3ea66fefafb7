"""Map (time point, view setup, resolution level) to KLB file paths.

A dataset is described by one exemplar file path and a table of
:class:`~klbpyramid.models.MultiFileNameTag` descriptors, e.g.
``/data/SPM00_TM000000_CM00_CHN01.klb`` with the tags ``TM`` (time),
``CM`` (angle) and ``CHN`` (channel).
Angle, channel and illumination slots are enumerated into view setups,
time point and resolution level slots are substituted on lookup.
"""

from __future__ import annotations

import logging
import math
import os
from pathlib import Path
from typing import Sequence

from klbpyramid.codec import (
    KLB_EXTENSION,
    HeaderReadError,
    KlbCodec,
    KlbHeader,
    PyKlbCodec,
)
from klbpyramid.models import Dimension, MultiFileNameTag
from klbpyramid.sample_types import SampleType

_logger = logging.getLogger(__name__)

# level suffix used when the template has no resolution level slot
IMPLICIT_LEVEL_TAG = "RESLVL"

_DIGITS = "0123456789"
_SETUP_DIMENSIONS = (
    Dimension.ANGLE,
    Dimension.CHANNEL,
    Dimension.ILLUMINATION,
)


def find_tag(text: str, tag: str, start: int = 0) -> tuple[int, int] | None:
    """Locate the first occurrence of ``tag`` followed by digits.

    Parameters
    ----------
    text : str
        Text to scan.
    tag : str
        Slot label, e.g. ``"TM"``.
    start : int, optional
        Index to start scanning from, by default 0

    Returns
    -------
    tuple[int, int] | None
        Start and end index of the label and its digits,
        None if there is no such slot.
    """
    while True:
        begin = text.find(tag, start)
        if begin < 0:
            return None
        end = begin + len(tag)
        while end < len(text) and text[end] in _DIGITS:
            end += 1
        if end > begin + len(tag):
            return begin, end
        start = begin + 1


def substitute_tag(text: str, tag: str, replacement: str) -> str:
    """Replace every ``tag`` + digits slot of ``text`` with ``replacement``."""
    parts = []
    position = 0
    while (span := find_tag(text, tag, position)) is not None:
        begin, end = span
        parts.append(text[position:begin])
        parts.append(replacement)
        position = end
    parts.append(text[position:])
    return "".join(parts)


def format_tag(tag: str, value: int, width: int) -> str:
    return f"{tag}{value:0{width}d}"


class PartitionResolver:
    """File paths of a KLB dataset stored as one file per
    time point, view setup and resolution level.

    Parameters
    ----------
    template : str | Path
        Path of one file of the dataset, e.g.
        ``/data/vol_TM000000_CHN00.klb``.
    name_tags : Sequence[MultiFileNameTag]
        Numbered slots that may appear in the template.
    codec : KlbCodec, optional
        Codec used for header queries, by default :class:`PyKlbCodec`

    Notes
    -----
    Enumerated slots (angle, channel, illumination) are only used when
    they appear in the template and take more than one value.
    They are written as ``index * stride``, not ``first + index * stride``.

    A resolution level descriptor with ``last > 0`` sets the number of
    levels even if its tag does not appear in the template. Paths of
    levels above 0 are then formed by inserting ``.RESLVL<level>`` before
    the file extension, regardless of the descriptor's tag.
    """

    def __init__(
        self,
        template: str | Path,
        name_tags: Sequence[MultiFileNameTag],
        codec: KlbCodec | None = None,
    ):
        self._reset(codec)
        template = str(template)
        enumerated: list[tuple[MultiFileNameTag, str, int]] = []
        for name_tag in name_tags:
            tag = name_tag.tag.strip()
            if not tag:
                continue
            if (
                name_tag.dimension == Dimension.RESOLUTION_LEVEL
                and name_tag.last > 0
            ):
                self._level_tag = tag
                self._level_match = None
                self.num_levels = name_tag.last + 1
            span = find_tag(template, tag)
            if span is None:
                continue
            match = template[span[0] : span[1]]
            width = len(match) - len(tag)
            if name_tag.dimension == Dimension.TIME:
                self._time_tag = tag
                self._time_match = match
                self._time_width = width
                self.first_time = name_tag.first
                self.last_time = name_tag.last
            elif name_tag.dimension == Dimension.RESOLUTION_LEVEL:
                self._level_tag = tag
                self._level_match = match
                self._level_width = width
                self.num_levels = name_tag.last + 1
            elif name_tag.depth > 1:
                enumerated.append((name_tag, tag, width))

        depths = [name_tag.depth for name_tag, _, _ in enumerated]
        for setup in range(math.prod(depths)):
            path = template
            ids = {dimension: 0 for dimension in _SETUP_DIMENSIONS}
            names = {dimension: "0" for dimension in _SETUP_DIMENSIONS}
            for d, (name_tag, tag, width) in enumerate(enumerated):
                index = (setup // math.prod(depths[d + 1 :])) % depths[d]
                value = index * name_tag.stride
                ids[name_tag.dimension] = index
                names[name_tag.dimension] = str(value)
                path = substitute_tag(path, tag, format_tag(tag, value, width))
            self._add_setup(path, ids, names)
        _logger.debug(
            f"Resolved {self.num_view_setups} view setup(s) "
            f"and {self.num_levels} resolution level(s) from {template}"
        )

    def _reset(self, codec: KlbCodec | None) -> None:
        self._codec = codec if codec is not None else PyKlbCodec()
        self._time_tag = self._time_match = None
        self._time_width = 0
        self._level_tag = self._level_match = None
        self._level_width = 0
        self._sampling = None
        self.first_time = 0
        self.last_time = 0
        self.num_levels = 1
        self.setup_templates: list[str] = []
        # templates that still carry the resolution level slot
        self._level_templates: list[str] = []
        self._ids: list[dict[Dimension, int]] = []
        self._names: list[dict[Dimension, str]] = []

    def _add_setup(
        self,
        path: str,
        ids: dict[Dimension, int],
        names: dict[Dimension, str],
    ) -> None:
        self._level_templates.append(path)
        if self._level_match is not None:
            path = path.replace("." + self._level_match, "")
        self.setup_templates.append(path)
        self._ids.append(ids)
        self._names.append(names)

    @classmethod
    def from_setup_templates(
        cls,
        setup_templates: Sequence[str | Path],
        time_tag: str,
        first_time: int,
        last_time: int,
        level_tag: str | None = None,
        num_levels: int = 1,
        codec: KlbCodec | None = None,
    ) -> "PartitionResolver":
        """Create a resolver from explicit per-setup templates.

        Levels above 0 are addressed with the ``.RESLVL<level>`` suffix.
        Angle, channel and illumination ids are all 0.
        """
        resolver = cls.__new__(cls)
        resolver._reset(codec)
        resolver._time_tag = time_tag
        resolver._level_tag = level_tag
        resolver.first_time = first_time
        resolver.last_time = last_time
        resolver.num_levels = num_levels
        for template in map(str, setup_templates):
            span = find_tag(template, time_tag)
            if span is not None and resolver._time_match is None:
                resolver._time_match = template[span[0] : span[1]]
                resolver._time_width = span[1] - span[0] - len(time_tag)
            resolver._add_setup(
                template,
                {dimension: 0 for dimension in _SETUP_DIMENSIONS},
                {dimension: "0" for dimension in _SETUP_DIMENSIONS},
            )
        return resolver

    @property
    def num_view_setups(self) -> int:
        return len(self.setup_templates)

    @property
    def max_resolution_levels(self) -> int:
        """Highest number of resolution levels across all view setups,
        1 if only full resolution files exist."""
        return self.num_levels

    def num_resolution_levels(self, setup: int) -> int:
        return self.max_resolution_levels

    def file_path(self, time_point: int, setup: int, level: int = 0) -> str:
        """Path of the file of a time point, view setup and level."""
        if level > 0 and self._level_match is not None:
            path = self._level_templates[setup]
        else:
            path = self.setup_templates[setup]
        if self._time_match is not None:
            path = path.replace(
                self._time_match,
                format_tag(self._time_tag, time_point, self._time_width),
            )
        if level == 0:
            if self._level_match is not None:
                path = path.replace("." + self._level_match, "")
        elif self._level_match is None:
            root, ext = os.path.splitext(path)
            path = f"{root}.{IMPLICIT_LEVEL_TAG}{level}{ext}"
        else:
            path = path.replace(
                self._level_match,
                format_tag(self._level_tag, level, self._level_width),
            )
        return path

    def parse_path(self, path: str | Path) -> tuple[int, int, int] | None:
        """Find the time point, view setup and level of a file path.

        Returns
        -------
        tuple[int, int, int] | None
            (time point, view setup, level),
            None if the path does not belong to the dataset.
        """
        path = str(path)
        time_point = self.first_time
        if self._time_match is not None:
            span = find_tag(path, self._time_tag)
            if span is None:
                return None
            time_point = int(path[span[0] + len(self._time_tag) : span[1]])
            path = substitute_tag(path, self._time_tag, self._time_match)
        level = 0
        templates = self.setup_templates
        if self._level_match is not None:
            span = find_tag(path, self._level_tag)
            if span is not None:
                level = int(path[span[0] + len(self._level_tag) : span[1]])
                path = path[: span[0]] + self._level_match + path[span[1] :]
                templates = self._level_templates
        else:
            suffix = "." + IMPLICIT_LEVEL_TAG
            span = find_tag(path, suffix)
            if span is not None:
                level = int(path[span[0] + len(suffix) : span[1]])
                path = path[: span[0]] + path[span[1] :]
        for setup, template in enumerate(templates):
            if path == template:
                return time_point, setup, level
        return None

    def available_levels(self, time_point: int, setup: int) -> int:
        """Count the consecutive resolution levels present on disk."""
        level = 0
        while os.path.exists(self.file_path(time_point, setup, level)):
            level += 1
        return level

    def view_setup_name(self, setup: int) -> str:
        return Path(self.setup_templates[setup]).name.replace(
            KLB_EXTENSION, ""
        )

    def angle_id(self, setup: int) -> int:
        return self._ids[setup][Dimension.ANGLE]

    def channel_id(self, setup: int) -> int:
        return self._ids[setup][Dimension.CHANNEL]

    def illumination_id(self, setup: int) -> int:
        return self._ids[setup][Dimension.ILLUMINATION]

    def angle_name(self, setup: int) -> str:
        return self._names[setup][Dimension.ANGLE]

    def channel_name(self, setup: int) -> str:
        return self._names[setup][Dimension.CHANNEL]

    def illumination_name(self, setup: int) -> str:
        return self._names[setup][Dimension.ILLUMINATION]

    def specify_sampling(self, sampling: Sequence[Sequence[float]]) -> None:
        """Override the full resolution sampling read from file headers."""
        self._sampling = [tuple(s) for s in sampling]

    def _read_header(
        self, time_point: int, setup: int, level: int
    ) -> KlbHeader | None:
        path = self.file_path(time_point, setup, level)
        try:
            return self._codec.read_header(path)
        except HeaderReadError as e:
            _logger.error(str(e))
            return None

    def image_type(self, setup: int) -> SampleType | None:
        header = self._read_header(self.first_time, setup, 0)
        return None if header is None else header.sample_type

    def image_dimensions(
        self, time_point: int, setup: int, level: int = 0
    ) -> tuple[int, int, int] | None:
        """XYZ dimensions of a file, None if its header cannot be read."""
        header = self._read_header(time_point, setup, level)
        return None if header is None else header.dimensions[:3]

    def block_dimensions(
        self, time_point: int, setup: int, level: int = 0
    ) -> tuple[int, int, int] | None:
        """XYZ block size of a file, None if its header cannot be read."""
        header = self._read_header(time_point, setup, level)
        return None if header is None else header.block_size[:3]

    def sampling(
        self, time_point: int, setup: int, level: int = 0
    ) -> tuple[float, float, float] | None:
        """XYZ voxel spacing of a file, None if its header cannot be read."""
        if level == 0 and self._sampling is not None:
            return self._sampling[setup][:3]
        header = self._read_header(time_point, setup, level)
        return None if header is None else header.spacing[:3]
