"""Read and update the SpimData XML description of a KLB dataset.

Only the parts needed to build a pyramid are read::

    SpimData
    └── SequenceDescription
        ├── ImageLoader format="klb"
        │   └── Resolver
        │       ├── template
        │       └── MultiFileNameTag (dimension, tag, firstIndex,
        │                             lastIndex, stride)
        ├── ViewSetups (optional)
        │   └── ViewSetup (id, name, size, voxelSize)
        └── Timepoints (optional)
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path

from numpy.typing import NDArray
from pydantic import ValidationError

from klbpyramid.codec import HeaderReadError, KlbCodec, PyKlbCodec
from klbpyramid.models import Dimension, MultiFileNameTag, ViewSetup
from klbpyramid.resolver import PartitionResolver
from klbpyramid.sample_types import SampleType

_logger = logging.getLogger(__name__)

RESOLVER_PATH = "SequenceDescription/ImageLoader/Resolver"
DEFAULT_LEVEL_TAG = "RSLVL"


class DescriptionParseError(ValueError):
    """The dataset description is missing, malformed or incomplete."""


class DescriptionWriteError(OSError):
    """The dataset description cannot be written back."""


class KlbImageLoader:
    """Load full resolution volumes of a dataset.

    Parameters
    ----------
    resolver : PartitionResolver
        File paths of the dataset.
    codec : KlbCodec
        Codec used to read the files.
    """

    def __init__(self, resolver: PartitionResolver, codec: KlbCodec):
        self.resolver = resolver
        self.codec = codec

    def image_type(self, setup: int) -> SampleType:
        sample_type = self.resolver.image_type(setup)
        if sample_type is None:
            raise HeaderReadError(
                f"Cannot read the sample type of view setup {setup}."
            )
        return sample_type

    def load_full(self, time_point: int, setup: int) -> NDArray:
        """Read the full resolution ZYX volume of a view."""
        return self.codec.read_full(
            self.resolver.file_path(time_point, setup, 0)
        )


@dataclass
class SequenceDescription:
    xml_path: Path
    view_setups: list[ViewSetup]
    time_points: list[int]
    resolver: PartitionResolver
    image_loader: KlbImageLoader


def parse_integer_pattern(pattern: str) -> list[int]:
    """Expand an integer pattern such as ``"0-10:2, 15"``.

    Items are separated by commas and are either a number,
    a range ``first-last`` or a stepped range ``first-last:step``.
    """
    values = []
    for item in pattern.split(","):
        item = item.strip()
        if not item:
            continue
        bounds, _, step = item.partition(":")
        first, _, last = bounds.partition("-")
        first = int(first)
        last = int(last) if last else first
        values.extend(range(first, last + 1, int(step) if step else 1))
    return values


def _parse_xml(xml_path: Path) -> ET.ElementTree:
    try:
        return ET.parse(xml_path)
    except (OSError, ET.ParseError) as e:
        raise DescriptionParseError(
            f"Cannot parse dataset description {xml_path}: {e}"
        ) from e


def _find_resolver(tree: ET.ElementTree, xml_path: Path) -> ET.Element:
    resolver = tree.getroot().find(RESOLVER_PATH)
    if resolver is None:
        raise DescriptionParseError(
            f"Dataset description {xml_path} has no {RESOLVER_PATH} element."
        )
    return resolver


def _parse_name_tags(resolver: ET.Element) -> list[MultiFileNameTag]:
    name_tags = []
    for element in resolver.findall("MultiFileNameTag"):
        fields = {child.tag: (child.text or "").strip() for child in element}
        try:
            name_tags.append(MultiFileNameTag.model_validate(fields))
        except ValidationError as e:
            raise DescriptionParseError(f"Invalid MultiFileNameTag: {e}")
    return name_tags


def _parse_view_setups(sequence: ET.Element) -> list[ViewSetup] | None:
    element = sequence.find("ViewSetups")
    if element is None:
        return None
    view_setups = []
    for setup in element.findall("ViewSetup"):
        fields = {
            "id": setup.findtext("id"),
            "name": setup.findtext("name"),
            "size": (setup.findtext("size") or "").split(),
        }
        voxel_size = setup.find("voxelSize")
        if voxel_size is not None:
            fields["voxel_size"] = (voxel_size.findtext("size") or "").split()
            fields["unit"] = voxel_size.findtext("unit") or "pixel"
        try:
            view_setups.append(ViewSetup.model_validate(fields))
        except ValidationError as e:
            raise DescriptionParseError(f"Invalid ViewSetup: {e}")
    return sorted(view_setups, key=lambda s: s.id)


def _parse_time_points(sequence: ET.Element) -> list[int] | None:
    element = sequence.find("Timepoints")
    if element is None:
        return None
    kind = element.get("type", "range")
    try:
        if kind == "range":
            return list(
                range(
                    int(element.findtext("first")),
                    int(element.findtext("last")) + 1,
                )
            )
        elif kind == "pattern":
            return parse_integer_pattern(element.findtext("integerpattern"))
    except (AttributeError, TypeError, ValueError) as e:
        raise DescriptionParseError(f"Invalid Timepoints: {e}")
    raise DescriptionParseError(f"Unsupported Timepoints type '{kind}'.")


def _view_setups_from_files(
    resolver: PartitionResolver, time_point: int
) -> list[ViewSetup]:
    view_setups = []
    for setup in range(resolver.num_view_setups):
        size = resolver.image_dimensions(time_point, setup)
        spacing = resolver.sampling(time_point, setup)
        if size is None or spacing is None:
            raise DescriptionParseError(
                "Description has no ViewSetups and the header of "
                f"{resolver.file_path(time_point, setup)} cannot be read."
            )
        try:
            view_setups.append(
                ViewSetup(
                    id=setup,
                    name=resolver.view_setup_name(setup),
                    size=size,
                    voxel_size=spacing,
                )
            )
        except ValidationError as e:
            raise DescriptionParseError(f"Invalid header of setup {setup}: {e}")
    return view_setups


def load_description(
    xml_path: str | Path, codec: KlbCodec | None = None
) -> SequenceDescription:
    """Load the sequence description of a KLB dataset.

    View setups and time points missing from the XML
    are derived from the files of the dataset.

    Parameters
    ----------
    xml_path : str | Path
        Path to the SpimData XML file.
    codec : KlbCodec, optional
        Codec used to read the files, by default :class:`PyKlbCodec`

    Returns
    -------
    SequenceDescription

    Raises
    ------
    DescriptionParseError
        If the XML is missing, malformed or lacks the resolver.
    """
    xml_path = Path(xml_path)
    codec = codec if codec is not None else PyKlbCodec()
    _logger.debug(f"Loading dataset description {xml_path}")
    tree = _parse_xml(xml_path)
    resolver_element = _find_resolver(tree, xml_path)
    template = (resolver_element.findtext("template") or "").strip()
    if not template:
        raise DescriptionParseError(
            f"Resolver of {xml_path} has no template file path."
        )
    # relative templates are relative to the XML file
    template = xml_path.parent / template
    resolver = PartitionResolver(
        template, _parse_name_tags(resolver_element), codec=codec
    )
    sequence = tree.getroot().find("SequenceDescription")
    time_points = _parse_time_points(sequence)
    if time_points is None:
        time_points = list(range(resolver.first_time, resolver.last_time + 1))
    if not time_points:
        raise DescriptionParseError(
            f"Dataset description {xml_path} has no time points."
        )
    view_setups = _parse_view_setups(sequence)
    if view_setups is None:
        view_setups = _view_setups_from_files(resolver, time_points[0])
    unresolved = [
        setup.id
        for setup in view_setups
        if setup.id >= resolver.num_view_setups
    ]
    if unresolved:
        raise DescriptionParseError(
            f"View setup(s) {unresolved} of {xml_path} are not resolved "
            f"by the file name template, which has "
            f"{resolver.num_view_setups} view setup(s)."
        )
    _logger.info(
        f"Found {len(view_setups)} view setup(s) "
        f"and {len(time_points)} time point(s) in {xml_path}"
    )
    return SequenceDescription(
        xml_path=xml_path,
        view_setups=view_setups,
        time_points=time_points,
        resolver=resolver,
        image_loader=KlbImageLoader(resolver, codec),
    )


def update_resolution_level_tag(xml_path: str | Path, num_levels: int) -> None:
    """Advertise ``num_levels`` resolution levels in the description.

    The resolver keeps exactly one ``RESOLUTION_LEVEL`` name tag
    with ``lastIndex = num_levels - 1``; one tagged ``RSLVL``
    is created if there is none.

    Raises
    ------
    DescriptionParseError
        If the XML cannot be read or lacks the resolver.
    DescriptionWriteError
        If the XML cannot be written back.
    """
    xml_path = Path(xml_path)
    tree = _parse_xml(xml_path)
    resolver = _find_resolver(tree, xml_path)
    last_index = str(num_levels - 1)
    level_tags = [
        element
        for element in resolver.findall("MultiFileNameTag")
        if (element.findtext("dimension") or "").strip()
        == Dimension.RESOLUTION_LEVEL.value
    ]
    if level_tags:
        for duplicate in level_tags[1:]:
            resolver.remove(duplicate)
        last = level_tags[0].find("lastIndex")
        if last is None:
            last = ET.SubElement(level_tags[0], "lastIndex")
        last.text = last_index
    else:
        level_tag = ET.SubElement(resolver, "MultiFileNameTag")
        ET.SubElement(level_tag, "dimension").text = (
            Dimension.RESOLUTION_LEVEL.value
        )
        ET.SubElement(level_tag, "tag").text = DEFAULT_LEVEL_TAG
        ET.SubElement(level_tag, "lastIndex").text = last_index
    ET.indent(tree, space="  ")
    try:
        tree.write(xml_path, encoding="utf-8", xml_declaration=True)
    except OSError as e:
        raise DescriptionWriteError(
            f"Cannot write dataset description {xml_path}: {e}"
        ) from e
    _logger.info(f"Updated {xml_path} with {num_levels} resolution level(s)")
