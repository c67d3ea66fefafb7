import xml.etree.ElementTree as ET
from pathlib import Path

import numpy as np
import pytest

from klbpyramid.codec import CodecWriteError, HeaderReadError, KlbHeader
from klbpyramid.sample_types import SampleType

E1_TEMPLATE = "/d/vol_TM000000_CHN00.klb"
E1_TAGS = [
    {"dimension": "TIME", "tag": "TM", "lastIndex": "2"},
    {"dimension": "CHANNEL", "tag": "CHN", "lastIndex": "1"},
]
E1_SETUPS = [
    {"id": 0, "size": (100, 100, 50), "voxel_size": (1, 1, 5)},
    {"id": 1, "size": (100, 100, 50), "voxel_size": (1, 1, 5)},
]
E1_PROPOSALS = {
    0: [(1, 1, 1), (2, 2, 1), (4, 4, 2)],
    1: [(1, 1, 1), (2, 2, 1), (4, 4, 2)],
}


class FakeCodec:
    """KLB codec keeping files in memory, keyed by path."""

    def __init__(self, fail_on=()):
        self.files: dict[str, tuple[KlbHeader, np.ndarray]] = {}
        self.written: list[str] = []
        self.fail_on = {str(p) for p in fail_on}

    def add(self, path, volume, spacing=(1.0, 1.0, 1.0)):
        header = KlbHeader(
            dimensions=(*reversed(volume.shape), 1, 1),
            block_size=(64, 64, 8, 1, 1),
            spacing=(*map(float, spacing), 1.0, 1.0),
            sample_type=SampleType.from_dtype(volume.dtype),
        )
        self.files[str(path)] = (header, volume)

    def read_header(self, path):
        try:
            return self.files[str(path)][0]
        except KeyError:
            raise HeaderReadError(f"Cannot read KLB header of {path}")

    def read_full(self, path):
        try:
            return self.files[str(path)][1]
        except KeyError:
            raise HeaderReadError(f"Cannot read KLB file {path}")

    def write_full(
        self,
        data,
        path,
        dimensions,
        sample_type,
        spacing,
        block_size=None,
        compression=None,
        metadata=None,
    ):
        if str(path) in self.fail_on:
            raise CodecWriteError(f"Cannot write KLB file {path}")
        assert len(dimensions) == 5 and tuple(dimensions[3:]) == (1, 1)
        assert len(spacing) == 5 and tuple(spacing[3:]) == (1, 1)
        volume = np.frombuffer(data, dtype=sample_type.dtype).reshape(
            tuple(dimensions[2::-1])
        )
        self.add(path, volume.astype(sample_type.dtype.newbyteorder("=")))
        header = self.files[str(path)][0]
        self.files[str(path)] = (
            KlbHeader(
                dimensions=tuple(dimensions),
                block_size=header.block_size,
                spacing=tuple(spacing),
                sample_type=sample_type,
            ),
            self.files[str(path)][1],
        )
        self.written.append(str(path))


def write_description(
    xml_path: Path,
    template: str,
    name_tags: list[dict],
    view_setups: list[dict] | None = None,
    time_points: tuple[int, int] | None = None,
    resolver: bool = True,
) -> Path:
    """Write a SpimData XML description of a KLB dataset."""
    root = ET.Element("SpimData", version="0.2")
    ET.SubElement(root, "BasePath", type="relative").text = "."
    sequence = ET.SubElement(root, "SequenceDescription")
    loader = ET.SubElement(sequence, "ImageLoader", format="klb")
    if resolver:
        resolver_element = ET.SubElement(loader, "Resolver")
        ET.SubElement(resolver_element, "template").text = template
        for name_tag in name_tags:
            element = ET.SubElement(resolver_element, "MultiFileNameTag")
            for key, value in name_tag.items():
                ET.SubElement(element, key).text = str(value)
    if view_setups is not None:
        setups = ET.SubElement(sequence, "ViewSetups")
        for setup in view_setups:
            element = ET.SubElement(setups, "ViewSetup")
            ET.SubElement(element, "id").text = str(setup["id"])
            ET.SubElement(element, "name").text = f"setup {setup['id']}"
            ET.SubElement(element, "size").text = " ".join(
                map(str, setup["size"])
            )
            voxel_size = ET.SubElement(element, "voxelSize")
            ET.SubElement(voxel_size, "unit").text = "um"
            ET.SubElement(voxel_size, "size").text = " ".join(
                map(str, setup["voxel_size"])
            )
    if time_points is not None:
        element = ET.SubElement(sequence, "Timepoints", type="range")
        ET.SubElement(element, "first").text = str(time_points[0])
        ET.SubElement(element, "last").text = str(time_points[1])
    ET.ElementTree(root).write(xml_path, encoding="utf-8")
    return xml_path


def resolution_level_tags(xml_path: Path) -> list[ET.Element]:
    resolver = ET.parse(xml_path).find("SequenceDescription/ImageLoader/Resolver")
    return [
        element
        for element in resolver.findall("MultiFileNameTag")
        if element.findtext("dimension") == "RESOLUTION_LEVEL"
    ]


@pytest.fixture
def codec():
    return FakeCodec()


@pytest.fixture
def e1_codec():
    """Full resolution volumes of 3 time points and 2 channels."""
    rng = np.random.default_rng(42)
    codec = FakeCodec()
    for t in range(3):
        for c in range(2):
            volume = rng.integers(0, 4096, size=(50, 100, 100), dtype=np.uint16)
            codec.add(
                f"/d/vol_TM{t:06d}_CHN{c:02d}.klb", volume, spacing=(1, 1, 5)
            )
    return codec


@pytest.fixture
def e1_description(tmp_path):
    return write_description(
        tmp_path / "dataset.xml",
        E1_TEMPLATE,
        E1_TAGS,
        view_setups=E1_SETUPS,
        time_points=(0, 2),
    )
