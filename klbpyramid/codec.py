"""Narrow I/O contract of the KLB block-compressed container format.

Shapes and spacings are given as 5-tuples in XYZCT order,
which is the order of the KLB header.
The ``pyklb`` binding uses the reversed (TCZYX) order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from klbpyramid.sample_types import SampleType

_logger = logging.getLogger(__name__)

KLB_EXTENSION = ".klb"


class HeaderReadError(OSError):
    """The header of a KLB file cannot be read."""


class CodecWriteError(OSError):
    """A KLB file cannot be written."""


@dataclass(frozen=True)
class KlbHeader:
    dimensions: tuple[int, int, int, int, int]
    block_size: tuple[int, int, int, int, int]
    spacing: tuple[float, float, float, float, float]
    sample_type: SampleType


@runtime_checkable
class KlbCodec(Protocol):
    """Reads and writes whole KLB files."""

    def read_header(self, path: str | Path) -> KlbHeader:
        """Read the header of a KLB file.

        Raises
        ------
        HeaderReadError
            If the file is missing or is not a KLB file.
        """
        ...

    def read_full(self, path: str | Path) -> NDArray:
        """Read a full volume as a ZYX array (X varies fastest)."""
        ...

    def write_full(
        self,
        data: bytes,
        path: str | Path,
        dimensions: tuple[int, int, int, int, int],
        sample_type: SampleType,
        spacing: tuple[float, float, float, float, float],
        block_size: tuple[int, int, int, int, int] | None = None,
        compression: str | None = None,
        metadata: str | None = None,
    ) -> None:
        """Write a little-endian, X-fastest sample buffer to a KLB file.

        Raises
        ------
        CodecWriteError
            If the file cannot be written.
        """
        ...


def _xyzct(tczyx, cast=int) -> tuple:
    return tuple(cast(v) for v in reversed(list(tczyx)))


class PyKlbCodec:
    """KLB codec backed by the ``pyklb`` binding.

    Parameters
    ----------
    num_threads : int, optional
        Compression threads used by the binding, by default 1
    compression : str, optional
        Default compression of written files, by default "bzip2"
    """

    def __init__(self, num_threads: int = 1, compression: str = "bzip2"):
        self.num_threads = num_threads
        self.compression = compression

    @staticmethod
    def _binding():
        try:
            import pyklb
        except ImportError:
            raise ImportError(
                "pyklb is required to read and write KLB files. "
                "Install with: pip install klbpyramid[klb]"
            )
        return pyklb

    def read_header(self, path: str | Path) -> KlbHeader:
        pyklb = self._binding()
        try:
            header = pyklb.readheader(str(path))
        except (IOError, RuntimeError) as e:
            raise HeaderReadError(f"Cannot read KLB header of {path}: {e}")
        return KlbHeader(
            dimensions=_xyzct(header["imagesize_tczyx"]),
            block_size=_xyzct(header["blocksize_tczyx"]),
            spacing=_xyzct(header["pixelspacing_tczyx"], cast=float),
            sample_type=SampleType.from_dtype(header["datatype"]),
        )

    def read_full(self, path: str | Path) -> NDArray:
        pyklb = self._binding()
        try:
            data = pyklb.readfull(str(path), numthreads=self.num_threads)
        except (IOError, RuntimeError) as e:
            raise HeaderReadError(f"Cannot read KLB file {path}: {e}")
        # drop singleton channel and time axes
        return data.reshape(data.shape[-3:])

    def write_full(
        self,
        data: bytes,
        path: str | Path,
        dimensions: tuple[int, int, int, int, int],
        sample_type: SampleType,
        spacing: tuple[float, float, float, float, float],
        block_size: tuple[int, int, int, int, int] | None = None,
        compression: str | None = None,
        metadata: str | None = None,
    ) -> None:
        pyklb = self._binding()
        image = (
            np.frombuffer(data, dtype=sample_type.dtype)
            .reshape(tuple(reversed(dimensions)))
            .astype(sample_type.dtype.newbyteorder("="))
        )
        kwargs = dict(
            pixelspacing_tczyx=np.asarray(spacing[::-1], dtype=np.float32),
            compression=compression or self.compression,
            numthreads=self.num_threads,
        )
        if block_size is not None:
            # unlike the spacing, the block size is passed in XYZCT order
            kwargs["blocksize_xyzct"] = np.asarray(block_size, dtype=np.uint32)
        if metadata is not None:
            kwargs["metadata"] = metadata
        _logger.debug(f"Writing {dimensions} {sample_type.name} to {path}")
        try:
            pyklb.writefull(image, str(path), **kwargs)
        except (IOError, RuntimeError, ValueError) as e:
            raise CodecWriteError(f"Cannot write KLB file {path}: {e}")
