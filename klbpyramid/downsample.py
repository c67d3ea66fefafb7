from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from klbpyramid.sample_types import SampleType

# largest buffer the KLB writer accepts, in bytes
MAX_VOLUME_BYTES = 2**31 - 1 - 8


class UnsupportedSampleType(TypeError):
    """Only 8 and 16 bit samples can be serialized."""


class VolumeTooLarge(ValueError):
    """The serialized volume exceeds the writer's buffer limit."""


def downsample(
    volume: NDArray,
    factor: Sequence[int],
    sample_type: SampleType | None = None,
) -> NDArray:
    """Block-average a ZYX volume by integer XYZ factors.

    Each output sample is the mean of an ``fx * fy * fz`` box of input
    samples, truncated toward zero for integer types.
    Trailing samples that do not fill a whole box are discarded.

    Parameters
    ----------
    volume : NDArray
        ZYX volume (X varies fastest).
    factor : Sequence[int]
        XYZ downsampling factors, each at least 1.
    sample_type : SampleType, optional
        Output sample type, by default that of ``volume``

    Returns
    -------
    NDArray
        Downsampled ZYX volume.
    """
    if sample_type is None:
        sample_type = SampleType.from_dtype(volume.dtype)
    fz, fy, fx = (int(f) for f in reversed(factor))
    if min(fz, fy, fx) < 1:
        raise ValueError(f"Downsampling factors must be positive: {factor}")
    nz, ny, nx = (n // f for n, f in zip(volume.shape, (fz, fy, fx)))
    blocks = volume[: nz * fz, : ny * fy, : nx * fx].reshape(
        nz, fz, ny, fy, nx, fx
    )
    # reduce in double precision without converting the whole input
    mean = blocks.mean(axis=(1, 3, 5), dtype=np.float64)
    return sample_type.from_float(mean)


def to_le_bytes(volume: NDArray, sample_type: SampleType) -> bytes:
    """Serialize a ZYX volume as little-endian samples, X fastest.

    Raises
    ------
    UnsupportedSampleType
        If the samples are neither 8 nor 16 bit.
    VolumeTooLarge
        If the buffer would exceed ``MAX_VOLUME_BYTES``.
    """
    if not sample_type.supports_pyramid:
        raise UnsupportedSampleType(
            f"Unknown or unsupported data type: {sample_type.name} "
            f"({sample_type.bits_per_sample} bit)."
        )
    num_bytes = volume.size * sample_type.bits_per_sample // 8
    if num_bytes > MAX_VOLUME_BYTES:
        raise VolumeTooLarge(
            "Downsampled image must not be larger than 2GB (uncompressed), "
            f"but is {num_bytes} bytes large."
        )
    return np.ascontiguousarray(volume, dtype=sample_type.dtype).tobytes()
