"""Sample types of KLB volumes.

The KLB header stores the sample type as an integer code,
which is used as the enum value here.
Only 8 and 16 bit unsigned samples can be turned into a pyramid.
"""

from enum import Enum

import numpy as np
from numpy.typing import DTypeLike, NDArray


class SampleType(Enum):
    UINT8 = 0
    UINT16 = 1
    UINT32 = 2
    UINT64 = 3
    INT8 = 4
    INT16 = 5
    INT32 = 6
    INT64 = 7
    FLOAT32 = 8
    FLOAT64 = 9

    @property
    def dtype(self) -> np.dtype:
        """Little-endian numpy data type of the samples."""
        return np.dtype(self.name.lower()).newbyteorder("<")

    @property
    def bits_per_sample(self) -> int:
        return self.dtype.itemsize * 8

    @property
    def supports_pyramid(self) -> bool:
        return self in PYRAMID_SAMPLE_TYPES

    @classmethod
    def from_dtype(cls, dtype: DTypeLike) -> "SampleType":
        """Look up the sample type of a numpy data type.

        Raises
        ------
        TypeError
            If the data type has no KLB counterpart.
        """
        name = np.dtype(dtype).name.upper()
        try:
            return cls[name]
        except KeyError:
            raise TypeError(f"No KLB sample type for data type '{name}'.")

    def from_float(self, data: NDArray) -> NDArray:
        """Write double precision values as samples,
        truncating toward zero for integer types."""
        # casting to an integer type truncates toward zero
        return np.asarray(data).astype(self.dtype.newbyteorder("="))


PYRAMID_SAMPLE_TYPES = frozenset({SampleType.UINT8, SampleType.UINT16})
