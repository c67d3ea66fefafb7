from __future__ import annotations

"""
Data model classes with validation for the KLB dataset description.

Field names are 'snake_case' with aliases matching the element names
of the SpimData XML (``firstIndex``, ``lastIndex``, ``voxelSize`` ...).
"""

from enum import Enum

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    model_validator,
)

# TODO: remove when drop Python < 3.11
from typing_extensions import Self


class Dimension(str, Enum):
    """Dataset dimension a file name tag stands for."""

    TIME = "TIME"
    RESOLUTION_LEVEL = "RESOLUTION_LEVEL"
    ANGLE = "ANGLE"
    CHANNEL = "CHANNEL"
    ILLUMINATION = "ILLUMINATION"


class MetaBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MultiFileNameTag(MetaBase):
    """A numbered slot in a file name template.

    Within a template, ``tag`` followed immediately by a run of decimal
    digits marks the slot. Legal values are
    ``first, first + stride, ..., last``.
    Blank tags are accepted and ignored by the resolver.
    """

    tag: str
    dimension: Dimension
    first: NonNegativeInt = Field(default=0, alias="firstIndex")
    last: NonNegativeInt = Field(default=0, alias="lastIndex")
    stride: PositiveInt = 1

    @model_validator(mode="after")
    def validate_range(self) -> Self:
        if self.first > self.last:
            raise ValueError(
                f"Tag '{self.tag}': first index {self.first} "
                f"is larger than last index {self.last}."
            )
        return self

    @property
    def depth(self) -> int:
        """Number of distinct values of the slot."""
        return 1 + (self.last - self.first) // self.stride


class ViewSetup(MetaBase):
    """One imaging configuration (angle x channel x illumination)."""

    id: NonNegativeInt
    name: str | None = None
    # XYZ order
    size: tuple[PositiveInt, PositiveInt, PositiveInt]
    voxel_size: tuple[PositiveFloat, PositiveFloat, PositiveFloat] = Field(
        default=(1.0, 1.0, 1.0), alias="voxelSize"
    )
    unit: str = "pixel"


class MipmapSettings(MetaBase):
    """Settings of the mipmap proposer.

    Parameters
    ----------
    max_level_size : int
        Levels are added while the largest dimension of the coarsest
        level exceeds this size, by default 64.
    max_levels : int
        Upper bound of the number of levels including full resolution,
        by default 8.
    """

    max_level_size: PositiveInt = 64
    max_levels: PositiveInt = 8
