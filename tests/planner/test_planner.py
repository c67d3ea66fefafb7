import hypothesis.strategies as st
import pytest
from hypothesis import given

from klbpyramid.models import MipmapSettings, ViewSetup
from klbpyramid.planner import (
    LevelInfo,
    max_resolution_levels,
    num_resolution_levels,
    plan_levels,
    plan_mipmaps,
    propose_mipmaps,
    skip_first_level,
)

dims_st = st.tuples(*[st.integers(1, 2048)] * 3)
spacing_st = st.tuples(*[st.floats(0.1, 10.0)] * 3)


@st.composite
def resolutions_st(draw, max_levels=6):
    """Cumulative factors, each level a multiple of the previous one."""
    relative = draw(
        st.lists(
            st.tuples(*[st.integers(1, 3)] * 3), min_size=0, max_size=max_levels
        )
    )
    resolutions = [(1, 1, 1)]
    for factor in relative:
        resolutions.append(
            tuple(r * f for r, f in zip(resolutions[-1], factor))
        )
    return resolutions


def test_e1_levels():
    levels = plan_levels(
        (100, 100, 50), (1, 1, 5), [(1, 1, 1), (2, 2, 1), (4, 4, 2)]
    )
    assert levels == (
        LevelInfo((100, 100, 50), (1.0, 1.0, 5.0), (1, 1, 1)),
        LevelInfo((50, 50, 50), (2.0, 2.0, 5.0), (2, 2, 1)),
        LevelInfo((25, 25, 25), (4.0, 4.0, 10.0), (2, 2, 2)),
    )


def test_e2_skip_first():
    levels = skip_first_level(
        plan_levels(
            (100, 100, 50), (1, 1, 5), [(1, 1, 1), (2, 2, 1), (4, 4, 2)]
        )
    )
    assert len(levels) == 2
    assert levels[0].dimensions == (100, 100, 50)
    assert levels[1] == LevelInfo((25, 25, 25), (4.0, 4.0, 10.0), (4, 4, 2))


def test_proposal_is_not_modified():
    resolutions = [[1, 1, 1], [2, 2, 1], [4, 4, 2]]
    plan_levels((100, 100, 50), (1, 1, 5), resolutions)
    assert resolutions == [[1, 1, 1], [2, 2, 1], [4, 4, 2]]


@given(dims=dims_st, spacing=spacing_st, resolutions=resolutions_st())
def test_level_chain_invariants(dims, spacing, resolutions):
    levels = plan_levels(dims, spacing, resolutions)
    assert len(levels) == len(resolutions)
    assert levels[0].factor == (1, 1, 1)
    for previous, level in zip(levels, levels[1:]):
        for d in range(3):
            assert level.factor[d] >= 1
            assert (
                level.dimensions[d] == previous.dimensions[d] // level.factor[d]
            )
            assert level.spacing[d] == previous.spacing[d] * level.factor[d]


@given(dims=dims_st, spacing=spacing_st, resolutions=resolutions_st())
def test_skip_first_keeps_coarser_geometry(dims, spacing, resolutions):
    levels = plan_levels(dims, spacing, resolutions)
    skipped = skip_first_level(levels)
    assert len(skipped) == max(1, len(levels) - 1)
    assert skipped[0] == levels[0]
    # replaying the relative factors from full resolution
    # reaches the same dimensions through both chains
    replayed = list(levels[0].dimensions)
    for k, level in enumerate(skipped[1:], start=2):
        replayed = [n // f for n, f in zip(replayed, level.factor)]
        assert tuple(replayed) == levels[k].dimensions
        assert level.dimensions == levels[k].dimensions
        assert level.spacing == levels[k].spacing


def test_skip_first_short_chains():
    full = LevelInfo((8, 8, 8), (1.0, 1.0, 1.0))
    assert skip_first_level((full,)) == (full,)
    half = LevelInfo((4, 4, 4), (2.0, 2.0, 2.0), (2, 2, 2))
    assert skip_first_level((full, half)) == (full,)


@pytest.mark.parametrize(
    "size,voxel_size,expected",
    [
        ((64, 64, 64), (1, 1, 1), [(1, 1, 1)]),
        ((100, 100, 50), (1, 1, 5), [(1, 1, 1), (2, 2, 1)]),
        ((512, 256, 128), (1, 1, 1), [(1, 1, 1), (2, 2, 2), (4, 4, 4), (8, 8, 8)]),
    ],
)
def test_propose_mipmaps(size, voxel_size, expected):
    setup = ViewSetup(id=0, size=size, voxel_size=voxel_size)
    assert propose_mipmaps(setup) == expected


def test_propose_mipmaps_delays_anisotropic_axes():
    setup = ViewSetup(id=0, size=(1024, 1024, 64), voxel_size=(0.5, 0.5, 2))
    resolutions = propose_mipmaps(
        setup, MipmapSettings(max_level_size=16, max_levels=8)
    )
    assert resolutions[:4] == [(1, 1, 1), (2, 2, 1), (4, 4, 1), (8, 8, 2)]
    assert len(resolutions) <= 8


@given(
    dims=st.tuples(*[st.integers(1, 4096)] * 3),
    spacing=spacing_st,
    max_level_size=st.integers(1, 256),
)
def test_proposals_divide_exactly(dims, spacing, max_level_size):
    setup = ViewSetup(id=0, size=dims, voxel_size=spacing)
    resolutions = propose_mipmaps(
        setup, MipmapSettings(max_level_size=max_level_size)
    )
    assert resolutions[0] == (1, 1, 1)
    for previous, cumulative in zip(resolutions, resolutions[1:]):
        assert cumulative != previous
        for p, c, n in zip(previous, cumulative, dims):
            assert c % p == 0
            assert c <= n


def test_plan_mipmaps():
    setups = [
        ViewSetup(id=0, size=(100, 100, 50), voxel_size=(1, 1, 5)),
        ViewSetup(id=1, size=(32, 32, 32)),
    ]
    plan = plan_mipmaps(
        setups, proposals={0: [(1, 1, 1), (2, 2, 1), (4, 4, 2)]}
    )
    assert num_resolution_levels(plan) == {0: 3, 1: 1}
    assert max_resolution_levels(plan) == 3
    skipped = plan_mipmaps(
        setups,
        proposals={0: [(1, 1, 1), (2, 2, 1), (4, 4, 2)]},
        skip_first=True,
    )
    assert num_resolution_levels(skipped) == {0: 2, 1: 1}
    assert max_resolution_levels({}) == 1
