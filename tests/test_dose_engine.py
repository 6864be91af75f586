"""Tests for DoseEngine — beam list, pencil-beam dose calculation, phantom."""

import logging
import math

import numpy as np
import pytest

from tps.constants import DEFAULT_CONTOUR_LEVELS, FOV_DIAMETER_PIXELS
from tps.core.dose_engine import DoseEngine
from tps.models.beam import Beam
from tps.models.dose import DoseEngineConfig, DoseResult
from tps.models.phantom import DensityGrid

PHANTOM_RADIUS = 40
OUTSIDE_BUFFER = 2


def _disk_grid(size: int, radius: float) -> DensityGrid:
    """size×size air grid with a centered water disk."""
    center = size // 2
    yy, xx = np.ogrid[:size, :size]
    data = np.full((size, size), 5.0)
    data[np.sqrt((xx - center) ** 2 + (yy - center) ** 2) < radius] = 100.0
    return DensityGrid(data)


def _distance_from_center(shape: tuple[int, int]) -> np.ndarray:
    height, width = shape
    yy, xx = np.ogrid[:height, :width]
    return np.sqrt((xx - width // 2) ** 2 + (yy - height // 2) ** 2)


@pytest.fixture
def small_engine():
    return DoseEngine(_disk_grid(100, 25))


@pytest.fixture(scope="module")
def single_beam_dose():
    """Reference phantom, one 6 MV beam from the top, 20 px wide."""
    engine = DoseEngine(DoseEngine.create_simple_phantom())
    engine.add_beam(0.0, 20.0, 6.0)
    return engine.calculate_dose()


@pytest.fixture(scope="module")
def opposed_engine():
    engine = DoseEngine(DoseEngine.create_simple_phantom())
    engine.add_beam(0.0, 20.0, 6.0)
    engine.add_beam(180.0, 20.0, 6.0)
    engine.calculate_dose()
    return engine


# ── Reference phantom ──


class TestSimplePhantom:
    def test_shape(self):
        """Fixed 400×400 field of view."""
        grid = DoseEngine.create_simple_phantom()
        assert grid.shape == (FOV_DIAMETER_PIXELS, FOV_DIAMETER_PIXELS)

    def test_requested_size_ignored(self):
        grid = DoseEngine.create_simple_phantom(64, 32)
        assert grid.shape == (400, 400)

    def test_values(self):
        """Air = 5, water disk = 100, strict < 40 radius."""
        data = DoseEngine.create_simple_phantom().data
        assert set(np.unique(data)) == {5.0, 100.0}
        assert data[200, 200] == 100.0
        assert data[0, 0] == 5.0
        assert data[200, 160] == 5.0  # distance exactly 40
        assert data[200, 161] == 100.0

    def test_disk_area(self):
        """Water pixel count ≈ π·40²."""
        data = DoseEngine.create_simple_phantom().data
        assert np.count_nonzero(data == 100.0) == pytest.approx(math.pi * 40 ** 2, rel=0.02)


# ── Construction ──


class TestConstruction:
    def test_accepts_array(self):
        """Plain 2D arrays are wrapped in a DensityGrid."""
        engine = DoseEngine(np.full((10, 20), 5.0))
        assert engine.density_grid.shape == (10, 20)
        assert engine.get_raw_dose().shape == (10, 20)

    def test_default_config(self, small_engine):
        assert small_engine.config == DoseEngineConfig()

    @pytest.mark.parametrize("bad", [np.zeros(5), np.zeros((2, 2, 2)), [[1.0, 2.0], [3.0]]])
    def test_rejects_non_2d(self, bad):
        """Non-2D or ragged input raises ValueError."""
        with pytest.raises(ValueError):
            DoseEngine(bad)

    def test_rejects_non_finite(self):
        data = np.full((4, 4), 100.0)
        data[0, 0] = np.nan
        with pytest.raises(ValueError, match="finite"):
            DoseEngine(data)

    def test_material_map_matches_grid(self, small_engine):
        assert small_engine.material_map.width == 100
        assert small_engine.material_map.height == 100


# ── Beam list ──


class TestBeamList:
    def test_add_with_defaults(self, small_engine):
        """Width 20 px and 6 MV when omitted."""
        small_engine.add_beam(45.0)
        assert small_engine.get_beams() == [Beam(45.0, 20.0, 6.0)]

    def test_add_preserves_order(self, small_engine):
        small_engine.add_beam(0.0)
        small_engine.add_beam(90.0, 10.0, 18.0)
        beams = small_engine.get_beams()
        assert [b.angle_degrees for b in beams] == [0.0, 90.0]
        assert beams[1].energy_mv == 18.0

    def test_update(self, small_engine):
        """update_beam replaces the beam at the index."""
        small_engine.add_beam(0.0)
        small_engine.update_beam(0, 270.0, 30.0, 10.0)
        assert small_engine.get_beams() == [Beam(270.0, 30.0, 10.0)]

    @pytest.mark.parametrize("index", [-1, 1, 5])
    def test_update_out_of_range_ignored(self, small_engine, index):
        """Out-of-range index is a silent no-op."""
        small_engine.add_beam(0.0)
        small_engine.update_beam(index, 90.0)
        assert small_engine.get_beams() == [Beam(0.0, 20.0, 6.0)]

    def test_remove_shifts_indices(self, small_engine):
        """Removing beam 1 moves beam 2 to index 1."""
        for angle in (0.0, 90.0, 180.0):
            small_engine.add_beam(angle)
        small_engine.remove_beam(1)
        assert [b.angle_degrees for b in small_engine.get_beams()] == [0.0, 180.0]

    @pytest.mark.parametrize("index", [-1, 3])
    def test_remove_out_of_range_ignored(self, small_engine, index):
        small_engine.add_beam(0.0)
        small_engine.remove_beam(index)
        assert len(small_engine.get_beams()) == 1

    def test_get_beams_is_snapshot(self, small_engine):
        """Mutating the returned list leaves the engine untouched."""
        small_engine.add_beam(0.0)
        snapshot = small_engine.get_beams()
        snapshot.clear()
        assert len(small_engine.get_beams()) == 1

    def test_clear_beams_zeroes_dose(self, small_engine):
        """clear_beams empties the list and the dose grid."""
        small_engine.add_beam(0.0)
        small_engine.calculate_dose()
        assert small_engine.get_raw_dose().max() > 0

        small_engine.clear_beams()
        assert small_engine.get_beams() == []
        assert not small_engine.get_raw_dose().any()

    def test_beam_ray_angle(self):
        """Gantry angle is stored with its ray-tracing direction."""
        assert Beam(0.0, 20.0, 6.0).ray_angle == pytest.approx(math.pi / 2)
        assert Beam(90.0, 20.0, 6.0).ray_angle == pytest.approx(math.pi)


# ── Single beam on the reference phantom ──


class TestSingleBeam:
    def test_normalized(self, single_beam_dose):
        """Maximum is exactly 1 after normalization."""
        assert single_beam_dose.max() == pytest.approx(1.0)
        assert single_beam_dose.min() >= 0.0

    def test_no_dose_upstream_of_surface(self, single_beam_dose):
        assert not single_beam_dose[:160, :].any()

    def test_no_dose_outside_field(self, single_beam_dose):
        """Without scatter, dose stays within the pencil-beam columns."""
        assert not single_beam_dose[:, :188].any()
        assert not single_beam_dose[:, 213:].any()

    def test_dose_inside_phantom(self, single_beam_dose):
        assert single_beam_dose[180, 200] > 0.5
        assert single_beam_dose[230, 200] > 0.1

    def test_maximum_between_surface_and_isocenter(self, single_beam_dose):
        """Peak lies in the build-up/falloff region above the center."""
        row, col = np.unravel_index(np.argmax(single_beam_dose), single_beam_dose.shape)
        assert 161 <= row < 200
        assert 188 <= col <= 212

    def test_maximum_inside_phantom(self, single_beam_dose):
        """The 1.0 cell lies within the disk."""
        row, col = np.unravel_index(np.argmax(single_beam_dose), single_beam_dose.shape)
        assert math.hypot(col - 200, row - 200) < PHANTOM_RADIUS

    def test_build_up_then_falloff(self, single_beam_dose):
        column = single_beam_dose[:, 200]
        peak = int(np.argmax(column))
        assert column[162] < column[peak]
        assert column[235] < column[peak]

    def test_no_dose_outside_phantom(self, single_beam_dose):
        """Cells outside the disk plus a buffer receive no dose."""
        outside = _distance_from_center(single_beam_dose.shape) > PHANTOM_RADIUS + OUTSIDE_BUFFER
        assert not single_beam_dose[outside].any()

    def test_exit_air_unscored(self, single_beam_dose):
        """Air downstream of the phantom stays at zero."""
        assert not single_beam_dose[241:, :].any()

    def test_all_air_cells_unscored(self):
        """No air pixel anywhere receives dose."""
        grid = DoseEngine.create_simple_phantom()
        engine = DoseEngine(grid)
        engine.add_beam(0.0, 20.0, 6.0)
        dose = engine.calculate_dose()
        assert not dose[grid.data == 5.0].any()


class TestOpposedBeams:
    def test_bottom_beam_deposits(self):
        """Gantry 180° starts on the grid edge and still hits the phantom."""
        engine = DoseEngine(DoseEngine.create_simple_phantom())
        engine.add_beam(180.0, 20.0, 6.0)
        dose = engine.calculate_dose()
        assert dose.max() == pytest.approx(1.0)
        # Beam from the bottom: maximum in the lower half
        row, _ = np.unravel_index(np.argmax(dose), dose.shape)
        assert 200 <= row < 240
        assert not dose[241:, :].any()
        assert not dose[:160, :].any()

    def test_roughly_symmetric(self, opposed_engine):
        """Upper and lower halves receive about the same dose."""
        raw = opposed_engine.get_raw_dose()
        upper = raw[:200, :].sum()
        lower = raw[200:, :].sum()
        assert upper == pytest.approx(lower, rel=0.1)

    def test_no_dose_outside_phantom(self, opposed_engine):
        raw = opposed_engine.get_raw_dose()
        outside = _distance_from_center(raw.shape) > PHANTOM_RADIUS + OUTSIDE_BUFFER
        assert not raw[outside].any()

    def test_central_axis_profile(self, opposed_engine):
        """Every 5th row of the central column, as floats."""
        profile = opposed_engine.central_axis_profile()
        assert len(profile) == 80
        assert [row for row, _ in profile[:3]] == [0, 5, 10]
        assert all(isinstance(d, float) for _, d in profile)
        assert dict(profile)[200] > 0


# ── Heterogeneous phantoms ──


class TestCavity:
    @pytest.fixture(scope="class")
    def cavity_dose(self):
        """Water slab (rows 20-79) with an air gap in rows 40-49."""
        data = np.full((100, 100), 5.0)
        data[20:80, :] = 100.0
        data[40:50, :] = 5.0
        engine = DoseEngine(data)
        engine.add_beam(0.0, 10.0, 6.0)
        return engine.calculate_dose()

    def test_cavity_unscored(self, cavity_dose):
        assert not cavity_dose[40:50, :].any()

    def test_dose_resumes_beyond_cavity(self, cavity_dose):
        """The pencil beam keeps marching through the gap."""
        assert cavity_dose[55, 50] > 0
        assert cavity_dose[75, 50] > 0

    def test_exit_air_unscored(self, cavity_dose):
        assert not cavity_dose[80:, :].any()


# ── Recalculation semantics ──


class TestRecalculation:
    def test_no_beams_all_zero(self, small_engine):
        """Empty beam list → all-zero distribution."""
        dose = small_engine.calculate_dose()
        assert dose.shape == (100, 100)
        assert not dose.any()

    def test_idempotent(self, small_engine):
        """Repeated calculations give identical grids."""
        small_engine.add_beam(30.0, 12.0, 10.0)
        first = small_engine.calculate_dose()
        second = small_engine.calculate_dose()
        np.testing.assert_array_equal(first, second)

    def test_removed_beam_leaves_no_trace(self):
        """Remove-then-recalculate equals never having added the beam."""
        grid = _disk_grid(100, 25)
        engine = DoseEngine(grid)
        for angle in (0.0, 90.0, 200.0):
            engine.add_beam(angle, 10.0)
        engine.calculate_dose()
        engine.remove_beam(1)
        dose = engine.calculate_dose()

        reference = DoseEngine(grid)
        reference.add_beam(0.0, 10.0)
        reference.add_beam(200.0, 10.0)
        np.testing.assert_allclose(dose, reference.calculate_dose())

    def test_beam_missing_phantom(self):
        """All-air grid → zero dose, no error."""
        engine = DoseEngine(np.full((50, 50), 5.0))
        engine.add_beam(0.0)
        dose = engine.calculate_dose()
        assert not dose.any()
        assert not engine.get_dose_distribution().any()

    def test_zero_width_beam_contributes_nothing(self, small_engine):
        small_engine.add_beam(0.0, 0.0)
        assert not small_engine.calculate_dose().any()

    def test_fractional_width_centered(self):
        """A 20.5 px beam deposits symmetrically about the central column."""
        engine = DoseEngine(_disk_grid(101, 40))
        engine.add_beam(0.0, 20.5, 6.0)
        dose = engine.calculate_dose()
        columns = dose.sum(axis=0)
        left = columns[:50].sum()
        right = columns[51:].sum()
        assert left == pytest.approx(right, rel=0.05)

    @pytest.mark.parametrize("angle, width, energy", [
        (0.0, 20.0, 0.0),
        (0.0, 20.0, -6.0),
        (0.0, -5.0, 6.0),
        (math.nan, 20.0, 6.0),
        (0.0, 20.0, math.inf),
    ])
    def test_invalid_beam_skipped(self, small_engine, caplog, angle, width, energy):
        """Invalid beams are logged and contribute nothing."""
        small_engine.add_beam(angle, width, energy)
        with caplog.at_level(logging.WARNING, logger="tps.core.dose_engine"):
            dose = small_engine.calculate_dose()
        assert not dose.any()
        assert "invalid" in caplog.text

    def test_invalid_beam_does_not_block_others(self, small_engine):
        small_engine.add_beam(0.0, 20.0, -1.0)
        small_engine.add_beam(0.0, 20.0, 6.0)
        assert small_engine.calculate_dose().max() == pytest.approx(1.0)

    def test_progress_reported_per_beam(self, small_engine):
        """Two beams → progress 50 then 100."""
        small_engine.add_beam(0.0)
        small_engine.add_beam(90.0)
        seen = []
        small_engine.calculate_dose(progress_callback=seen.append)
        assert seen == [50, 100]

    def test_set_density_grid_resets_dose(self, small_engine):
        """New grid → new dose shape, beams kept."""
        small_engine.add_beam(0.0)
        small_engine.calculate_dose()
        small_engine.set_density_grid(np.full((40, 60), 5.0))
        assert small_engine.get_raw_dose().shape == (40, 60)
        assert not small_engine.get_raw_dose().any()
        assert len(small_engine.get_beams()) == 1
        assert not small_engine.calculate_dose().any()

    def test_raw_dose_is_copy(self, small_engine):
        small_engine.add_beam(0.0)
        small_engine.calculate_dose()
        raw = small_engine.get_raw_dose()
        raw[:] = 0.0
        assert small_engine.get_raw_dose().max() > 0

    def test_distribution_scaled_by_raw_max(self, small_engine):
        """Normalized grid = raw / max(raw)."""
        small_engine.add_beam(0.0)
        small_engine.calculate_dose()
        raw = small_engine.get_raw_dose()
        np.testing.assert_allclose(small_engine.get_dose_distribution(), raw / raw.max())

    def test_higher_energy_deeper_maximum(self):
        """18 MV peaks deeper than 6 MV on the central axis."""
        grid = _disk_grid(100, 40)
        rows = {}
        for energy in (6.0, 18.0):
            engine = DoseEngine(grid)
            engine.add_beam(0.0, 20.0, energy)
            column = engine.calculate_dose()[:, 50]
            rows[energy] = int(np.argmax(column))
        assert rows[18.0] > rows[6.0]

    def test_central_profile_logged_at_debug(self, small_engine, caplog):
        small_engine.add_beam(0.0)
        with caplog.at_level(logging.DEBUG, logger="tps.core.dose_engine"):
            small_engine.calculate_dose()
        assert "central axis" in caplog.text


# ── Result packaging ──


class TestCalculateResult:
    def test_result_fields(self, small_engine):
        """DoseResult carries map, raw max, beam count, levels, timing."""
        small_engine.add_beam(0.0)
        small_engine.add_beam(120.0)
        result = small_engine.calculate_result()

        assert isinstance(result, DoseResult)
        assert result.num_beams == 2
        assert result.dose_map.shape == (100, 100)
        assert result.dose_map.max() == pytest.approx(1.0)
        assert result.max_raw_dose == pytest.approx(small_engine.get_raw_dose().max())
        assert result.contour_levels == DEFAULT_CONTOUR_LEVELS
        assert result.elapsed_seconds >= 0.0

    def test_empty_result(self, small_engine):
        result = small_engine.calculate_result()
        assert result.num_beams == 0
        assert result.max_raw_dose == 0.0


# ── Lateral scatter ──


class TestScatter:
    @pytest.fixture
    def grid(self):
        return _disk_grid(60, 15)

    def _dose(self, grid, include_scatter):
        engine = DoseEngine(grid, DoseEngineConfig(include_scatter=include_scatter))
        engine.add_beam(0.0, 4.0, 6.0)
        engine.calculate_dose()
        return engine.get_raw_dose()

    def test_off_by_default(self):
        assert DoseEngineConfig().include_scatter is False

    def test_scatter_spreads_laterally(self, grid):
        """Scatter reaches columns the primary pencils never touch."""
        primary = self._dose(grid, include_scatter=False)
        with_scatter = self._dose(grid, include_scatter=True)

        assert not primary[:, 25].any()
        assert with_scatter[:, 25].max() > 0
        assert with_scatter.sum() > primary.sum()

    def test_scatter_adds_to_primary(self, grid):
        """Scatter only ever adds dose."""
        primary = self._dose(grid, include_scatter=False)
        with_scatter = self._dose(grid, include_scatter=True)
        assert np.all(with_scatter >= primary)

    def test_scatter_not_scored_in_air(self, grid):
        with_scatter = self._dose(grid, include_scatter=True)
        assert not with_scatter[grid.data == 5.0].any()
