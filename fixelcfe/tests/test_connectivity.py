import tempfile

import numpy as np
import pytest
from scipy import sparse

from fixelcfe.connectivity.builder import RawConnectivity, TrackPipeline, build_connectivity
from fixelcfe.connectivity.graph import FixelGraph
from fixelcfe.connectivity.mapping import TrackMapper
from fixelcfe.connectivity.normalization import gaussian, normalise_connectivity
from fixelcfe.fixels.index import FixelIndex
from fixelcfe.io.fixels import load_fixel_directory
from fixelcfe.tests.tools import (
    X_AXIS,
    Y_AXIS,
    generate_fixel_directory,
    line_fixels,
    line_streamline,
)
from fixelcfe.utils.exceptions import ConnectivityError


def _line_index(n_voxels=3, extra=()):
    with tempfile.TemporaryDirectory() as temp_dir:
        generate_fixel_directory(temp_dir, line_fixels(n_voxels) + list(extra))
        return FixelIndex.from_fixel_directory(load_fixel_directory(temp_dir))


def _build(index, streamlines, **kwargs):
    return build_connectivity(index, streamlines, len(streamlines), **kwargs)


def test_mapper_visits_voxels_in_order():
    mapper = TrackMapper(np.diag([2.0, 2.0, 2.0, 1.0]), (5, 3, 3))
    samples = mapper(line_streamline(0, 3))

    assert [voxel for voxel, _ in samples] == [(0, 1, 1), (1, 1, 1), (2, 1, 1), (3, 1, 1)]
    for _, tangent in samples:
        np.testing.assert_allclose(np.abs(tangent), X_AXIS, atol=1e-9)


def test_mapper_drops_points_outside_grid():
    mapper = TrackMapper(np.diag([2.0, 2.0, 2.0, 1.0]), (5, 3, 3))
    assert [voxel for voxel, _ in mapper(line_streamline(-3, 1))] == [(0, 1, 1), (1, 1, 1)]
    assert mapper(line_streamline(10, 12)) == []
    assert mapper(np.zeros((1, 3))) == []


def test_raw_connectivity_records_one_orientation():
    raw = RawConnectivity(4)
    raw.record(np.array([0, 2, 1]))
    raw.record(np.array([3]))

    assert raw.counts[0] == {1: 1, 2: 1}
    assert raw.counts[1] == {2: 1}
    np.testing.assert_array_equal(raw.density, [1, 1, 1, 1])

    symmetric = raw.symmetrise().toarray()
    np.testing.assert_array_equal(symmetric, symmetric.T)
    assert symmetric[2, 0] == 1
    assert np.all(np.diag(symmetric) == 0)


def test_scenario_single_path_through_three_fixels():
    index = _line_index(3)
    raw = _build(index, [line_streamline(0, 2)])
    np.testing.assert_array_equal(raw.density, [1, 1, 1])

    connectivity, smoothing = normalise_connectivity(
        raw.symmetrise(), raw.density, index.positions
    )

    for f, g in [(0, 1), (1, 0), (1, 2), (2, 1)]:
        assert connectivity[f, g] == pytest.approx(1.0 / raw.density[f])
        assert connectivity[f, g] == connectivity[g, f]
    for f in range(3):
        assert connectivity[f, f] == 1.0
        assert (f, f) in smoothing
    np.testing.assert_allclose(smoothing.row_sums(), 1.0, atol=1e-6)


def test_connectivity_fraction_uses_larger_density():
    index = _line_index(3)
    streamlines = [line_streamline(0, 2) for _ in range(3)] + [line_streamline(1, 2)]
    raw = _build(index, streamlines)
    np.testing.assert_array_equal(raw.density, [3, 4, 4])

    connectivity, _ = normalise_connectivity(
        raw.symmetrise(), raw.density, index.positions, cfe_c=1.0
    )
    assert connectivity[0, 1] == pytest.approx(3 / 4)
    assert connectivity[0, 2] == pytest.approx(3 / 4)
    assert connectivity[1, 2] == pytest.approx(1.0)
    assert connectivity.is_symmetric()


def test_connectivity_exponent():
    index = _line_index(3)
    streamlines = [line_streamline(0, 2) for _ in range(3)] + [line_streamline(1, 2)]
    raw = _build(index, streamlines)

    connectivity, _ = normalise_connectivity(
        raw.symmetrise(), raw.density, index.positions, cfe_c=0.5
    )
    assert connectivity[0, 1] == pytest.approx(0.75 ** 0.5)
    assert connectivity[0, 0] == 1.0


def test_angular_threshold_selects_fixel():
    # Each line voxel also holds a fixel along y; tracks along x only hit x fixels
    extra = [((x, 1, 1), Y_AXIS) for x in range(3)]
    index = _line_index(3, extra=extra)
    raw = _build(index, [line_streamline(0, 2)])

    for x in range(3):
        start, count = index.voxel_range((x, 1, 1))
        assert count == 2
        visited = raw.density[start:start + count]
        np.testing.assert_array_equal(visited, [1, 0])

    tight = _build(index, [line_streamline(0, 2)], angular_threshold=0.0)
    assert tight.density.sum() == 0


def test_threshold_one_keeps_only_self_entries():
    index = _line_index(3)
    raw = _build(index, [line_streamline(0, 2) for _ in range(5)])

    connectivity, smoothing = normalise_connectivity(
        raw.symmetrise(), raw.density, index.positions, connectivity_threshold=1.0
    )
    assert connectivity.nnz == 3
    assert smoothing.nnz == 3
    for f in range(3):
        assert connectivity.row(f) == {f: 1.0}
        assert smoothing.row(f) == {f: pytest.approx(1.0)}


def test_smoothing_weights_follow_distance():
    index = _line_index(3)
    raw = _build(index, [line_streamline(0, 2) for _ in range(5)])
    sigma = 2.0

    _, smoothing = normalise_connectivity(
        raw.symmetrise(), raw.density, index.positions,
        connectivity_threshold=0.0, smooth_sigma=sigma,
    )
    row = smoothing.row(0)
    expected = np.array([gaussian(0.0, sigma), gaussian(2.0, sigma), gaussian(4.0, sigma)])
    expected /= expected.sum()
    np.testing.assert_allclose([row[0], row[1], row[2]], expected)


def test_no_smoothing_gives_identity():
    index = _line_index(3)
    raw = _build(index, [line_streamline(0, 2)])
    _, smoothing = normalise_connectivity(
        raw.symmetrise(), raw.density, index.positions, smooth_sigma=0.0
    )
    np.testing.assert_allclose(smoothing.matrix.toarray(), np.eye(3))


def test_zero_tracks_is_fatal():
    index = _line_index(3)
    with pytest.raises(ConnectivityError):
        build_connectivity(index, [], 0)
    with pytest.raises(ConnectivityError):
        build_connectivity(index, iter([]), 5)


def test_track_count_comes_from_streamlines_read():
    # A header without a streamline count declares 0 tracks
    index = _line_index(3)
    connectivity = build_connectivity(index, iter([line_streamline(0, 2)] * 3), 0)
    np.testing.assert_array_equal(connectivity.density, [3, 3, 3])
    assert connectivity.symmetrise()[0, 2] == 3


def test_result_independent_of_thread_count():
    index = _line_index(5)
    rng = np.random.default_rng(1)
    streamlines = [
        line_streamline(*sorted(rng.choice(5, size=2, replace=False)))
        for _ in range(200)
    ]

    single = _build(index, streamlines, n_threads=1, queue_size=1)
    multi = _build(index, streamlines, n_threads=4, queue_size=8)

    np.testing.assert_array_equal(single.density, multi.density)
    assert (single.symmetrise() != multi.symmetrise()).nnz == 0


def test_pipeline_propagates_stage_errors():
    def failing_mapper(item):
        if item == 50:
            raise RuntimeError("mapping failed")
        return item

    processed = []
    pipeline = TrackPipeline(n_threads=3, queue_size=2)
    with pytest.raises(RuntimeError, match="mapping failed"):
        pipeline.run(range(1000), failing_mapper, processed.append)
    assert len(processed) < 1000


def test_pipeline_propagates_source_errors():
    def source():
        yield 1
        raise IOError("truncated track file")

    pipeline = TrackPipeline(n_threads=2, queue_size=1)
    with pytest.raises(IOError, match="truncated"):
        pipeline.run(source(), lambda item: item, lambda item: None)


def test_fixel_graph_accessors():
    matrix = sparse.csr_matrix(np.array([[1.0, 0.5, 0.0], [0.5, 1.0, 0.0], [0.0, 0.0, 1.0]]))
    graph = FixelGraph(matrix)
    assert len(graph) == 3
    assert graph.nnz == 5
    assert graph.row(0) == {0: 1.0, 1: 0.5}
    assert graph[0, 1] == 0.5
    assert (0, 2) not in graph
    assert graph.is_symmetric()
    assert graph.has_self_entries()
    np.testing.assert_allclose(graph.row_sums(), [1.5, 1.5, 1.0])
