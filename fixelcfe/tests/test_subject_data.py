import os
import tempfile

import numpy as np
import pytest
from scipy import sparse

from fixelcfe.connectivity.graph import FixelGraph
from fixelcfe.fixels.index import FixelIndex
from fixelcfe.fixels.subject_data import (
    load_subject_data,
    match_subject_fixels,
    smooth_fixel_data,
)
from fixelcfe.io.fixels import load_fixel_directory
from fixelcfe.io.readers import read_subject_list
from fixelcfe.tests.tools import X_AXIS, Y_AXIS, generate_fixel_directory, generate_subjects
from fixelcfe.utils.exceptions import FixelDataError

TEMPLATE_FIXELS = [((0, 0, 0), X_AXIS), ((0, 0, 0), Y_AXIS), ((1, 0, 0), X_AXIS)]


def _template(temp_dir, fixels=TEMPLATE_FIXELS):
    template_dir = os.path.join(temp_dir, "template")
    generate_fixel_directory(template_dir, fixels)
    return FixelIndex.from_fixel_directory(load_fixel_directory(template_dir))


def test_match_by_closest_direction():
    with tempfile.TemporaryDirectory() as temp_dir:
        index = _template(temp_dir)

        # Subject stores the voxel's fixels in the opposite order, slightly
        # rotated, and has no fixel in voxel (1, 0, 0)
        tilted = (np.sin(0.1), np.cos(0.1), 0.0)
        subject_dir = os.path.join(temp_dir, "subject")
        generate_fixel_directory(subject_dir, [((0, 0, 0), tilted), ((0, 0, 0), X_AXIS)])
        subject = load_fixel_directory(subject_dir)

        values = match_subject_fixels(index, subject, np.array([7.0, 3.0]))
        np.testing.assert_allclose(values, [3.0, 7.0, 0.0])


def test_unmatched_beyond_angle():
    with tempfile.TemporaryDirectory() as temp_dir:
        index = _template(temp_dir, fixels=[((0, 0, 0), X_AXIS)])
        subject_dir = os.path.join(temp_dir, "subject")
        diagonal = (np.cos(np.radians(45)), np.sin(np.radians(45)), 0.0)
        generate_fixel_directory(subject_dir, [((0, 0, 0), diagonal)])
        subject = load_fixel_directory(subject_dir)

        assert match_subject_fixels(index, subject, np.array([5.0]), 30.0)[0] == 0.0
        assert match_subject_fixels(index, subject, np.array([5.0]), 60.0)[0] == 5.0


def test_grid_mismatch_is_fatal():
    with tempfile.TemporaryDirectory() as temp_dir:
        index = _template(temp_dir)
        subject_dir = os.path.join(temp_dir, "subject")
        generate_fixel_directory(subject_dir, [((0, 0, 0), X_AXIS)], shape=(4, 4, 4))
        subject = load_fixel_directory(subject_dir)

        with pytest.raises(FixelDataError):
            match_subject_fixels(index, subject, np.array([1.0]))


def test_smooth_fixel_data():
    weights = FixelGraph(sparse.csr_matrix(np.array([
        [0.5, 0.5, 0.0],
        [0.25, 0.75, 0.0],
        [0.0, 0.0, 1.0],
    ])))
    np.testing.assert_allclose(
        smooth_fixel_data(np.array([2.0, 4.0, 6.0]), weights), [3.0, 3.5, 6.0]
    )


def test_load_subject_data():
    with tempfile.TemporaryDirectory() as temp_dir:
        index = _template(temp_dir)
        values = np.arange(12, dtype=np.float64).reshape(3, 4)
        list_path = generate_subjects(os.path.join(temp_dir, "subjects"), TEMPLATE_FIXELS, values)
        identity = FixelGraph(sparse.identity(3, format="csr"))

        data = load_subject_data(index, read_subject_list(list_path), identity)

        assert data.shape == (3, 4)
        np.testing.assert_allclose(data, values)
        assert not data.flags.writeable
