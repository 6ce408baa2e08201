"""
Tests for the landmark point cloud store.
"""

import os
import sys
import tempfile
import unittest

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from cloudsim.mapping import (  # type: ignore
    Landmark,
    LandmarkSet,
    MalformedRecord,
    Observation,
    PointCloudStore,
    format_landmark_row,
    parse_landmark_row,
    read_landmarks,
    write_landmarks,
)


def make_landmarks():
    return LandmarkSet([
        Landmark(0, (0.1, -0.25, 5.0), 1.0, 10.0, (0.0, 0.0, -1.0),
                 (Observation(3, 320.5, 240.25), Observation(7, 318.0, 241.125))),
        Landmark(1, (1.0 / 3.0, 2.0, 7.5), 0.4, 3.2, (0.6, 0.0, -0.8), ()),
        Landmark(2, (-4.0, 0.0, 1e-3), 0.01, 0.5, (0.0, 0.0, 0.0),
                 (Observation(12, 0.0, 479.9),)),
    ])


class TestRowCodec(unittest.TestCase):
    """Row parsing and formatting."""

    def test_parse_prefix_and_observations(self):
        landmark = parse_landmark_row("1,2,3,0.5,4,0,0,-1,10,100.5,200.25,11,101,201", 4)
        self.assertEqual(landmark.id, 4)
        self.assertEqual(landmark.position, (1.0, 2.0, 3.0))
        self.assertEqual(landmark.min_distance, 0.5)
        self.assertEqual(landmark.max_distance, 4.0)
        self.assertEqual(landmark.normal, (0.0, 0.0, -1.0))
        self.assertEqual(len(landmark.observations), 2)
        self.assertEqual(landmark.observations[0], Observation(10, 100.5, 200.25))
        self.assertEqual(landmark.observations[1].keypoint, (101.0, 201.0))

    def test_parse_without_observations(self):
        landmark = parse_landmark_row("1,2,3,0.5,4,0,0,-1", 0)
        self.assertEqual(landmark.observations, ())

    def test_parse_tolerates_whitespace_and_trailing_comma(self):
        landmark = parse_landmark_row(" 1, 2 ,3,0.5,4,0,0,-1,5,1,2,\n", 0)
        self.assertEqual(landmark.observations, (Observation(5, 1.0, 2.0),))

    def test_short_prefix_is_malformed(self):
        with self.assertRaises(MalformedRecord):
            parse_landmark_row("1,2,3,0.5,4,0,0", 0)

    def test_unparsable_prefix_is_malformed(self):
        with self.assertRaises(MalformedRecord):
            parse_landmark_row("1,2,abc,0.5,4,0,0,-1", 0)

    def test_partial_triple_is_malformed(self):
        with self.assertRaises(MalformedRecord):
            parse_landmark_row("1,2,3,0.5,4,0,0,-1,10,100.5", 0)

    def test_fractional_frame_id_is_malformed(self):
        with self.assertRaises(MalformedRecord):
            parse_landmark_row("1,2,3,0.5,4,0,0,-1,10.5,100,200", 0)

    def test_inverted_distance_range_is_malformed(self):
        with self.assertRaises(MalformedRecord):
            parse_landmark_row("1,2,3,4,0.5,0,0,-1", 0)

    def test_negative_distance_is_malformed(self):
        with self.assertRaises(MalformedRecord):
            parse_landmark_row("1,2,3,-1,4,0,0,-1", 0)

    def test_zero_distance_on_observed_point_is_malformed(self):
        with self.assertRaises(MalformedRecord):
            parse_landmark_row("1,2,3,0,0,0,0,0,5,1,2", 0)

    def test_zero_distance_without_observations_is_accepted(self):
        landmark = parse_landmark_row("1,2,3,0,0,0,0,0", 0)
        self.assertFalse(landmark.has_normal)
        self.assertEqual(landmark.max_distance, 0.0)

    def test_format_parse_is_exact(self):
        for landmark in make_landmarks():
            parsed = parse_landmark_row(format_landmark_row(landmark), landmark.id)
            self.assertEqual(parsed, landmark)


class TestFileRoundTrip(unittest.TestCase):
    """Load/save through the file system."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "cloud1.csv")

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_round_trip(self):
        landmarks = make_landmarks()
        write_landmarks(landmarks, self.path)
        loaded, report = read_landmarks(self.path)
        self.assertEqual(loaded, landmarks)
        self.assertEqual(report.loaded, 3)
        self.assertEqual(report.dropped, 0)
        self.assertIsNone(report.format_version)

    def test_round_trip_with_version_header(self):
        landmarks = make_landmarks()
        write_landmarks(landmarks, self.path, write_version_header=True)
        with open(self.path) as f:
            self.assertTrue(f.readline().startswith("# cloudsim-map format_version=1"))
        loaded, report = read_landmarks(self.path)
        self.assertEqual(loaded, landmarks)
        self.assertEqual(report.format_version, 1)

    def test_row_order_is_preserved(self):
        landmarks = LandmarkSet([
            Landmark(0, (9.0, 0.0, 0.0), 1.0, 2.0, (0.0, 0.0, 1.0)),
            Landmark(1, (-9.0, 0.0, 0.0), 1.0, 2.0, (0.0, 0.0, 1.0)),
        ])
        write_landmarks(landmarks, self.path)
        with open(self.path) as f:
            rows = [line.split(",")[0] for line in f]
        self.assertEqual(rows, ["9.0", "-9.0"])

    def test_malformed_rows_are_skipped(self):
        with open(self.path, "w") as f:
            f.write("0,0,5,1,10,0,0,-1,1,320,240\n")
            f.write("not,a,landmark\n")
            f.write("\n")
            f.write("1,0,5,1,10,0,0,-1,1,320\n")
            f.write("2,0,5,1,10,0,0,-1\n")

        loaded, report = read_landmarks(self.path)
        self.assertEqual(len(loaded), 2)
        self.assertEqual(report.dropped, 2)
        self.assertEqual([line for line, _ in report.errors], [2, 4])
        # ids are contiguous over the rows that parsed
        self.assertEqual(loaded.ids, (0, 1))
        self.assertEqual(loaded[1].position, (2.0, 0.0, 5.0))

    def test_undecodable_row_is_skipped(self):
        with open(self.path, "wb") as f:
            f.write(b"0,0,5,1,10,0,0,-1\n")
            f.write(b"\xff\xfe1,0,5,1,10,0,0,-1\n")
            f.write(b"2,0,5,1,10,0,0,-1\n")

        loaded, report = read_landmarks(self.path)
        self.assertEqual(report.loaded, 2)
        self.assertEqual(report.dropped, 1)
        self.assertEqual([line for line, _ in report.errors], [2])
        self.assertEqual(loaded[1].position, (2.0, 0.0, 5.0))

    def test_invalid_distance_rows_are_reported(self):
        with open(self.path, "w") as f:
            f.write("0,0,5,1,10,0,0,-1\n")
            f.write("1,0,5,10,1,0,0,-1\n")

        loaded, report = read_landmarks(self.path)
        self.assertEqual(len(loaded), 1)
        self.assertEqual(report.errors[0][0], 2)

    def test_missing_file_raises(self):
        with self.assertRaises(OSError):
            read_landmarks(os.path.join(self.tmpdir.name, "missing.csv"))

    def test_unwritable_path_raises(self):
        with self.assertRaises(OSError):
            write_landmarks(make_landmarks(), os.path.join(self.tmpdir.name, "no", "such", "dir.csv"))


class TestLandmarkSet(unittest.TestCase):
    """Immutable collection behaviour."""

    def test_column_arrays(self):
        landmarks = make_landmarks()
        self.assertEqual(landmarks.positions.shape, (3, 3))
        self.assertEqual(landmarks.normals.shape, (3, 3))
        np.testing.assert_allclose(landmarks.min_distances, [1.0, 0.4, 0.01])
        with self.assertRaises(ValueError):
            landmarks.positions[0, 0] = 1.0

    def test_empty_set(self):
        landmarks = LandmarkSet()
        self.assertEqual(len(landmarks), 0)
        self.assertEqual(landmarks.positions.shape, (0, 3))

    def test_duplicate_ids_rejected(self):
        lm = Landmark(0, (0.0, 0.0, 1.0), 1.0, 2.0, (0.0, 0.0, 1.0))
        with self.assertRaises(ValueError):
            LandmarkSet([lm, lm])

    def test_get_and_subset(self):
        landmarks = make_landmarks()
        self.assertEqual(landmarks.get(1).position[1], 2.0)
        self.assertIsNone(landmarks.get(99))
        self.assertEqual(landmarks.subset([2, 0]).ids, (0, 2))

    def test_unknown_normal(self):
        landmarks = make_landmarks()
        self.assertTrue(landmarks[0].has_normal)
        self.assertFalse(landmarks[2].has_normal)


class TestPointCloudStore(unittest.TestCase):
    """Session-level store."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "cloud.csv")
        write_landmarks(make_landmarks(), self.path)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_load_replaces_set(self):
        store = PointCloudStore()
        before = store.landmarks
        loaded = store.load(self.path)
        self.assertIs(store.landmarks, loaded)
        self.assertIsNot(before, loaded)
        self.assertEqual(len(before), 0)
        self.assertEqual(store.get_statistics()["landmarks"], 3)

    def test_append_renumbers_and_keeps_old_set(self):
        store = PointCloudStore()
        store.load(self.path)
        original = store.landmarks
        extra = Landmark(0, (0.0, 1.0, 2.0), 1.0, 3.0, (0.0, 0.0, -1.0))
        store.append([extra])
        self.assertEqual(len(original), 3)
        self.assertEqual(store.landmarks.ids, (0, 1, 2, 3))

    def test_save_defaults_to_loaded_path(self):
        store = PointCloudStore()
        store.load(self.path)
        out = os.path.join(self.tmpdir.name, "copy.csv")
        store.save(out)
        self.assertEqual(read_landmarks(out)[0], store.landmarks)
        self.assertEqual(store.save(), 3)

    def test_replace_and_statistics(self):
        store = PointCloudStore()
        store.load(self.path)
        store.replace(list(make_landmarks())[:2])
        stats = store.get_statistics()
        self.assertEqual(stats["landmarks"], 2)
        self.assertEqual(stats["observations"], 2)
        self.assertEqual(stats["unknown_normals"], 0)
        self.assertEqual(stats["dropped_rows"], 0)

    def test_save_without_path_raises(self):
        with self.assertRaises(ValueError):
            PointCloudStore(make_landmarks()).save()


if __name__ == "__main__":
    unittest.main()
