import os
import json
from types import SimpleNamespace

import numpy as np
import pytest
from PIL import Image

from decoders import RADAR_DTYPE
from writers import BaseWriter

T0 = 1_532_402_927_000_000
T_SWEEP = T0 + 500_000
T1 = T0 + 1_000_000

RADAR_PCD_HEADER = (
    "# .PCD v0.7 - Point Cloud Data file format\n"
    "VERSION 0.7\n"
    "FIELDS x y z dyn_prop id rcs vx vy vx_comp vy_comp is_quality_valid ambig_state "
    "x_rms y_rms invalid_state pdh0 vx_rms vy_rms\n"
    "SIZE 4 4 4 1 2 4 4 4 4 4 1 1 1 1 1 1 1 1\n"
    "TYPE F F F I I F F F F F I I I I I I I I\n"
    "COUNT 1 1 1 1 1 1 1 1 1 1 1 1 1 1 1 1 1 1\n"
    "WIDTH {points}\n"
    "HEIGHT 1\n"
    "VIEWPOINT 0 0 0 1 0 0 0\n"
    "POINTS {points}\n"
    "DATA binary\n"
)


def write_lidar_bin(path, points):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    np.asarray(points, dtype=np.float32).tofile(path)


def write_image(path, size=(4, 3), color=(255, 0, 0)):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    Image.new('RGB', size, color).save(path)


def write_radar_pcd(path, count=2):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    records = np.zeros(count, dtype=RADAR_DTYPE)
    records['x'] = np.arange(count, dtype=np.float32) + 1.0
    records['id'] = np.arange(count)
    records['rcs'] = 5.0
    records['vx'] = -1.5
    with open(path, 'wb') as f:
        f.write(RADAR_PCD_HEADER.format(points=count).encode('ascii'))
        f.write(records.tobytes())
        f.write(b"\n")


def sample_data_record(token, sample_token, filename, timestamp, key_frame, calibrated_sensor_token):
    return {
        "token": token,
        "sample_token": sample_token,
        "ego_pose_token": f"ep_{token}",
        "calibrated_sensor_token": calibrated_sensor_token,
        "timestamp": timestamp,
        "fileformat": filename.rsplit('.', 1)[-1],
        "is_key_frame": key_frame,
        "height": 0,
        "width": 0,
        "filename": filename,
        "prev": "",
        "next": "",
    }


def annotation_record(token, sample_token, instance_token, translation, rotation=(1.0, 0.0, 0.0, 0.0)):
    return {
        "token": token,
        "sample_token": sample_token,
        "instance_token": instance_token,
        "visibility_token": "4",
        "attribute_tokens": [],
        "translation": list(translation),
        "size": [1.9, 4.5, 1.6],
        "rotation": list(rotation),
        "prev": "",
        "next": "",
        "num_lidar_pts": 10,
        "num_radar_pts": 0,
    }


def make_tables():
    """One scene, two samples: a key frame at T0 and one at T1 with a lidar sweep in between."""
    sample_data = [
        sample_data_record("sd_lidar_0", "s0",
                           f"samples/LIDAR_TOP/n015__LIDAR_TOP__{T0}.pcd.bin", T0, True, "cs_lidar"),
        sample_data_record("sd_cam_0", "s0",
                           f"samples/CAM_FRONT/n015__CAM_FRONT__{T0}.jpg", T0, True, "cs_cam"),
        sample_data_record("sd_radar_0", "s0",
                           f"samples/RADAR_FRONT/n015__RADAR_FRONT__{T0}.pcd", T0, True, "cs_radar"),
        sample_data_record("sd_lidar_sweep", "s1",
                           f"sweeps/LIDAR_TOP/n015__LIDAR_TOP__{T_SWEEP}.pcd.bin", T_SWEEP, False, "cs_lidar"),
        sample_data_record("sd_lidar_1", "s1",
                           f"samples/LIDAR_TOP/n015__LIDAR_TOP__{T1}.pcd.bin", T1, True, "cs_lidar"),
    ]
    return {
        "scene": [{
            "token": "scene_a",
            "log_token": "log_a",
            "nbr_samples": 2,
            "first_sample_token": "s0",
            "last_sample_token": "s1",
            "name": "scene-0061",
            "description": "synthetic scene",
        }],
        "sample": [
            {"token": "s0", "timestamp": T0, "prev": "", "next": "s1", "scene_token": "scene_a"},
            {"token": "s1", "timestamp": T1, "prev": "s0", "next": "", "scene_token": "scene_a"},
        ],
        "sample_data": sample_data,
        "ego_pose": [
            {"token": f"ep_{sd['token']}", "timestamp": sd["timestamp"],
             "translation": [float(i), 0.0, 0.0], "rotation": [1.0, 0.0, 0.0, 0.0]}
            for i, sd in enumerate(sample_data)
        ],
        "calibrated_sensor": [
            {"token": "cs_lidar", "sensor_token": "sen_lidar", "translation": [0.9, 0.0, 1.8],
             "rotation": [0.707, 0.0, 0.0, -0.707], "camera_intrinsic": []},
            {"token": "cs_cam", "sensor_token": "sen_cam", "translation": [1.7, 0.0, 1.5],
             "rotation": [0.5, -0.5, 0.5, -0.5],
             "camera_intrinsic": [[1266.4, 0.0, 816.3], [0.0, 1266.4, 491.5], [0.0, 0.0, 1.0]]},
            {"token": "cs_radar", "sensor_token": "sen_radar", "translation": [3.4, 0.0, 0.5],
             "rotation": [1.0, 0.0, 0.0, 0.0], "camera_intrinsic": []},
        ],
        "sensor": [
            {"token": "sen_lidar", "channel": "LIDAR_TOP", "modality": "lidar"},
            {"token": "sen_cam", "channel": "CAM_FRONT", "modality": "camera"},
            {"token": "sen_radar", "channel": "RADAR_FRONT", "modality": "radar"},
        ],
        "sample_annotation": [
            annotation_record("a0_car", "s0", "inst_car", (0.0, 0.0, 0.0)),
            annotation_record("a0_ped", "s0", "inst_ped", (10.0, 0.0, 0.0)),
            annotation_record("a1_car", "s1", "inst_car", (2.0, 0.0, 0.0)),
            annotation_record("a1_ped", "s1", "inst_ped", (10.0, 4.0, 0.0)),
        ],
        "instance": [
            {"token": "inst_car", "category_token": "cat_car", "nbr_annotations": 2},
            {"token": "inst_ped", "category_token": "cat_ped", "nbr_annotations": 2},
        ],
        "category": [
            {"token": "cat_car", "name": "vehicle.car", "description": ""},
            {"token": "cat_ped", "name": "human.pedestrian.adult", "description": ""},
        ],
    }


def write_dataset(root, tables, version="v1.0-mini"):
    metadata_path = os.path.join(root, version)
    os.makedirs(metadata_path, exist_ok=True)
    for name, records in tables.items():
        with open(os.path.join(metadata_path, f"{name}.json"), 'w') as f:
            json.dump(records, f, indent=2)

    for sd in tables["sample_data"]:
        path = os.path.join(root, sd["filename"])
        if "LIDAR" in sd["filename"]:
            write_lidar_bin(path, [[1.0, 2.0, 3.0, 0.5, 0.0], [4.0, 5.0, 6.0, 0.25, 1.0]])
        elif "CAM" in sd["filename"]:
            write_image(path)
        elif "RADAR" in sd["filename"]:
            write_radar_pcd(path)
    return metadata_path


@pytest.fixture
def tables():
    return make_tables()


@pytest.fixture
def dataset(tmp_path, tables):
    root = str(tmp_path / "nuscenes")
    metadata_path = write_dataset(root, tables)
    return SimpleNamespace(root=root, metadata_path=metadata_path, tables=tables,
                           output=str(tmp_path / "bags"))


class RecordingWriter(BaseWriter):
    """In-memory writer keeping every appended message."""

    def __init__(self):
        self.path = None
        self.closed = False
        self.messages = []

    def open(self, output_path):
        self.path = output_path
        return self

    def append(self, topic, timestamp_us, message):
        self.messages.append((topic, timestamp_us, message))

    def close(self):
        self.closed = True

    def topics(self):
        return {topic for topic, _, _ in self.messages}

    def on(self, topic):
        return [(timestamp, message) for t, timestamp, message in self.messages if t == topic]


@pytest.fixture
def recording_writers():
    writers = []

    def factory():
        writer = RecordingWriter()
        writers.append(writer)
        return writer

    return SimpleNamespace(factory=factory, created=writers)
