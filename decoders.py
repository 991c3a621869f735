"""Per-modality sample file decoders.

Every decoder exposes ``decode(path)`` and returns ``None`` when the file is
missing or cannot be parsed; errors never cross this boundary.
"""
import os
import logging
from dataclasses import dataclass

import numpy as np
import open3d as o3d
from nuscenes.utils.data_classes import LidarPointCloud, RadarPointCloud
from PIL import Image

from sample_types import SampleType

log = logging.getLogger(__name__)

# Field order of the nuScenes radar PCD files, one row each in RadarPointCloud.points.
RADAR_DTYPE = np.dtype([
    ('x', np.float32), ('y', np.float32), ('z', np.float32),
    ('dyn_prop', np.int8), ('id', np.int16), ('rcs', np.float32),
    ('vx', np.float32), ('vy', np.float32), ('vx_comp', np.float32), ('vy_comp', np.float32),
    ('is_quality_valid', np.int8), ('ambig_state', np.int8),
    ('x_rms', np.int8), ('y_rms', np.int8), ('invalid_state', np.int8), ('pdh0', np.int8),
    ('vx_rms', np.int8), ('vy_rms', np.int8),
])


@dataclass
class DecodedImage:
    width: int
    height: int
    encoding: str
    step: int
    data: np.ndarray


@dataclass
class DecodedPointCloud:
    points: np.ndarray  # (N, 4) float32: x, y, z, intensity


@dataclass
class DecodedRadarObjects:
    records: np.ndarray  # structured array with RADAR_DTYPE


class ImageDecoder:

    def decode(self, path):
        if not os.path.exists(path):
            log.warning(f"Source image not found: {path}")
            return None
        try:
            with Image.open(path) as img:
                if img.mode != 'RGB':
                    img = img.convert('RGB')
                pixels = np.asarray(img, dtype=np.uint8)
        except Exception as e:
            log.error(f"Failed to decode image {path}: {e}")
            return None

        height, width = pixels.shape[:2]
        return DecodedImage(width=width, height=height, encoding='rgb8',
                            step=width * 3, data=pixels.reshape(-1))


class LidarDecoder:
    """Reads nuScenes ``.pcd.bin`` sweeps, or plain ``.pcd`` clouds through open3d."""

    def decode(self, path):
        if not os.path.exists(path):
            log.warning(f"Lidar file not found: {path}")
            return None
        try:
            if path.lower().endswith('.pcd'):
                points = self._read_pcd(path)
            else:
                # (4, N): x, y, z, intensity, ring index already dropped
                points = LidarPointCloud.from_file(path).points.T
        except Exception as e:
            log.error(f"Failed to decode lidar file {path}: {e}")
            return None
        return DecodedPointCloud(points=np.ascontiguousarray(points, dtype=np.float32))

    @staticmethod
    def _read_pcd(path):
        pcd = o3d.io.read_point_cloud(path)
        xyz = np.asarray(pcd.points, dtype=np.float32).reshape(-1, 3)
        # no intensity - append zeros
        intensity = np.zeros((xyz.shape[0], 1), dtype=np.float32)
        return np.hstack((xyz, intensity))


class RadarDecoder:
    """Reads nuScenes radar PCD files into radar object records, keeping every point."""

    def __init__(self):
        RadarPointCloud.disable_filters()

    def decode(self, path):
        if not os.path.exists(path):
            log.warning(f"Radar file not found: {path}")
            return None
        try:
            points = RadarPointCloud.from_file(path).points
            if points.shape[0] != len(RADAR_DTYPE.names):
                raise ValueError(f"expected {len(RADAR_DTYPE.names)} radar fields, got {points.shape[0]}")
        except Exception as e:
            log.error(f"Failed to decode radar file {path}: {e}")
            return None

        records = np.zeros(points.shape[1], dtype=RADAR_DTYPE)
        for row, name in enumerate(RADAR_DTYPE.names):
            records[name] = points[row]
        return DecodedRadarObjects(records=records)


DECODERS = {
    SampleType.CAMERA: ImageDecoder(),
    SampleType.LIDAR: LidarDecoder(),
    SampleType.RADAR: RadarDecoder(),
}
