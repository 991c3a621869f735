"""Conversion of one scene into one bag.

A scene is converted in two steps: ``submit`` binds the scene-local records
from the shared metadata index, ``run`` writes the pose track, the annotation
track and the sensor files into the scene's bag.
"""
import os
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional

from decoders import DECODERS
from frames import CalibratedFrameBuilder
from interpolation import AnnotationInterpolator
from messages import (
    boxes_message,
    image_message,
    make_header,
    marker_array_message,
    point_cloud_message,
    radar_objects_message,
)
from metadata_format import SampleDataInfo, SceneRecords
from readers import BaseReader
from sample_types import SampleType, classify
from utils import FileProgress
from writers import BaseWriter, BagWriter

log = logging.getLogger(__name__)

ODOM_TOPIC = '/odom'
TF_TOPIC = '/tf'
BOXES_TOPIC = 'boxes'
BOXES_VIZ_TOPIC = 'boxes_viz'
CAMERA_TOPIC_SUFFIX = '/raw'
ANNOTATION_LIFETIME_S = 1.0 / 25.0  # annotations are displayed at 25Hz

MESSAGE_BUILDERS = {
    SampleType.CAMERA: image_message,
    SampleType.LIDAR: point_cloud_message,
    SampleType.RADAR: radar_objects_message,
}


def topic_for(sensor_name: str, sample_type: SampleType) -> str:
    if sample_type == SampleType.CAMERA:
        return sensor_name + CAMERA_TOPIC_SUFFIX
    return sensor_name


@dataclass
class DecodeJob:
    sample_data: SampleDataInfo
    sample_type: SampleType
    sensor_name: str
    path: str


class SceneConverter:

    def __init__(self,
                 metadata: BaseReader,
                 writer_factory: Callable[[], BaseWriter] = BagWriter,
                 decoders: Optional[dict] = None,
                 decode_workers: int = 4,
                 decode_window: int = 16):
        self.metadata = metadata
        self.writer_factory = writer_factory
        self.decoders = decoders if decoders is not None else DECODERS
        self.decode_workers = max(1, decode_workers)
        self.decode_window = max(1, decode_window)
        self.interpolator = AnnotationInterpolator()
        self.frame_builder = CalibratedFrameBuilder()

        self.scene_token = None
        self.records: Optional[SceneRecords] = None
        self.sample_types: List[SampleType] = []
        self.written = 0
        self.skipped = 0

    @property
    def scene_id(self):
        return self.records.scene.scene_id

    def submit(self, scene_token: str, progress: FileProgress):
        scene = self.metadata.scene_info(scene_token)
        if scene is None:
            raise KeyError(f"Scene {scene_token} not found in metadata")

        self.scene_token = scene_token
        self.records = SceneRecords(
            scene=scene,
            samples=self.metadata.samples(scene_token),
            sample_data=self.metadata.sample_data(scene_token),
            annotations=self.metadata.annotations(scene_token),
            ego_poses=self.metadata.ego_poses(scene_token),
        )
        self.sample_types = [classify(sd.filename) for sd in self.records.sample_data]
        progress.add_to_process(len(self.records.sample_data))
        log.debug(self.records.summary())

    def run(self, dataset_path: str, output_dir: str, progress: FileProgress) -> str:
        if self.records is None:
            raise RuntimeError("SceneConverter.submit() must be called before run()")

        bag_path = os.path.join(output_dir, f"{self.scene_id}.bag")
        writer = self.writer_factory()
        writer.open(bag_path)
        try:
            self.convert_ego_poses(writer)
            self.convert_annotations(writer)
            self.convert_sample_data(writer, dataset_path, progress)
        finally:
            writer.close()

        log.info(f"Scene {self.scene_id}: {self.written} sensor messages written, "
                 f"{self.skipped} files skipped")
        return bag_path

    def convert_ego_poses(self, writer: BaseWriter):
        sensor_infos = self.metadata.calibrated_sensors_for_scene(self.scene_token)
        static_transforms = self.frame_builder.static_transforms(sensor_infos)

        for ego_pose in self.records.ego_poses:
            writer.append(ODOM_TOPIC, ego_pose.timestamp, self.frame_builder.odometry(ego_pose))
            writer.append(TF_TOPIC, ego_pose.timestamp,
                          self.frame_builder.transform_tree(ego_pose, static_transforms))

    def convert_annotations(self, writer: BaseWriter):
        for sample_data, sample_type in zip(self.records.sample_data, self.sample_types):
            if sample_type != SampleType.LIDAR:
                continue

            boxes = self.interpolator.boxes_for(sample_data, self.records.samples,
                                                self.records.annotations)
            if boxes is None:
                continue

            writer.append(BOXES_TOPIC, sample_data.timestamp,
                          boxes_message(boxes, sample_data.timestamp))
            writer.append(BOXES_VIZ_TOPIC, sample_data.timestamp,
                          marker_array_message(boxes, sample_data.timestamp, ANNOTATION_LIFETIME_S))

    def _resolve_sensor_name(self, sample_data: SampleDataInfo) -> Optional[str]:
        calibrated_sensor = self.metadata.calibrated_sensor(sample_data.calibrated_sensor_token)
        if calibrated_sensor is None:
            log.warning(f"Calibrated sensor {sample_data.calibrated_sensor_token} not found, "
                        f"skipping {sample_data.filename}")
            return None

        sensor = self.metadata.sensor_name(calibrated_sensor.sensor_token)
        if sensor is None:
            log.warning(f"Sensor {calibrated_sensor.sensor_token} not found, "
                        f"skipping {sample_data.filename}")
            return None
        return sensor.name.lower()

    def _decode_jobs(self, dataset_path: str, progress: FileProgress):
        for sample_data, sample_type in zip(self.records.sample_data, self.sample_types):
            if sample_type == SampleType.UNKNOWN or sample_type not in self.decoders:
                self.skipped += 1
                progress.add_to_processed(1)
                continue

            sensor_name = self._resolve_sensor_name(sample_data)
            if sensor_name is None:
                self.skipped += 1
                progress.add_to_processed(1)
                continue

            yield DecodeJob(sample_data=sample_data,
                            sample_type=sample_type,
                            sensor_name=sensor_name,
                            path=os.path.join(dataset_path, sample_data.filename))

    def convert_sample_data(self, writer: BaseWriter, dataset_path: str, progress: FileProgress):
        """Decode on a worker pool, write from this thread in sample data order."""
        pending = deque()
        with ThreadPoolExecutor(max_workers=self.decode_workers,
                                thread_name_prefix=f"decode-{self.scene_id}") as pool:
            for job in self._decode_jobs(dataset_path, progress):
                decoder = self.decoders[job.sample_type]
                pending.append((job, pool.submit(decoder.decode, job.path)))
                if len(pending) >= self.decode_window:
                    self._write_decoded(writer, *pending.popleft(), progress)

            while pending:
                self._write_decoded(writer, *pending.popleft(), progress)

    def _write_decoded(self, writer: BaseWriter, job: DecodeJob, future, progress: FileProgress):
        try:
            payload = future.result()
        except Exception as e:
            log.error(f"Decoder raised for {job.path}: {e}")
            payload = None

        if payload is None:
            log.warning(f"Could not decode {job.path}, skipping")
            self.skipped += 1
        else:
            header = make_header(job.sample_data.timestamp, job.sensor_name)
            message = MESSAGE_BUILDERS[job.sample_type](payload, header)
            writer.append(topic_for(job.sensor_name, job.sample_type),
                          job.sample_data.timestamp, message)
            self.written += 1

        progress.add_to_processed(1)
