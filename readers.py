import os
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from metadata_format import (
    CalibratedSensorInfo,
    CalibratedSensorName,
    EgoPoseInfo,
    SampleAnnotationInfo,
    SampleDataInfo,
    SampleInfo,
    SceneInfo,
    optional_str,
    parse_scene_id,
)
from utils import load_json_table

log = logging.getLogger(__name__)

REQUIRED_TABLES = (
    'scene',
    'sample',
    'sample_data',
    'ego_pose',
    'calibrated_sensor',
    'sensor',
    'sample_annotation',
    'instance',
    'category',
)


class BaseReader(ABC):
    """Read-only lookup service over a dataset's metadata tables."""

    @abstractmethod
    def all_scene_tokens(self) -> List[str]:
        pass

    @abstractmethod
    def scene_info(self, scene_token: str) -> Optional[SceneInfo]:
        pass

    @abstractmethod
    def sample_data(self, scene_token: str) -> List[SampleDataInfo]:
        pass

    @abstractmethod
    def samples(self, scene_token: str) -> Dict[str, SampleInfo]:
        pass

    @abstractmethod
    def annotations(self, scene_token: str) -> Dict[str, List[SampleAnnotationInfo]]:
        pass

    @abstractmethod
    def ego_poses(self, scene_token: str) -> List[EgoPoseInfo]:
        pass

    @abstractmethod
    def calibrated_sensor(self, calibrated_sensor_token: str) -> Optional[CalibratedSensorInfo]:
        pass

    @abstractmethod
    def sensor_name(self, sensor_token: str) -> Optional[CalibratedSensorName]:
        pass

    @abstractmethod
    def calibrated_sensors_for_scene(
            self, scene_token: str) -> List[Tuple[CalibratedSensorInfo, CalibratedSensorName]]:
        pass


class MetadataIndex(BaseReader):
    """Indexes the nuScenes JSON tables once; shared read-only by every scene worker."""

    def __init__(self):
        self._loaded = False
        self._scenes: List[SceneInfo] = []
        self._scene_by_token: Dict[str, SceneInfo] = {}
        self._samples_by_scene: Dict[str, Dict[str, SampleInfo]] = {}
        self._ordered_samples_by_scene: Dict[str, List[SampleInfo]] = {}
        self._sample_data_by_sample: Dict[str, List[SampleDataInfo]] = defaultdict(list)
        self._annotations_by_sample: Dict[str, List[SampleAnnotationInfo]] = defaultdict(list)
        self._ego_pose_by_token: Dict[str, EgoPoseInfo] = {}
        self._calibrated_sensors: Dict[str, CalibratedSensorInfo] = {}
        self._sensors: Dict[str, CalibratedSensorName] = {}

    def validate(self, directory_path: str) -> dict:
        directory_path = os.path.abspath(directory_path)

        if not os.path.isdir(directory_path):
            return {
                'valid': False,
                'error': f'Not a directory: {directory_path}'
            }

        missing = [name for name in REQUIRED_TABLES
                   if not os.path.exists(os.path.join(directory_path, f"{name}.json"))]
        if missing:
            return {
                'valid': False,
                'error': f"Missing {', '.join(n + '.json' for n in missing)} in {directory_path}"
            }

        return {'valid': True, 'info': {'metadata_path': directory_path}}

    def load(self, directory_path: str) -> 'MetadataIndex':
        log.info(f"Loading metadata tables from: {directory_path}")

        validation = self.validate(directory_path)
        if not validation['valid']:
            raise FileNotFoundError(validation['error'])

        directory_path = os.path.abspath(directory_path)
        tables = {name: load_json_table(os.path.join(directory_path, f"{name}.json"))
                  for name in REQUIRED_TABLES}

        try:
            self._index_scenes(tables['scene'])
            self._index_samples(tables['sample'])
            self._index_sample_data(tables['sample_data'])
            self._index_ego_poses(tables['ego_pose'])
            self._index_sensors(tables['calibrated_sensor'], tables['sensor'])
            self._index_annotations(tables['sample_annotation'], tables['instance'], tables['category'])
        except (KeyError, TypeError, AssertionError) as e:
            raise ValueError(f"Malformed metadata in {directory_path}: {e!r}")

        self._loaded = True
        log.info(self.summary())
        return self

    def _index_scenes(self, records):
        for rec in records:
            scene = SceneInfo(
                token=rec['token'],
                scene_id=parse_scene_id(rec['name']),
                name=rec['name'],
                description=rec.get('description', ''),
                first_sample_token=optional_str(rec.get('first_sample_token')),
                sample_count=int(rec.get('nbr_samples', 0)),
            )
            self._scenes.append(scene)
            self._scene_by_token[scene.token] = scene

    def _index_samples(self, records):
        all_samples: Dict[str, SampleInfo] = {}
        for rec in records:
            sample = SampleInfo(
                token=rec['token'],
                scene_token=rec['scene_token'],
                timestamp=int(rec['timestamp']),
                prev=optional_str(rec.get('prev')),
                next=optional_str(rec.get('next')),
            )
            all_samples[sample.token] = sample
            self._samples_by_scene.setdefault(sample.scene_token, {})[sample.token] = sample

        for scene in self._scenes:
            scene_samples = self._samples_by_scene.get(scene.token, {})
            self._ordered_samples_by_scene[scene.token] = self._walk_sample_chain(scene, scene_samples)

    @staticmethod
    def _walk_sample_chain(scene, scene_samples):
        ordered = []
        seen = set()
        token = scene.first_sample_token
        while token and token in scene_samples and token not in seen:
            seen.add(token)
            ordered.append(scene_samples[token])
            token = scene_samples[token].next

        leftovers = [s for s in scene_samples.values() if s.token not in seen]
        if leftovers:
            log.warning(f"Scene {scene.name}: {len(leftovers)} samples are not reachable "
                        f"from the first sample, appending them by timestamp")
            ordered.extend(sorted(leftovers, key=lambda s: s.timestamp))
        return ordered

    def _index_sample_data(self, records):
        for rec in records:
            sample_data = SampleDataInfo(
                token=rec['token'],
                sample_token=rec['sample_token'],
                ego_pose_token=optional_str(rec.get('ego_pose_token')),
                calibrated_sensor_token=optional_str(rec.get('calibrated_sensor_token')),
                filename=rec['filename'],
                timestamp=int(rec['timestamp']),
                is_key_frame=bool(rec.get('is_key_frame', False)),
            )
            self._sample_data_by_sample[sample_data.sample_token].append(sample_data)

    def _index_ego_poses(self, records):
        for rec in records:
            self._ego_pose_by_token[rec['token']] = EgoPoseInfo(
                token=rec['token'],
                timestamp=int(rec['timestamp']),
                translation=[float(v) for v in rec['translation']],
                rotation=[float(v) for v in rec['rotation']],
            )

    def _index_sensors(self, calibrated_records, sensor_records):
        for rec in sensor_records:
            self._sensors[rec['token']] = CalibratedSensorName(
                token=rec['token'],
                name=rec['channel'],
                modality=rec.get('modality', ''),
            )
        for rec in calibrated_records:
            self._calibrated_sensors[rec['token']] = CalibratedSensorInfo(
                token=rec['token'],
                sensor_token=rec['sensor_token'],
                translation=[float(v) for v in rec['translation']],
                rotation=[float(v) for v in rec['rotation']],
            )

    def _index_annotations(self, annotation_records, instance_records, category_records):
        category_names = {rec['token']: rec['name'] for rec in category_records}
        instance_categories = {
            rec['token']: category_names.get(rec.get('category_token'), '')
            for rec in instance_records
        }

        for rec in annotation_records:
            instance_token = rec['instance_token']
            category_name = instance_categories.get(instance_token)
            if category_name is None:
                log.debug(f"Annotation {rec['token']} references unknown instance {instance_token}")
                category_name = ''

            annotation = SampleAnnotationInfo(
                token=rec['token'],
                sample_token=rec['sample_token'],
                instance_token=instance_token,
                translation=[float(v) for v in rec['translation']],
                size=[float(v) for v in rec['size']],
                rotation=[float(v) for v in rec['rotation']],
                category_name=category_name,
            )
            self._annotations_by_sample[annotation.sample_token].append(annotation)

    def _check_loaded(self):
        if not self._loaded:
            raise RuntimeError("MetadataIndex.load() must be called before querying")

    def all_scene_tokens(self) -> List[str]:
        self._check_loaded()
        return [scene.token for scene in self._scenes]

    def scene_info(self, scene_token: str) -> Optional[SceneInfo]:
        self._check_loaded()
        return self._scene_by_token.get(scene_token)

    def find_scene_by_id(self, scene_id: int) -> Optional[str]:
        self._check_loaded()
        for scene in self._scenes:
            if scene.scene_id == scene_id:
                return scene.token
        return None

    def sample_data(self, scene_token: str) -> List[SampleDataInfo]:
        self._check_loaded()
        result = []
        for sample in self._ordered_samples_by_scene.get(scene_token, []):
            result.extend(self._sample_data_by_sample.get(sample.token, []))
        return result

    def samples(self, scene_token: str) -> Dict[str, SampleInfo]:
        self._check_loaded()
        return dict(self._samples_by_scene.get(scene_token, {}))

    def annotations(self, scene_token: str) -> Dict[str, List[SampleAnnotationInfo]]:
        self._check_loaded()
        return {
            sample.token: list(self._annotations_by_sample.get(sample.token, []))
            for sample in self._ordered_samples_by_scene.get(scene_token, [])
        }

    def ego_poses(self, scene_token: str) -> List[EgoPoseInfo]:
        self._check_loaded()
        poses = {}
        for sample_data in self.sample_data(scene_token):
            ego_pose = self._ego_pose_by_token.get(sample_data.ego_pose_token)
            if ego_pose is None:
                log.debug(f"Sample data {sample_data.token} references unknown ego pose "
                          f"{sample_data.ego_pose_token}")
                continue
            poses[ego_pose.token] = ego_pose
        return sorted(poses.values(), key=lambda pose: pose.timestamp)

    def calibrated_sensor(self, calibrated_sensor_token: str) -> Optional[CalibratedSensorInfo]:
        self._check_loaded()
        return self._calibrated_sensors.get(calibrated_sensor_token)

    def sensor_name(self, sensor_token: str) -> Optional[CalibratedSensorName]:
        self._check_loaded()
        return self._sensors.get(sensor_token)

    def calibrated_sensors_for_scene(
            self, scene_token: str) -> List[Tuple[CalibratedSensorInfo, CalibratedSensorName]]:
        self._check_loaded()
        result = []
        seen = set()
        for sample_data in self.sample_data(scene_token):
            token = sample_data.calibrated_sensor_token
            if token in seen:
                continue
            seen.add(token)

            calibrated_sensor = self._calibrated_sensors.get(token)
            if calibrated_sensor is None:
                log.debug(f"Unknown calibrated sensor {token} in scene {scene_token}")
                continue
            sensor = self._sensors.get(calibrated_sensor.sensor_token)
            if sensor is None:
                log.debug(f"Unknown sensor {calibrated_sensor.sensor_token} in scene {scene_token}")
                continue
            result.append((calibrated_sensor, sensor))
        return result

    def summary(self) -> str:
        return (f"Metadata index: {len(self._scenes)} scenes, "
                f"{sum(len(s) for s in self._samples_by_scene.values())} samples, "
                f"{sum(len(s) for s in self._sample_data_by_sample.values())} sample data, "
                f"{len(self._ego_pose_by_token)} ego poses, "
                f"{len(self._calibrated_sensors)} calibrated sensors, "
                f"{sum(len(a) for a in self._annotations_by_sample.values())} annotations")
