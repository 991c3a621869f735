import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


SCENE_ID_PATTERN = re.compile(r'(\d+)$')


def parse_scene_id(scene_name: str) -> int:
    """Extract the numeric id from a scene name such as ``scene-0061``."""
    match = SCENE_ID_PATTERN.search(scene_name or '')
    if not match:
        raise ValueError(f"Scene name has no numeric id: {scene_name!r}")
    return int(match.group(1))


@dataclass
class SceneInfo:
    token: str
    scene_id: int
    name: str = ""
    description: str = ""
    first_sample_token: str = ""
    sample_count: int = 0

    def __post_init__(self):
        assert self.token, "Scene token cannot be empty"
        assert self.scene_id >= 0, "Scene id must be non-negative"


@dataclass
class SampleInfo:
    token: str
    scene_token: str
    timestamp: int
    prev: str = ""
    next: str = ""

    def __post_init__(self):
        assert self.token, "Sample token cannot be empty"
        assert self.timestamp >= 0, "Timestamp must be non-negative"


@dataclass
class SampleDataInfo:
    token: str
    sample_token: str
    ego_pose_token: str
    calibrated_sensor_token: str
    filename: str
    timestamp: int
    is_key_frame: bool = False

    def __post_init__(self):
        assert self.token, "Sample data token cannot be empty"
        assert self.filename, "Sample data filename cannot be empty"
        assert self.timestamp >= 0, "Timestamp must be non-negative"


@dataclass
class EgoPoseInfo:
    token: str
    timestamp: int
    translation: List[float]
    rotation: List[float]

    def __post_init__(self):
        """Validate ego pose data."""
        assert len(self.translation) == 3, "Translation must be [x, y, z]"
        assert len(self.rotation) == 4, "Rotation must be quaternion [w, x, y, z]"
        assert self.timestamp >= 0, "Timestamp must be non-negative"


@dataclass
class CalibratedSensorInfo:
    token: str
    sensor_token: str
    translation: List[float]
    rotation: List[float]

    def __post_init__(self):
        """Validate calibration data."""
        assert len(self.translation) == 3, "Translation must be [x, y, z]"
        assert len(self.rotation) == 4, "Rotation must be quaternion [w, x, y, z]"


@dataclass
class CalibratedSensorName:
    token: str
    name: str
    modality: str = ""

    def __post_init__(self):
        assert self.name, "Sensor channel name cannot be empty"


@dataclass
class SampleAnnotationInfo:
    token: str
    sample_token: str
    instance_token: str
    translation: List[float]
    size: List[float]
    rotation: List[float]
    category_name: str = ""

    def __post_init__(self):
        """Validate annotation data."""
        assert len(self.translation) == 3, "Translation must be [x, y, z]"
        assert len(self.size) == 3, "Size must be [width, length, height]"
        assert len(self.rotation) == 4, "Rotation must be quaternion [w, x, y, z]"


Color = Tuple[float, float, float, float]


@dataclass
class Box:
    token: str
    category_name: str
    center: List[float]
    size: List[float]
    orientation: List[float]
    color: Color = (1.0, 0.0, 1.0, 1.0)

    def __post_init__(self):
        assert len(self.center) == 3, "Center must be [x, y, z]"
        assert len(self.size) == 3, "Size must be [width, length, height]"
        assert len(self.orientation) == 4, "Orientation must be quaternion [w, x, y, z]"


@dataclass
class SceneRecords:
    """Scene-local view of the index, built when a scene conversion starts."""
    scene: SceneInfo
    samples: dict = field(default_factory=dict)
    sample_data: List[SampleDataInfo] = field(default_factory=list)
    annotations: dict = field(default_factory=dict)
    ego_poses: List[EgoPoseInfo] = field(default_factory=list)

    def summary(self) -> str:
        key_frames = sum(1 for sd in self.sample_data if sd.is_key_frame)
        return (f"scene {self.scene.scene_id} ({self.scene.name}): "
                f"{len(self.samples)} samples, {len(self.sample_data)} sample data "
                f"({key_frames} key frames), {len(self.ego_poses)} ego poses, "
                f"{sum(len(a) for a in self.annotations.values())} annotations")


def optional_str(value: Optional[str]) -> str:
    return value if value else ""
