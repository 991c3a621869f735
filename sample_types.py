import logging
from enum import Enum

log = logging.getLogger(__name__)


class SampleType(Enum):
    CAMERA = 'camera'
    LIDAR = 'lidar'
    RADAR = 'radar'
    UNKNOWN = 'unknown'


# Checked in order, first match wins. Matching is case-sensitive.
SAMPLE_TYPE_MARKERS = (
    ('CAM', SampleType.CAMERA),
    ('RADAR', SampleType.RADAR),
    ('LIDAR', SampleType.LIDAR),
)


def classify(filename: str) -> SampleType:
    for marker, sample_type in SAMPLE_TYPE_MARKERS:
        if marker in filename:
            return sample_type
    log.warning(f"Unknown file type: {filename}")
    return SampleType.UNKNOWN
