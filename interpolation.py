"""Annotation boxes for lidar sample data.

Annotations are only authoritative at key frames. For a sweep, the box of
each tracked instance is estimated between the previous sample and the sample
that owns the sweep.
"""
import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
from pyquaternion import Quaternion

from metadata_format import Box, Color, SampleAnnotationInfo, SampleDataInfo, SampleInfo

log = logging.getLogger(__name__)

RED: Color = (1.0, 0.239, 0.388, 1.0)
ORANGE: Color = (1.0, 0.619, 0.0, 1.0)
BLUE: Color = (0.0, 0.0, 0.901, 1.0)
BLACK: Color = (0.0, 0.0, 0.0, 1.0)
MAGENTA: Color = (1.0, 0.0, 1.0, 1.0)

# Ordered, first fragment found in the category name wins.
CATEGORY_COLORS = (
    ('bicycle', RED),
    ('motorcycle', RED),
    ('vehicle', ORANGE),
    ('bus', ORANGE),
    ('car', ORANGE),
    ('construction_vehicle', ORANGE),
    ('trailer', ORANGE),
    ('truck', ORANGE),
    ('pedestrian', BLUE),
    ('cone', BLACK),
    ('barrier', BLACK),
)
DEFAULT_COLOR = MAGENTA

# Corner index pairs of the 12 box edges, see box_corners() for the corner order.
BOX_EDGES = (
    (0, 1), (0, 3), (0, 4),
    (4, 5), (4, 7), (1, 5),
    (5, 6), (6, 7), (1, 2),
    (3, 7), (2, 3), (2, 6),
)


def get_color(category_name: str) -> Color:
    lowered = (category_name or '').lower()
    for fragment, color in CATEGORY_COLORS:
        if fragment in lowered:
            return color
    return DEFAULT_COLOR


def interpolation_amount(t: int, t0: int, t1: int) -> float:
    """Fraction of the way from t0 to t1, with t clamped into [t0, t1]."""
    if t1 <= t0:
        return 0.0
    t = max(t0, min(t1, t))
    return float(t - t0) / float(t1 - t0)


def lerp(amount: float, p0: Sequence[float], p1: Sequence[float]) -> np.ndarray:
    """amount * p0 + (1 - amount) * p1"""
    return amount * np.asarray(p0, dtype=np.float64) + (1.0 - amount) * np.asarray(p1, dtype=np.float64)


def make_box(annotation: SampleAnnotationInfo,
             center: Optional[Sequence[float]] = None,
             orientation: Optional[Sequence[float]] = None) -> Box:
    if center is None:
        center = annotation.translation
    if orientation is None:
        orientation = annotation.rotation
    return Box(
        token=annotation.token,
        category_name=annotation.category_name,
        center=[float(v) for v in center],
        size=[float(v) for v in annotation.size],
        orientation=[float(v) for v in orientation],
        color=get_color(annotation.category_name),
    )


def box_corners(box: Box) -> np.ndarray:
    """The eight corners of a box in the annotation frame, shape (8, 3).

    The box x axis spans the length (size[1]) and the y axis the width (size[0]).
    """
    width, depth, height = box.size
    min_point = np.array([-depth / 2.0, -width / 2.0, -height / 2.0])
    max_point = np.array([depth / 2.0, width / 2.0, height / 2.0])

    local = np.array([
        [min_point[0], min_point[1], min_point[2]],
        [min_point[0], min_point[1], max_point[2]],
        [max_point[0], min_point[1], max_point[2]],
        [max_point[0], min_point[1], min_point[2]],
        [min_point[0], max_point[1], min_point[2]],
        [min_point[0], max_point[1], max_point[2]],
        [max_point[0], max_point[1], max_point[2]],
        [max_point[0], max_point[1], min_point[2]],
    ])

    rotation = Quaternion(box.orientation).rotation_matrix
    return local @ rotation.T + np.asarray(box.center, dtype=np.float64)


class AnnotationInterpolator:

    def estimate(self,
                 sample_data: SampleDataInfo,
                 current_sample: SampleInfo,
                 previous_sample: SampleInfo,
                 current_annotations: List[SampleAnnotationInfo],
                 previous_annotations: List[SampleAnnotationInfo]) -> List[Box]:
        previous_by_instance = {}
        for prior in previous_annotations:
            # first annotation of an instance wins
            previous_by_instance.setdefault(prior.instance_token, prior)

        amount = interpolation_amount(sample_data.timestamp,
                                      previous_sample.timestamp,
                                      current_sample.timestamp)

        boxes = []
        for annotation in current_annotations:
            previous = previous_by_instance.get(annotation.instance_token)
            if previous is None:
                # Instance first seen in the current sample.
                boxes.append(make_box(annotation))
                continue

            center = lerp(amount, previous.translation, annotation.translation)
            orientation = Quaternion.slerp(Quaternion(previous.rotation),
                                           Quaternion(annotation.rotation),
                                           amount=amount)
            boxes.append(make_box(annotation, center, orientation.elements))
        return boxes

    def boxes_for(self,
                  sample_data: SampleDataInfo,
                  samples: Dict[str, SampleInfo],
                  annotations: Dict[str, List[SampleAnnotationInfo]]) -> Optional[List[Box]]:
        """Boxes for one lidar sample data, or None when a lookup fails."""
        current_sample = samples.get(sample_data.sample_token)
        if current_sample is None:
            log.warning(f"Sample {sample_data.sample_token} of {sample_data.filename} not found in scene")
            return None

        current_annotations = annotations.get(current_sample.token)
        if current_annotations is None:
            log.warning(f"No annotations entry for sample {current_sample.token}")
            return None

        if sample_data.is_key_frame or not current_sample.prev:
            return [make_box(annotation) for annotation in current_annotations]

        previous_sample = samples.get(current_sample.prev)
        if previous_sample is None:
            log.warning(f"Previous sample {current_sample.prev} not found in scene")
            return None

        previous_annotations = annotations.get(previous_sample.token)
        if previous_annotations is None:
            log.warning(f"No annotations entry for previous sample {previous_sample.token}")
            return None

        return self.estimate(sample_data, current_sample, previous_sample,
                             current_annotations, previous_annotations)
