import logging
from dataclasses import replace
from typing import List, Sequence, Tuple

import numpy as np

from messages import (
    Odometry,
    Pose,
    PoseWithCovariance,
    TFMessage,
    Twist,
    TwistWithCovariance,
    make_header,
    make_point,
    make_quaternion,
    make_transform_stamped,
    make_vector3,
)
from metadata_format import CalibratedSensorInfo, CalibratedSensorName, EgoPoseInfo

log = logging.getLogger(__name__)

MAP_FRAME = 'map'
ODOM_FRAME = 'odom'
BASE_FRAME = 'base_link'
IDENTITY_TRANSLATION = (0.0, 0.0, 0.0)
IDENTITY_ROTATION = (1.0, 0.0, 0.0, 0.0)


class CalibratedFrameBuilder:
    """Static sensor frames of a scene plus the per-pose vehicle frame."""

    def static_transforms(
            self, sensor_infos: Sequence[Tuple[CalibratedSensorInfo, CalibratedSensorName]]) -> list:
        transforms = []
        for calibrated_sensor, sensor in sensor_infos:
            transforms.append(make_transform_stamped(
                BASE_FRAME,
                sensor.name.lower(),
                calibrated_sensor.translation,
                calibrated_sensor.rotation,
            ))
        transforms.append(make_transform_stamped(MAP_FRAME, ODOM_FRAME,
                                                 IDENTITY_TRANSLATION, IDENTITY_ROTATION))
        log.debug(f"Built {len(transforms)} static transforms")
        return transforms

    @staticmethod
    def restamp(transforms: Sequence, timestamp_us) -> list:
        return [replace(t, header=make_header(timestamp_us, t.header.frame_id)) for t in transforms]

    @staticmethod
    def ego_transform(ego_pose: EgoPoseInfo):
        return make_transform_stamped(ODOM_FRAME, BASE_FRAME, ego_pose.translation,
                                      ego_pose.rotation, ego_pose.timestamp)

    @staticmethod
    def odometry(ego_pose: EgoPoseInfo):
        zero = make_vector3(IDENTITY_TRANSLATION)
        return Odometry(
            header=make_header(ego_pose.timestamp, ODOM_FRAME),
            child_frame_id=BASE_FRAME,
            pose=PoseWithCovariance(
                pose=Pose(position=make_point(ego_pose.translation),
                          orientation=make_quaternion(ego_pose.rotation)),
                covariance=np.zeros(36, dtype=np.float64),
            ),
            twist=TwistWithCovariance(
                twist=Twist(linear=zero, angular=zero),
                covariance=np.zeros(36, dtype=np.float64),
            ),
        )

    def transform_tree(self, ego_pose: EgoPoseInfo, static_transforms: Sequence):
        """The /tf message of one pose tick: vehicle transform first, then static ones."""
        transforms: List = [self.ego_transform(ego_pose)]
        transforms.extend(self.restamp(static_transforms, ego_pose.timestamp))
        return TFMessage(transforms=transforms)
