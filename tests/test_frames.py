import pytest

from frames import BASE_FRAME, MAP_FRAME, ODOM_FRAME, CalibratedFrameBuilder
from metadata_format import CalibratedSensorInfo, CalibratedSensorName, EgoPoseInfo


@pytest.fixture
def sensor_infos():
    return [
        (CalibratedSensorInfo(token="cs_lidar", sensor_token="sen_lidar",
                              translation=[0.9, 0.0, 1.8], rotation=[0.707, 0.0, 0.0, -0.707]),
         CalibratedSensorName(token="sen_lidar", name="LIDAR_TOP", modality="lidar")),
        (CalibratedSensorInfo(token="cs_cam", sensor_token="sen_cam",
                              translation=[1.7, 0.0, 1.5], rotation=[0.5, -0.5, 0.5, -0.5]),
         CalibratedSensorName(token="sen_cam", name="CAM_FRONT", modality="camera")),
    ]


@pytest.fixture
def ego_pose():
    return EgoPoseInfo(token="ep", timestamp=1_532_402_927_647_951,
                       translation=[411.3, 1180.9, 0.0], rotation=[0.57, -0.01, 0.01, -0.82])


def test_static_transforms_per_sensor_and_map_to_odom(sensor_infos):
    transforms = CalibratedFrameBuilder().static_transforms(sensor_infos)

    frames = [(t.header.frame_id, t.child_frame_id) for t in transforms]
    assert frames == [(BASE_FRAME, "lidar_top"), (BASE_FRAME, "cam_front"), (MAP_FRAME, ODOM_FRAME)]

    lidar = transforms[0].transform
    assert (lidar.translation.x, lidar.translation.y, lidar.translation.z) == (0.9, 0.0, 1.8)
    assert (lidar.rotation.w, lidar.rotation.z) == (0.707, -0.707)

    identity = transforms[-1].transform
    assert identity.rotation.w == 1.0
    assert identity.translation.x == 0.0


def test_static_transforms_without_sensors():
    transforms = CalibratedFrameBuilder().static_transforms([])
    assert [(t.header.frame_id, t.child_frame_id) for t in transforms] == [(MAP_FRAME, ODOM_FRAME)]


def test_restamp_keeps_originals(sensor_infos):
    builder = CalibratedFrameBuilder()
    statics = builder.static_transforms(sensor_infos)

    restamped = builder.restamp(statics, 2_500_000)

    assert [t.header.stamp.sec for t in restamped] == [2, 2, 2]
    assert restamped[0].header.stamp.nanosec == 500_000_000
    assert restamped[0].header.frame_id == BASE_FRAME
    assert statics[0].header.stamp.sec == 0


def test_odometry_from_ego_pose(ego_pose):
    odom = CalibratedFrameBuilder().odometry(ego_pose)

    assert odom.header.frame_id == ODOM_FRAME
    assert odom.child_frame_id == BASE_FRAME
    assert odom.header.stamp.sec == 1_532_402_927
    assert odom.header.stamp.nanosec == 647_951_000
    assert odom.pose.pose.position.x == pytest.approx(411.3)
    assert odom.pose.pose.orientation.w == pytest.approx(0.57)
    assert odom.pose.pose.orientation.z == pytest.approx(-0.82)
    assert odom.pose.covariance.shape == (36,)
    assert not odom.pose.covariance.any()


def test_transform_tree_starts_with_vehicle_frame(ego_pose, sensor_infos):
    builder = CalibratedFrameBuilder()
    statics = builder.static_transforms(sensor_infos)

    tree = builder.transform_tree(ego_pose, statics)

    first = tree.transforms[0]
    assert (first.header.frame_id, first.child_frame_id) == (ODOM_FRAME, BASE_FRAME)
    assert first.transform.translation.y == pytest.approx(1180.9)
    assert len(tree.transforms) == 1 + len(statics)
    assert {t.header.stamp.sec for t in tree.transforms} == {1_532_402_927}
