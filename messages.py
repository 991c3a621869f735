"""ROS1 message types and builders used for the bag output.

All messages are instances of the classes generated by the shared rosbags
type store, which also holds the converter's own Box, Boxes and RadarObjects
definitions.
"""
import logging
from typing import List, Sequence

import numpy as np
from rosbags.typesys import Stores, get_types_from_msg, get_typestore

from metadata_format import Box
from interpolation import BOX_EDGES, box_corners
from utils import stamp_us_to_sec_nsec

log = logging.getLogger(__name__)

MSG_PACKAGE = 'nuscenes2bag'

BOX_MSG = """
geometry_msgs/Point center
geometry_msgs/Vector3 size
geometry_msgs/Quaternion orientation
std_msgs/ColorRGBA color
string token
string category_name
"""

BOXES_MSG = """
std_msgs/Header header
nuscenes2bag/Box[] boxes
"""

RADAR_OBJECT_MSG = """
geometry_msgs/Vector3 pose
int8 dyn_prop
int16 id
float32 rcs
float32 vx
float32 vy
float32 vx_comp
float32 vy_comp
int8 is_quality_valid
int8 ambig_state
int8 x_rms
int8 y_rms
int8 invalid_state
int8 pdh0
int8 vx_rms
int8 vy_rms
"""

RADAR_OBJECTS_MSG = """
std_msgs/Header header
nuscenes2bag/RadarObject[] objects
"""


# tf2_msgs is not part of the stock ROS1 store.
TF_MESSAGE_TYPE = 'tf2_msgs/msg/TFMessage'
TF_MESSAGE_MSG = """
geometry_msgs/TransformStamped[] transforms
"""


def _build_typestore():
    typestore = get_typestore(Stores.ROS1_NOETIC)
    custom_types = {}
    for name, text in (('Box', BOX_MSG), ('Boxes', BOXES_MSG),
                       ('RadarObject', RADAR_OBJECT_MSG), ('RadarObjects', RADAR_OBJECTS_MSG)):
        custom_types.update(get_types_from_msg(text, f'{MSG_PACKAGE}/msg/{name}'))
    if TF_MESSAGE_TYPE not in typestore.types:
        custom_types.update(get_types_from_msg(TF_MESSAGE_MSG, TF_MESSAGE_TYPE))
    typestore.register(custom_types)
    return typestore


TYPESTORE = _build_typestore()


def msg_class(msgtype):
    return TYPESTORE.types[msgtype]


Time = msg_class('builtin_interfaces/msg/Time')
Duration = msg_class('builtin_interfaces/msg/Duration')
Header = msg_class('std_msgs/msg/Header')
ColorRGBA = msg_class('std_msgs/msg/ColorRGBA')
Point = msg_class('geometry_msgs/msg/Point')
Vector3 = msg_class('geometry_msgs/msg/Vector3')
Quaternion = msg_class('geometry_msgs/msg/Quaternion')
Pose = msg_class('geometry_msgs/msg/Pose')
PoseWithCovariance = msg_class('geometry_msgs/msg/PoseWithCovariance')
Twist = msg_class('geometry_msgs/msg/Twist')
TwistWithCovariance = msg_class('geometry_msgs/msg/TwistWithCovariance')
Transform = msg_class('geometry_msgs/msg/Transform')
TransformStamped = msg_class('geometry_msgs/msg/TransformStamped')
TFMessage = msg_class(TF_MESSAGE_TYPE)
Odometry = msg_class('nav_msgs/msg/Odometry')
Image = msg_class('sensor_msgs/msg/Image')
PointField = msg_class('sensor_msgs/msg/PointField')
PointCloud2 = msg_class('sensor_msgs/msg/PointCloud2')
Marker = msg_class('visualization_msgs/msg/Marker')
MarkerArray = msg_class('visualization_msgs/msg/MarkerArray')
BoxMsg = msg_class(f'{MSG_PACKAGE}/msg/Box')
BoxesMsg = msg_class(f'{MSG_PACKAGE}/msg/Boxes')
RadarObjectMsg = msg_class(f'{MSG_PACKAGE}/msg/RadarObject')
RadarObjectsMsg = msg_class(f'{MSG_PACKAGE}/msg/RadarObjects')

POINT_FIELD_FLOAT32 = 7
MARKER_LINE_LIST = 5
MARKER_ADD = 0
MARKER_LINE_WIDTH = 0.1
MARKER_NAMESPACE = 'annotations'
ANNOTATION_FRAME = 'map'


def make_time(timestamp_us) -> 'Time':
    sec, nanosec = stamp_us_to_sec_nsec(timestamp_us)
    return Time(sec=sec, nanosec=nanosec)


def make_duration(seconds: float) -> 'Duration':
    sec = int(seconds)
    return Duration(sec=sec, nanosec=int(round((seconds - sec) * 1e9)))


def make_header(timestamp_us, frame_id: str = '') -> 'Header':
    return Header(seq=0, stamp=make_time(timestamp_us), frame_id=frame_id)


def make_vector3(values: Sequence[float]) -> 'Vector3':
    return Vector3(x=float(values[0]), y=float(values[1]), z=float(values[2]))


def make_point(values: Sequence[float]) -> 'Point':
    return Point(x=float(values[0]), y=float(values[1]), z=float(values[2]))


def make_quaternion(wxyz: Sequence[float]) -> 'Quaternion':
    """Dataset quaternions are stored w, x, y, z."""
    return Quaternion(x=float(wxyz[1]), y=float(wxyz[2]), z=float(wxyz[3]), w=float(wxyz[0]))


def make_color(rgba: Sequence[float]) -> 'ColorRGBA':
    return ColorRGBA(r=float(rgba[0]), g=float(rgba[1]), b=float(rgba[2]), a=float(rgba[3]))


def make_transform_stamped(frame_id: str, child_frame_id: str,
                           translation: Sequence[float], rotation: Sequence[float],
                           timestamp_us=0) -> 'TransformStamped':
    return TransformStamped(
        header=make_header(timestamp_us, frame_id),
        child_frame_id=child_frame_id,
        transform=Transform(translation=make_vector3(translation),
                            rotation=make_quaternion(rotation)),
    )


def image_message(decoded, header) -> 'Image':
    return Image(
        header=header,
        height=decoded.height,
        width=decoded.width,
        encoding=decoded.encoding,
        is_bigendian=0,
        step=decoded.step,
        data=np.ascontiguousarray(decoded.data, dtype=np.uint8).reshape(-1),
    )


def point_cloud_message(decoded, header) -> 'PointCloud2':
    points = np.ascontiguousarray(decoded.points, dtype=np.float32)
    fields = [
        PointField(name=name, offset=4 * i, datatype=POINT_FIELD_FLOAT32, count=1)
        for i, name in enumerate(('x', 'y', 'z', 'intensity'))
    ]
    point_step = 4 * len(fields)
    return PointCloud2(
        header=header,
        height=1,
        width=points.shape[0],
        fields=fields,
        is_bigendian=False,
        point_step=point_step,
        row_step=point_step * points.shape[0],
        data=np.frombuffer(points.tobytes(), dtype=np.uint8),
        is_dense=True,
    )


def radar_objects_message(decoded, header) -> 'RadarObjectsMsg':
    objects = []
    for record in decoded.records:
        objects.append(RadarObjectMsg(
            pose=make_vector3((record['x'], record['y'], record['z'])),
            dyn_prop=int(record['dyn_prop']),
            id=int(record['id']),
            rcs=float(record['rcs']),
            vx=float(record['vx']),
            vy=float(record['vy']),
            vx_comp=float(record['vx_comp']),
            vy_comp=float(record['vy_comp']),
            is_quality_valid=int(record['is_quality_valid']),
            ambig_state=int(record['ambig_state']),
            x_rms=int(record['x_rms']),
            y_rms=int(record['y_rms']),
            invalid_state=int(record['invalid_state']),
            pdh0=int(record['pdh0']),
            vx_rms=int(record['vx_rms']),
            vy_rms=int(record['vy_rms']),
        ))
    return RadarObjectsMsg(header=header, objects=objects)


def box_message(box: Box) -> 'BoxMsg':
    return BoxMsg(
        center=make_point(box.center),
        size=make_vector3(box.size),
        orientation=make_quaternion(box.orientation),
        color=make_color(box.color),
        token=box.token,
        category_name=box.category_name,
    )


def boxes_message(boxes: List[Box], timestamp_us) -> 'BoxesMsg':
    return BoxesMsg(header=make_header(timestamp_us, ANNOTATION_FRAME),
                    boxes=[box_message(box) for box in boxes])


def marker_message(box: Box, marker_id: int, timestamp_us, lifetime_s: float) -> 'Marker':
    """LINE_LIST marker drawing the 12 edges of a box."""
    corners = box_corners(box)
    color = make_color(box.color)

    points = []
    for start, end in BOX_EDGES:
        points.append(make_point(corners[start]))
        points.append(make_point(corners[end]))

    return Marker(
        header=make_header(timestamp_us, ANNOTATION_FRAME),
        ns=MARKER_NAMESPACE,
        id=marker_id,
        type=MARKER_LINE_LIST,
        action=MARKER_ADD,
        pose=Pose(position=make_point((0.0, 0.0, 0.0)),
                  orientation=make_quaternion((1.0, 0.0, 0.0, 0.0))),
        scale=make_vector3((MARKER_LINE_WIDTH, 0.0, 0.0)),
        color=color,
        lifetime=make_duration(lifetime_s),
        frame_locked=False,
        points=points,
        colors=[color] * len(points),
        text='',
        mesh_resource='',
        mesh_use_embedded_materials=False,
    )


def marker_array_message(boxes: List[Box], timestamp_us, lifetime_s: float) -> 'MarkerArray':
    return MarkerArray(markers=[
        marker_message(box, marker_id, timestamp_us, lifetime_s)
        for marker_id, box in enumerate(boxes)
    ])


def serialize(message) -> bytes:
    return TYPESTORE.serialize_ros1(message, message.__msgtype__)
