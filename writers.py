import os
import logging
from abc import ABC, abstractmethod

from rosbags.rosbag1 import Writer

from messages import TYPESTORE, serialize
from utils import ensure_directory, remove_if_exists, stamp_us_to_ns

log = logging.getLogger(__name__)


class BaseWriter(ABC):
    """Append-only sink of timestamped messages, one instance per scene."""

    @abstractmethod
    def open(self, output_path: str):
        pass

    @abstractmethod
    def append(self, topic: str, timestamp_us: int, message):
        pass

    @abstractmethod
    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False


class BagWriter(BaseWriter):
    """Writes ROS1 bag files through rosbags."""

    def __init__(self):
        self._writer = None
        self._connections = {}
        self._output_path = None
        self.message_count = 0

    def open(self, output_path: str):
        output_path = os.path.abspath(output_path)
        ensure_directory(os.path.dirname(output_path))
        remove_if_exists(output_path)

        writer = Writer(output_path)
        writer.open()
        self._writer = writer
        self._output_path = output_path
        self._connections = {}
        self.message_count = 0
        log.info(f"Opened bag {output_path}")
        return self

    def _connection(self, topic, msgtype):
        key = (topic, msgtype)
        connection = self._connections.get(key)
        if connection is None:
            connection = self._writer.add_connection(topic, msgtype, typestore=TYPESTORE)
            self._connections[key] = connection
        return connection

    def append(self, topic: str, timestamp_us: int, message):
        if self._writer is None:
            raise RuntimeError("BagWriter.append() called before open()")
        connection = self._connection(topic, message.__msgtype__)
        self._writer.write(connection, stamp_us_to_ns(timestamp_us), serialize(message))
        self.message_count += 1

    def close(self):
        if self._writer is None:
            return
        try:
            self._writer.close()
            log.info(f"Closed bag {self._output_path} ({self.message_count} messages)")
        finally:
            self._writer = None
