import os
import json
import logging
import threading

log = logging.getLogger(__name__)

US_PER_SECOND = 1_000_000
NS_PER_US = 1_000


def load_json_table(file_path):
    """Load one metadata table: a JSON list of records that each carry a ``token``.

    Any problem here is fatal for the run, so errors are raised rather than
    replaced by a default.
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Missing metadata table: {file_path}")

    try:
        with open(file_path, 'r') as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Failed to read {file_path}: {e}")

    if not isinstance(data, list):
        raise ValueError(f"{file_path} is not a list of records")

    for index, record in enumerate(data):
        if not isinstance(record, dict) or 'token' not in record:
            raise ValueError(f"{os.path.basename(file_path)}[{index}] has no token field")

    log.debug(f"Loaded {len(data)} records from {os.path.basename(file_path)}")
    return data


def ensure_directory(directory_path):
    try:
        os.makedirs(directory_path, exist_ok=True)
        log.debug(f"Ensured directory exists: {directory_path}")
    except Exception as e:
        log.error(f"Could not create directory {directory_path}: {e}")
        raise


def remove_if_exists(file_path):
    if os.path.exists(file_path):
        os.remove(file_path)
        log.debug(f"Removed existing file {file_path}")


def stamp_us_to_sec_nsec(timestamp_us):
    """Split a dataset microsecond timestamp into (sec, nanosec)."""
    sec, remainder_us = divmod(int(timestamp_us), US_PER_SECOND)
    return sec, remainder_us * NS_PER_US


def stamp_us_to_ns(timestamp_us):
    return int(timestamp_us) * NS_PER_US


class FileProgress:
    """Thread-safe counter of files to process across all running scenes."""

    def __init__(self, report_every=500):
        self._lock = threading.Lock()
        self._to_process = 0
        self._processed = 0
        self._report_every = report_every

    def add_to_process(self, count):
        with self._lock:
            self._to_process += count

    def add_to_processed(self, count=1):
        with self._lock:
            self._processed += count
            processed = self._processed
            total = self._to_process
        if self._report_every and (processed % self._report_every == 0 or processed == total):
            log.info(f"Progress: {processed}/{total} files ({self._percent(processed, total):5.1f}%)")

    @property
    def to_process(self):
        with self._lock:
            return self._to_process

    @property
    def processed(self):
        with self._lock:
            return self._processed

    @staticmethod
    def _percent(processed, total):
        if total == 0:
            return 100.0
        return processed / total * 100
