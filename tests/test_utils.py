import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from utils import FileProgress, load_json_table, stamp_us_to_ns, stamp_us_to_sec_nsec
from writers import BagWriter


def test_load_json_table(tmp_path):
    path = tmp_path / "sensor.json"
    path.write_text(json.dumps([{"token": "a", "channel": "CAM_FRONT"}]))
    assert load_json_table(str(path)) == [{"token": "a", "channel": "CAM_FRONT"}]


@pytest.mark.parametrize("content", ['{"token": "a"}', '[{"channel": "CAM_FRONT"}]', '[1, 2]', '[{'])
def test_load_json_table_rejects_bad_content(tmp_path, content):
    path = tmp_path / "sensor.json"
    path.write_text(content)
    with pytest.raises(ValueError):
        load_json_table(str(path))


def test_load_json_table_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_json_table(str(tmp_path / "nope.json"))


def test_timestamp_conversion():
    assert stamp_us_to_sec_nsec(1_532_402_927_647_951) == (1_532_402_927, 647_951_000)
    assert stamp_us_to_sec_nsec(999) == (0, 999_000)
    assert stamp_us_to_ns(1_500_000) == 1_500_000_000


def test_file_progress_is_thread_safe():
    progress = FileProgress(report_every=0)
    progress.add_to_process(4000)
    with ThreadPoolExecutor(max_workers=8) as pool:
        for _ in range(4000):
            pool.submit(progress.add_to_processed, 1)
    assert progress.processed == progress.to_process == 4000


def test_file_progress_reports(caplog):
    progress = FileProgress(report_every=2)
    progress.add_to_process(3)
    with caplog.at_level("INFO", logger="utils"):
        for _ in range(3):
            progress.add_to_processed()
    assert "2/3" in caplog.text
    assert "3/3" in caplog.text
    assert "1/3" not in caplog.text


def test_bag_writer_requires_open():
    writer = BagWriter()
    with pytest.raises(RuntimeError):
        writer.append("/odom", 0, None)
    writer.close()
