import os
import logging
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from readers import MetadataIndex
from scene_converter import SceneConverter
from utils import FileProgress, ensure_directory
from writers import BagWriter, BaseWriter

log = logging.getLogger(__name__)


@dataclass
class ConversionOptions:
    metadata_path: str
    dataset_path: str
    output_path: str
    jobs: int = 1
    scene_number: Optional[int] = None
    decode_workers: int = 4
    decode_window: int = 16


@dataclass
class ConversionResult:
    converted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def select_scenes(metadata: MetadataIndex, scene_number: Optional[int]) -> List[str]:
    if scene_number is None:
        return metadata.all_scene_tokens()

    scene_token = metadata.find_scene_by_id(scene_number)
    if scene_token is None:
        raise ValueError(f"Scene number {scene_number} not found in metadata")
    return [scene_token]


def _convert_scene(converter: SceneConverter, options: ConversionOptions, progress: FileProgress):
    log.info(f"Converting scene {converter.scene_id} ({converter.records.scene.name})")
    return converter.run(options.dataset_path, options.output_path, progress)


def convert_directory(options: ConversionOptions,
                      writer_factory: Callable[[], BaseWriter] = BagWriter,
                      metadata: Optional[MetadataIndex] = None) -> ConversionResult:
    """Convert every selected scene of a dataset into its own bag.

    The metadata index is built once before any worker starts. A failing scene
    is logged and reported in the result; the other scenes keep going.
    """
    if not os.path.isdir(options.dataset_path):
        raise FileNotFoundError(f"Dataset path is not a directory: {options.dataset_path}")

    if metadata is None:
        metadata = MetadataIndex().load(options.metadata_path)

    scene_tokens = select_scenes(metadata, options.scene_number)
    ensure_directory(options.output_path)
    log.info(f"Found {len(scene_tokens)} scenes to convert with {options.jobs} jobs")

    progress = FileProgress()
    converters = []
    for scene_token in scene_tokens:
        converter = SceneConverter(metadata,
                                   writer_factory=writer_factory,
                                   decode_workers=options.decode_workers,
                                   decode_window=options.decode_window)
        converter.submit(scene_token, progress)
        converters.append(converter)

    result = ConversionResult()
    with ThreadPoolExecutor(max_workers=max(1, options.jobs), thread_name_prefix='scene') as pool:
        futures = {pool.submit(_convert_scene, converter, options, progress): converter
                   for converter in converters}
        for future in as_completed(futures):
            converter = futures[future]
            try:
                bag_path = future.result()
            except Exception as e:
                log.error("=" * 70)
                log.error(f"Scene {converter.scene_id} FAILED: {e}")
                log.error(traceback.format_exc())
                result.failed.append(converter.scene_token)
                continue
            log.info(f"Scene {converter.scene_id} written to {bag_path}")
            result.converted.append(converter.scene_token)

    log.info("=" * 70)
    log.info(f"Converted {len(result.converted)} scenes, {len(result.failed)} failed, "
             f"{progress.processed}/{progress.to_process} files processed")
    log.info("=" * 70)
    return result
