import logging
from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from qcalib.errors import DatasetIOError, EmptyDatasetError

logger = logging.getLogger(__name__)


class FileFormat(Enum):
    TEXT = "text"
    NPY = "npy"
    IMAGE = "image"


SUFFIX_FORMATS: dict[str, FileFormat] = {
    ".txt": FileFormat.TEXT,
    ".npy": FileFormat.NPY,
    ".jpg": FileFormat.IMAGE,
    ".jpeg": FileFormat.IMAGE,
    ".png": FileFormat.IMAGE,
    ".bmp": FileFormat.IMAGE,
}


def get_input_format(path: str | Path) -> FileFormat | None:
    """Classify a calibration file by its (case-insensitive) suffix."""
    return SUFFIX_FORMATS.get(Path(path).suffix.lower())


@dataclass(frozen=True)
class Sample:
    path: str
    format: FileFormat


class DataSet:
    """Ordered, immutable collection of calibration samples."""

    def __init__(self, samples=()):
        self._samples: tuple[Sample, ...] = tuple(samples)

    @property
    def samples(self) -> tuple[Sample, ...]:
        return self._samples

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples)

    def __getitem__(self, idx: int) -> Sample:
        return self._samples[idx]


def import_dataset(folder_path: str | Path) -> DataSet:
    """
    Scan a folder for calibration files.

    Regular files with a known suffix are imported, sorted by file name so the
    processing order is reproducible. Other files are skipped.

    Raises:
        DatasetIOError: If the folder cannot be listed.
        EmptyDatasetError: If no usable file was found.
    """
    folder = Path(folder_path)
    try:
        entries = sorted(folder.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise DatasetIOError(f"Can't open {folder}: {e}") from e

    samples = []
    for entry in entries:
        if not entry.is_file():
            continue
        file_format = get_input_format(entry)
        if file_format is None:
            logger.debug(f"Skipping {entry.name}: unsupported type")
            continue
        samples.append(Sample(str(entry.resolve()), file_format))
        logger.debug(f"import: {entry.name}  type: {file_format.value}")

    if not samples:
        raise EmptyDatasetError(f"No valid input file found in {folder}")

    logger.info(f"Imported {len(samples)} calibration files from {folder}")
    return DataSet(samples)
