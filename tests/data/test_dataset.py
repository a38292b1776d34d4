"""Tests for calibration dataset import."""

import pytest

from qcalib.data.dataset import DataSet, FileFormat, Sample, get_input_format, import_dataset
from qcalib.errors import CalibrationError, DatasetIOError, EmptyDatasetError


@pytest.mark.quick
class TestInputFormat:
    """Tests for suffix classification."""

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("a.txt", FileFormat.TEXT),
            ("a.npy", FileFormat.NPY),
            ("a.jpg", FileFormat.IMAGE),
            ("a.JPEG", FileFormat.IMAGE),
            ("a.Png", FileFormat.IMAGE),
            ("a.bmp", FileFormat.IMAGE),
            ("a.md", None),
            ("noext", None),
        ],
    )
    def test_get_input_format(self, name, expected):
        assert get_input_format(name) == expected


class TestImportDataset:
    """Tests for import_dataset."""

    def test_sorted_and_filtered(self, tmp_path):
        """Test files are sorted by name and unsupported entries skipped."""
        for name in ("b.npy", "a.txt", "c.png", "notes.md"):
            (tmp_path / name).write_bytes(b"")
        (tmp_path / "sub.npy").mkdir()

        dataset = import_dataset(tmp_path)

        assert [s.path for s in dataset] == [str((tmp_path / n).resolve()) for n in ("a.txt", "b.npy", "c.png")]
        assert [s.format for s in dataset] == [FileFormat.TEXT, FileFormat.NPY, FileFormat.IMAGE]
        assert len(dataset) == 3
        assert dataset[1].format == FileFormat.NPY

    def test_no_valid_files(self, tmp_path):
        (tmp_path / "readme.md").write_text("nothing here")

        with pytest.raises(EmptyDatasetError):
            import_dataset(tmp_path)

    def test_missing_folder(self, tmp_path):
        """Test an unreadable folder is an I/O error."""
        with pytest.raises(DatasetIOError) as exc_info:
            import_dataset(tmp_path / "missing")

        assert isinstance(exc_info.value, OSError)
        assert isinstance(exc_info.value, CalibrationError)


class TestDataSet:
    """Tests for DataSet."""

    def test_keeps_order(self):
        samples = [Sample("x/2.npy", FileFormat.NPY), Sample("x/1.bmp", FileFormat.IMAGE)]
        dataset = DataSet(samples)

        assert dataset.samples == tuple(samples)
        assert dataset[0].path == "x/2.npy"

    def test_empty(self):
        assert len(DataSet()) == 0
        assert list(DataSet()) == []
