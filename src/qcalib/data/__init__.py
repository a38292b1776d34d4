from .dataset import DataSet, FileFormat, Sample, get_input_format, import_dataset
from .loader import SampleLoader

__all__ = ["DataSet", "FileFormat", "Sample", "SampleLoader", "get_input_format", "import_dataset"]
