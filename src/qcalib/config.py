from dataclasses import asdict, dataclass, field, fields
from enum import Enum, IntEnum
from pathlib import Path

import yaml

from qcalib.errors import InvalidParamsError

DEFAULT_INPUT_CHANNELS = 4
DEFAULT_NUM_BINS = 2048

# ============================================================================
# 量化方法与模型版本
# ============================================================================


class CalibrationMethod(IntEnum):
    """Scale search method. Numbering matches the ``-b``/``-w`` command-line flags."""

    MIN_MAX = 0
    ADMM = 1
    KL_DIVERGENCE = 2


BLOB_METHODS = (CalibrationMethod.MIN_MAX, CalibrationMethod.KL_DIVERGENCE)
WEIGHT_METHODS = (CalibrationMethod.MIN_MAX, CalibrationMethod.ADMM)


class ModelVersion(IntEnum):
    """Format version written into the quantized graph header."""

    RAPIDNET_V1 = 0
    TNN = 1
    RAPIDNET_V3 = 2


def _coerce_enum(enum_cls: type[Enum], value, what: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls[value.upper()]
        except KeyError:
            pass
    try:
        return enum_cls(int(value))
    except (TypeError, ValueError):
        raise InvalidParamsError(f"Unknown {what}: {value!r}") from None


# ============================================================================
# 校准参数
# ============================================================================


@dataclass(frozen=True)
class CalibrationParams:
    """校准参数 (immutable for the duration of one run)"""

    blob_method: CalibrationMethod = CalibrationMethod.MIN_MAX
    weight_method: CalibrationMethod = CalibrationMethod.MIN_MAX
    merge_channel: bool = False
    input_bias: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0)
    input_scale: tuple[float, ...] = (1.0, 1.0, 1.0, 1.0)
    model_version: ModelVersion = ModelVersion.RAPIDNET_V3
    bits: int = 8
    num_bins: int = DEFAULT_NUM_BINS

    def __post_init__(self):
        # frozen: normalise through object.__setattr__
        object.__setattr__(self, "blob_method", _coerce_enum(CalibrationMethod, self.blob_method, "blob method"))
        object.__setattr__(self, "weight_method", _coerce_enum(CalibrationMethod, self.weight_method, "weight method"))
        object.__setattr__(self, "model_version", _coerce_enum(ModelVersion, self.model_version, "model version"))
        object.__setattr__(self, "input_bias", tuple(float(v) for v in self.input_bias))
        object.__setattr__(self, "input_scale", tuple(float(v) for v in self.input_scale))

        if self.blob_method not in BLOB_METHODS:
            raise InvalidParamsError(f"{self.blob_method.name} is not a blob quantization method")
        if self.weight_method not in WEIGHT_METHODS:
            raise InvalidParamsError(f"{self.weight_method.name} is not a weight quantization method")
        if not 2 <= self.bits <= 16:
            raise InvalidParamsError(f"Unsupported bit width: {self.bits}")
        if self.num_bins <= 0 or self.num_bins % 2:
            raise InvalidParamsError("num_bins must be a positive even number")
        if self.blob_method == CalibrationMethod.KL_DIVERGENCE and self.num_bins < 2**self.bits:
            raise InvalidParamsError(f"num_bins ({self.num_bins}) must be at least 2^bits ({2**self.bits})")
        if not self.input_bias or not self.input_scale:
            raise InvalidParamsError("input_bias and input_scale must not be empty")

    @property
    def qmax(self) -> int:
        return 2 ** (self.bits - 1) - 1

    def validate_input_channels(self, channels: int) -> None:
        """Bias/scale vectors must match the graph's input channels or the default broadcast length."""
        allowed = {channels, DEFAULT_INPUT_CHANNELS}
        for name in ("input_bias", "input_scale"):
            length = len(getattr(self, name))
            if length not in allowed:
                raise InvalidParamsError(
                    f"{name} has {length} entries; expected {channels} (input channels) or {DEFAULT_INPUT_CHANNELS}"
                )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["blob_method"] = self.blob_method.name
        data["weight_method"] = self.weight_method.name
        data["model_version"] = self.model_version.name
        data["input_bias"] = list(self.input_bias)
        data["input_scale"] = list(self.input_scale)
        return data


# ============================================================================
# 模型与运行配置
# ============================================================================


@dataclass
class NetworkConfig:
    """推理引擎配置"""

    device: str = "cpu"

    def __post_init__(self):
        if not self.device:
            raise ValueError("device must not be empty")


@dataclass
class ModelConfig:
    """模型文件配置"""

    proto_path: str = ""
    model_path: str = ""


@dataclass
class OutputConfig:
    """输出文件配置"""

    proto_path: str = "model_quantized.qproto.yaml"
    model_path: str = "model_quantized.qmodel.pt"


@dataclass
class LoggingConfig:
    """日志配置"""

    log_level: str = "INFO"
    log_interval: int = 10  # 每隔多少个样本记录一次

    def __post_init__(self):
        if self.log_interval <= 0:
            raise ValueError("Log interval must be positive")


@dataclass
class CalibrationConfig:
    """主配置类，组合所有配置"""

    input_path: str = ""
    model: ModelConfig = field(default_factory=ModelConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    params: CalibrationParams = field(default_factory=CalibrationParams)
    output: OutputConfig = field(default_factory=OutputConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> dict:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, CalibrationParams):
                data[f.name] = value.to_dict()
            elif hasattr(value, "__dataclass_fields__"):
                data[f.name] = asdict(value)
            else:
                data[f.name] = value
        return data

    def save_to_yaml(self, path: str | Path):
        """将配置保存到 YAML 文件"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)

    @classmethod
    def from_dict(cls, data: dict) -> "CalibrationConfig":
        sections = {
            "model": ModelConfig,
            "network": NetworkConfig,
            "params": CalibrationParams,
            "output": OutputConfig,
            "logging": LoggingConfig,
        }
        values = {}
        for key, value in (data or {}).items():
            if key in sections:
                values[key] = sections[key](**(value or {}))
            elif key == "input_path":
                values[key] = str(value)
            else:
                raise ValueError(f"Unknown configuration section: {key}")
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "CalibrationConfig":
        """从 YAML 文件加载配置"""
        path = Path(path)
        with open(path) as f:
            config_dict = yaml.safe_load(f)
        return cls.from_dict(config_dict)
