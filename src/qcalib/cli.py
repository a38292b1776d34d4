"""
Command-line entry point: ``qcalib-quantize``.

    qcalib-quantize -p model.yaml -m model.pt -i calib_images/ -b 2 -w 1 -c
"""

import argparse
import dataclasses
import logging
import sys

import rich
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from qcalib.config import CalibrationConfig, CalibrationMethod, ModelVersion
from qcalib.data.dataset import import_dataset
from qcalib.errors import CalibrationError
from qcalib.quantization.calibration import Calibration

logger = logging.getLogger("qcalib")


def _float_list(text: str) -> list[float]:
    try:
        return [float(v) for v in text.split(",") if v.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected comma separated floats, got {text!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qcalib-quantize",
        description="Post-training quantization calibration.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("-p", "--proto", help="(require) graph proto file name")
    parser.add_argument("-m", "--model", help="(require) model weights file name")
    parser.add_argument("-i", "--input_path", help="(require) the folder of input files")
    parser.add_argument(
        "-b",
        "--blob_method",
        type=int,
        choices=[CalibrationMethod.MIN_MAX, CalibrationMethod.KL_DIVERGENCE],
        help="the method to quantize blob\n\t0: MIN_MAX (default)\n\t2: KL_DIVERGENCE",
    )
    parser.add_argument(
        "-w",
        "--weight_method",
        type=int,
        choices=[CalibrationMethod.MIN_MAX, CalibrationMethod.ADMM],
        help="the method to quantize weights\n\t0: MIN_MAX (default)\n\t1: ADMM",
    )
    parser.add_argument("-n", "--bias", type=_float_list, help="bias val when preprocess input, ie, 0.0,0.0,0.0")
    parser.add_argument("-s", "--scale", type=_float_list, help="scale val when preprocess input, ie, 1.0,1.0,1.0")
    parser.add_argument("-c", "--merge_channel", action="store_true", default=None, help="merge blob channel")
    parser.add_argument(
        "-v",
        "--version",
        type=int,
        choices=list(ModelVersion),
        help="the model version to save\n\t0: RapidnetV1\n\t1: TNN\n\t2: RapidnetV3 (default)",
    )
    parser.add_argument("--config", help="YAML configuration file; flags override its values")
    parser.add_argument("--output-proto", help="quantized proto output path")
    parser.add_argument("--output-model", help="quantized model output path")
    parser.add_argument("--log-level", help="logging level (default INFO)")
    return parser


def config_from_args(args: argparse.Namespace) -> CalibrationConfig:
    config = CalibrationConfig.from_yaml(args.config) if args.config else CalibrationConfig()

    if args.proto:
        config.model.proto_path = args.proto
    if args.model:
        config.model.model_path = args.model
    if args.input_path:
        config.input_path = args.input_path
    if args.output_proto:
        config.output.proto_path = args.output_proto
    if args.output_model:
        config.output.model_path = args.output_model
    if args.log_level:
        config.logging.log_level = args.log_level

    overrides = {}
    if args.blob_method is not None:
        overrides["blob_method"] = args.blob_method
    if args.weight_method is not None:
        overrides["weight_method"] = args.weight_method
    if args.bias is not None:
        overrides["input_bias"] = tuple(args.bias)
    if args.scale is not None:
        overrides["input_scale"] = tuple(args.scale)
    if args.merge_channel:
        overrides["merge_channel"] = True
    if args.version is not None:
        overrides["model_version"] = args.version
    if overrides:
        config.params = dataclasses.replace(config.params, **overrides)

    missing = [
        flag
        for flag, value in (
            ("--proto", config.model.proto_path),
            ("--model", config.model.model_path),
            ("--input_path", config.input_path),
        )
        if not value
    ]
    if missing:
        raise ValueError(f"Missing required options: {', '.join(missing)}")
    return config


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Rich console logging for the CLI."""
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False
    if not logger.handlers:
        handler = RichHandler(rich_tracebacks=True, show_path=False, markup=False)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        logger.addHandler(handler)
    return logger


def print_config(config: CalibrationConfig) -> None:
    table = Table(title="Calibration Configuration", show_header=True, header_style="bold magenta")
    table.add_column("Parameter", style="dim", width=20)
    table.add_column("Value", style="bold")
    table.add_row("proto", config.model.proto_path)
    table.add_row("model", config.model.model_path)
    table.add_row("input_path", config.input_path)
    for key, value in config.params.to_dict().items():
        table.add_row(key, str(value))
    table.add_row("output proto", config.output.proto_path)
    table.add_row("output model", config.output.model_path)
    rich.print(table)


def run(config: CalibrationConfig) -> int:
    calibration = Calibration(log_interval=config.logging.log_interval)
    try:
        dataset = import_dataset(config.input_path)
        calibration.init(config.network, config.model)
        calibration.set_calibration_params(config.params)
        calibration.run_calibration(dataset)
        calibration.serialize(config.output.proto_path, config.output.model_path)
    except CalibrationError as e:
        rich.print(f"[bold red]quantize model failed: {type(e).__name__}: {escape(str(e))}[/]")
        return 1

    rich.print("[bold green]quantize model success![/]")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    if argv is None:
        argv = sys.argv[1:]
    if not argv:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)
    try:
        config = config_from_args(args)
    except (CalibrationError, ValueError, OSError) as e:
        rich.print(f"[bold red]{escape(str(e))}[/]")
        return 1

    setup_logging(config.logging.log_level)
    print_config(config)
    return run(config)


if __name__ == "__main__":
    sys.exit(main())
