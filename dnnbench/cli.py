import json as _json
from typing import Any, Dict, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table

from . import config as _cfg
from .backends import available_backends
from .errors import DNNBenchError
from .hardware import detect_hardware
from .utils.logging import get_logger, set_level

console = Console()

LAYER_CHOICES = ["conv", "pooling", "activation", "lrn", "fc", "softmax"]


def _hardware_summary() -> str:
    hw = detect_hardware()
    lines = [
        f"Vendor: {hw.vendor}",
        f"Kind: {hw.kind}",
        f"Name: {hw.name}",
        f"Backends: {', '.join(available_backends())}",
    ]
    return "\n".join(lines)


def _parse_params(pairs: Tuple[str, ...]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"expected KEY=VALUE, got '{pair}'", param_hint="--param")
        key, value = pair.split("=", 1)
        params[key.strip()] = value.strip()
    return params


def _print_report(report: Dict[str, Any]) -> None:
    table = Table(title=f"dnnbench ({report['backend']})")
    table.add_column("layer")
    table.add_column("type")
    table.add_column("input")
    table.add_column("output")
    table.add_column("algorithm")
    table.add_column("median ms", justify="right")
    table.add_column("min ms", justify="right")
    for row in report["layers"]:
        t = row["timing"]
        table.add_row(
            row["name"],
            row["type"],
            "x".join(str(d) for d in row["input"]),
            "x".join(str(d) for d in row["output"]),
            row.get("algorithm", "-"),
            f"{t['median_ms']:.3f}",
            f"{t['min_ms']:.3f}",
        )
    console.print(table)
    stats = report["buffers"]
    console.print(
        f"Total median: [bold]{report['total_median_ms']:.3f} ms[/bold]  "
        f"buffers allocated: {stats['allocations']}  peak elements: {stats['peak_elements']}"
    )


def _run_chain(chain, iters: int, warmup: int, backward: bool) -> Dict[str, Any]:
    try:
        chain.setup()
        return chain.run(iterations=iters, warmup=warmup, backward=backward)
    finally:
        chain.teardown()


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log verbosity. Equivalent to DNNBENCH_LOG_LEVEL",
)
def main(log_level: Optional[str]):
    """dnnbench: micro-benchmarks for neural-network primitive layers."""
    if log_level:
        set_level(log_level)
    else:
        get_logger()


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Emit machine-readable JSON.")
def info(as_json: bool):
    """Display detected hardware and backend availability."""
    if as_json:
        hw = detect_hardware()
        click.echo(
            _json.dumps(
                {
                    "vendor": hw.vendor,
                    "kind": hw.kind,
                    "name": hw.name,
                    "details": hw.details,
                    "backends": available_backends(),
                    "default_backend": _cfg.get("DNNBENCH_BACKEND"),
                },
                indent=2,
            )
        )
        return
    console.print("[bold cyan]dnnbench Hardware Report[/bold cyan]")
    console.print(_hardware_summary())


@main.group()
def config():
    """Inspect DNNBENCH_* settings."""


@config.command("list")
@click.option("--json", "as_json", is_flag=True, help="Emit machine-readable JSON.")
def config_list(as_json: bool):
    """List known settings with defaults, current values and where each came from."""
    rows = _cfg.describe()
    from_cli = _cfg.overrides()
    from_env = _cfg.as_dict()
    for row in rows:
        row["source"] = "cli" if row["name"] in from_cli else "env" if row["name"] in from_env else "default"
    if as_json:
        click.echo(_json.dumps(rows, indent=2))
        return
    table = Table(title="dnnbench settings")
    for col in ("name", "category", "default", "current", "source", "description"):
        table.add_column(col)
    for row in rows:
        table.add_row(row["name"], row["category"], str(row["default"]), str(row["current"]), row["source"], row["description"])
    console.print(table)


@main.command()
@click.argument("layer", type=click.Choice(LAYER_CHOICES, case_sensitive=False))
@click.option("--n", default=1, show_default=True, help="Batch size N.")
@click.option("--c", default=3, show_default=True, help="Input channels.")
@click.option("--h", default=32, show_default=True, help="Input height.")
@click.option("--w", default=32, show_default=True, help="Input width.")
@click.option("--kernel-size", type=int, default=None, help="Square kernel size (conv, pooling).")
@click.option("--stride", type=int, default=None, help="Stride (conv, pooling).")
@click.option("--pad", type=int, default=None, help="Padding (conv, pooling).")
@click.option("--output-num", type=int, default=None, help="Output channels / features (conv, fc).")
@click.option("--mode", type=str, default=None, help="Mode (pooling, activation, softmax).")
@click.option("--param", "extra", multiple=True, help="Extra layer parameter as KEY=VALUE; repeatable.")
@click.option("--iters", type=int, default=None, help="Timed iterations [DNNBENCH_ITERATIONS].")
@click.option("--warmup", type=int, default=None, help="Untimed warmup passes [DNNBENCH_WARMUP].")
@click.option("--backend", type=click.Choice(["auto", "numpy", "torch"]), default=None, help="Backend [DNNBENCH_BACKEND].")
@click.option("--backward", is_flag=True, help="Also run backward after each forward.")
@click.option("--json", "as_json", is_flag=True, help="Emit machine-readable JSON.")
def bench(layer, n, c, h, w, kernel_size, stride, pad, output_num, mode, extra, iters, warmup, backend, backward, as_json):
    """Benchmark a single LAYER on an input of shape N x C x H x W."""
    from .chain import LayerChain
    from .context import ExecutionContext

    params: Dict[str, Any] = {}
    for key, value in (("kernel_size", kernel_size), ("stride", stride), ("pad", pad), ("output_num", output_num), ("mode", mode)):
        if value is not None:
            params[key] = value
    params.update(_parse_params(extra))
    iters = _cfg.get("DNNBENCH_ITERATIONS") if iters is None else iters
    warmup = _cfg.get("DNNBENCH_WARMUP") if warmup is None else warmup

    try:
        ctx = ExecutionContext(backend=backend)
        chain = LayerChain(ctx)
        chain.add(layer, name=layer.lower(), params=params, input_shape=(n, c, h, w))
        report = _run_chain(chain, iters, warmup, backward)
    except (DNNBenchError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(_json.dumps(report, indent=2))
    else:
        _print_report(report)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--iters", type=int, default=None, help="Timed iterations [DNNBENCH_ITERATIONS].")
@click.option("--warmup", type=int, default=None, help="Untimed warmup passes [DNNBENCH_WARMUP].")
@click.option("--backend", type=click.Choice(["auto", "numpy", "torch"]), default=None, help="Override the file's backend.")
@click.option("--backward", is_flag=True, help="Also run backward after each forward.")
@click.option("--json", "as_json", is_flag=True, help="Emit machine-readable JSON.")
def chain(path, iters, warmup, backend, backward, as_json):
    """Benchmark the layer chain described by the JSON file PATH."""
    from .chain import load_chain

    iters = _cfg.get("DNNBENCH_ITERATIONS") if iters is None else iters
    warmup = _cfg.get("DNNBENCH_WARMUP") if warmup is None else warmup
    try:
        layer_chain = load_chain(path, backend=backend)
        report = _run_chain(layer_chain, iters, warmup, backward)
    except _json.JSONDecodeError as e:
        raise click.ClickException(f"{path}: invalid JSON: {e}") from e
    except (DNNBenchError, ValueError) as e:
        raise click.ClickException(str(e)) from e

    if as_json:
        click.echo(_json.dumps(report, indent=2))
    else:
        _print_report(report)


if __name__ == "__main__":
    main()
