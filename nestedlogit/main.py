#!/usr/bin/env python
# -*- coding: utf-8 -*-

import re
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from .model import NestedLogit, PredictorKind, load_model
from .predict import prediction_table
from .util import df_to_table
from . import viz

__version__ = "0.1.0"

console = Console()
app = typer.Typer(no_args_is_help=True, add_completion=False, rich_markup_mode="rich")


def _strip_quotes(s: str) -> str:
    s = s.strip()
    if (s.startswith("'") and s.endswith("'")) or (s.startswith('"') and s.endswith('"')):
        return s[1:-1]
    return s


_num_re = re.compile(
    r"""
    ^\s*
    ([+-]?                      # sign
      (?:
        (?:\d+(?:\.\d*)?|\.\d+) # 123, 123., .123, 123.456
        (?:[eE][+-]?\d+)?       # optional exponent
      )
    )
    \s*$
    """,
    re.VERBOSE,
)


def _to_number(s: str):
    """Return int if int-like, else float, else raise."""
    if not _num_re.match(s):
        raise ValueError(f"Not a number: {s!r}")
    v = float(s)
    return int(v) if v.is_integer() and not re.search(r"[.eE]", s) else v


def _parse_fixed_value(text: str):
    """
    A CLI value is either one scalar or, when it holds a comma (optionally
    wrapped in [] or ()), a list of scalars. Lists are passed through so that
    they are reported as multi-valued rather than silently truncated.
    """
    raw = _strip_quotes(str(text))
    if (raw.startswith(("[", "(")) and raw.endswith(("]", ")"))) or "," in raw:
        inner = raw[1:-1] if raw.startswith(("[", "(")) else raw
        return [_strip_quotes(p) for p in inner.split(",") if p.strip() != ""]
    return raw


def _parse_unknown_cli_kv_text(args: list[str]) -> dict[str, str]:
    """
    Extract unknown --key value pairs as raw strings (no coercion here).
    Supports: --k=v  and  --k v. Repeated keys -> last wins.
    """
    out: dict[str, str] = {}
    it = iter(args)
    for tok in it:
        if not tok.startswith("--"):
            continue
        key = tok[2:]
        if "=" in key:
            k, v = key.split("=", 1)
        else:
            k = key
            try:
                v = next(it)
            except StopIteration:
                raise typer.BadParameter(f"No value given for --{k}")
        out[k.strip()] = v
    return out


def _norm(s: str) -> str:
    return re.sub(r"[^a-z0-9]+", "", s.lower())


def _coerce(model: NestedLogit, name: str, value: str):
    """Turn a CLI string into a value of the predictor's own type."""
    info = model.predictor(name)
    if info.kind is PredictorKind.NUMERIC:
        try:
            return _to_number(value)
        except ValueError:
            raise typer.BadParameter(f"{name} is numeric; cannot use {value!r}")
    for level in info.levels:
        if str(level) == value:
            return level
    # left as text; the model reports it as an unknown level
    return value


def parse_fixed_from_ctx(ctx: typer.Context, model: NestedLogit) -> dict[str, object]:
    """
    End-to-end: ctx.args -> {predictor: value}.

    Keys match predictor names exactly or after normalization (case,
    punctuation); unmatched keys are kept so the plot reports them.
    """
    raw = {k: _parse_fixed_value(v) for k, v in _parse_unknown_cli_kv_text(ctx.args).items()}
    norm_index = {_norm(p): p for p in model.predictors}

    fixed: dict[str, object] = {}
    for k, v in raw.items():
        name = k if k in model.predictors else norm_index.get(_norm(k), k)
        if name in model.predictors:
            v = [_coerce(model, name, x) for x in v] if isinstance(v, list) else _coerce(model, name, v)
        fixed[name] = v

    if fixed:
        pretty = ", ".join(f"{k}={v}" for k, v in fixed.items())
        console.print(f"[cyan]Fixed:[/] {pretty}")
    return fixed


def _load(model: Path) -> NestedLogit:
    if not model.exists():
        raise typer.BadParameter(f"Model artifact not found: {model.resolve()}")
    return load_model(model)


@app.callback()
def main(
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit.", is_eager=True),
):
    if version:
        console.print(f"[bold]nestedlogit[/] {__version__}")
        raise typer.Exit()


@app.command(help="Show the predictors and response categories of a model artifact.")
def describe(
    model: Path = typer.Argument(..., help="Path to the model artifact (.nc)."),
):
    m = _load(model)
    console.print(f"[bold]Response:[/] {m.response} ({', '.join(m.categories())})")
    console.print(f"[bold]Dichotomies:[/] " + "; ".join(
        f"{name}: {' '.join(d.left)} | {' '.join(d.right)}" for name, d in m.dichotomies.items()
    ))
    console.print(df_to_table(m.summary_frame()))


@app.command(
    help="Write the table of fitted probabilities (and confidence limits) to CSV.",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def predict(
    ctx: typer.Context,
    model: Path = typer.Argument(..., help="Path to the model artifact (.nc)."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="CSV file for the prediction table."),
    x_var: Optional[str] = typer.Option(None, "--x-var", "-x", help="Predictor for the horizontal axis."),
    n_x_values: int = typer.Option(100, help="Points along a numeric sweep."),
    conf_level: float = typer.Option(0.95, help="Level of the pointwise confidence limits."),
    envelopes: bool = typer.Option(True, "--envelopes/--no-envelopes", help="Compute confidence limits."),
    preview: int = typer.Option(10, help="Rows to preview in the console."),
):
    m = _load(model)
    fixed = parse_fixed_from_ctx(ctx, m)
    try:
        _, table = prediction_table(
            m, x_var=x_var, others=fixed, n_x_values=n_x_values,
            conf_level=conf_level if envelopes else None,
        )
    except ValueError as err:
        raise typer.BadParameter(str(err))

    df = table.to_frame()
    console.print(df_to_table(df, max_rows=preview))
    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(output, index=False)
        console.print(f"[green]Wrote predictions →[/] {output}")


@app.command(
    help="Plot fitted probabilities against one predictor, the others held fixed.",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def plot(
    ctx: typer.Context,
    model: Path = typer.Argument(..., help="Path to the model artifact (.nc)."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output HTML."),
    csv_out: Optional[Path] = typer.Option(None, help="Optional CSV export of the prediction table."),
    x_var: Optional[str] = typer.Option(None, "--x-var", "-x", help="Predictor for the horizontal axis."),
    n_x_values: int = typer.Option(100, help="Points along a numeric sweep."),
    conf_level: float = typer.Option(0.95, help="Level of the pointwise confidence envelopes."),
    envelopes: bool = typer.Option(True, "--envelopes/--no-envelopes", help="Draw confidence envelopes."),
    conf_alpha: float = typer.Option(0.3, help="Opacity of the confidence bands."),
    xlab: Optional[str] = typer.Option(None, help="X axis label (defaults to the predictor name)."),
    ylab: str = typer.Option("Fitted Probability", help="Y axis label."),
    title: Optional[str] = typer.Option(None, help="Title (defaults to the fixed predictor values)."),
    title_size: float = typer.Option(1.0, help="Title size multiplier."),
    title_font: int = typer.Option(1, help="Title font: 1 plain, 2 bold, 3 italic, 4 bold italic."),
    title_digits: int = typer.Option(5, help="Significant digits of numeric values in the title."),
    line_width: float = typer.Option(3.0, help="Line width."),
    legend: bool = typer.Option(True, "--legend/--no-legend", help="Show the legend."),
    legend_location: str = typer.Option("topleft", help="Legend position, e.g. topleft, top, bottomright."),
    legend_inset: float = typer.Option(0.01, help="Legend inset from the plot edge."),
    legend_box: str = typer.Option("n", help="'o' to draw a box around the legend, 'n' for none."),
    width: int = typer.Option(900, help="Figure width in pixels."),
    height: int = typer.Option(600, help="Figure height in pixels."),
    show: Optional[bool] = typer.Option(None, help="Open the figure in a browser."),
):
    m = _load(model)
    fixed = parse_fixed_from_ctx(ctx, m)

    show = show if show is not None else output is None  # default to True if no output file

    try:
        viz.plot(
            model=m,
            x_var=x_var,
            others=fixed,
            n_x_values=n_x_values,
            conf_level=conf_level if envelopes else None,
            output=output,
            csv_out=csv_out,
            show=show,
            xlab=xlab,
            ylab=ylab,
            title=title,
            title_size=title_size,
            title_font=title_font,
            title_digits=title_digits,
            line_width=line_width,
            legend=legend,
            legend_location=legend_location,
            legend_inset=legend_inset,
            legend_box=legend_box,
            conf_alpha=conf_alpha,
            width=width,
            height=height,
        )
    except ValueError as err:
        raise typer.BadParameter(str(err))

    if output:
        console.print(f"[green]Wrote plot →[/] {output}")
    if csv_out:
        console.print(f"[green]Wrote predictions →[/] {csv_out}")


if __name__ == "__main__":
    app()
