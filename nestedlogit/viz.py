# -*- coding: utf-8 -*-
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Sequence

import numpy as np
import plotly.graph_objects as go
from plotly.colors import qualitative

from .model import NestedLogit, PredictorKind, load_model
from .predict import AxisResolution, Bound, PredictionTable, prediction_table
from .util import fmt_signif

DEFAULT_PALETTE = tuple(qualitative.D3)
DEFAULT_DASHES = ("solid", "dash", "dot", "dashdot", "longdash", "longdashdot")
DEFAULT_MARKERS = (
    "circle-open", "triangle-up-open", "cross-thin-open", "x-thin-open",
    "diamond-open", "triangle-down-open", "square-open",
)
TITLE_FONT_SIZE = 17

# (x, y, xanchor, yanchor) in paper coordinates
LEGEND_POSITIONS = {
    "topleft":     (0.0, 1.0, "left", "top"),
    "top":         (0.5, 1.0, "center", "top"),
    "topright":    (1.0, 1.0, "right", "top"),
    "left":        (0.0, 0.5, "left", "middle"),
    "center":      (0.5, 0.5, "center", "middle"),
    "right":       (1.0, 0.5, "right", "middle"),
    "bottomleft":  (0.0, 0.0, "left", "bottom"),
    "bottom":      (0.5, 0.0, "center", "bottom"),
    "bottomright": (1.0, 0.0, "right", "bottom"),
}


@dataclass
class RenderConfig:
    """
    Styling for a fitted-probability plot.

    xlab / ylab:      axis titles (xlab defaults to the swept predictor's name).
    title:            explicit title; when None one is built from the fixed predictors.
    title_size:       multiplier of the base title font size.
    title_font:       1 plain, 2 bold, 3 italic, 4 bold italic.
    title_digits:     significant digits for numeric values in a built title.
    markers:          per-category marker symbols (categorical axis).
    line_width:       width of lines and whiskers.
    line_dashes:      per-category dash styles.
    colors:           per-category colors; default is a fixed D3 palette.
    legend:           draw a legend entry per response category.
    legend_location:  one of LEGEND_POSITIONS.
    legend_inset:     distance from the plot edge, as a fraction of the plot area.
    legend_box:       "o" draws a border around the legend, "n" does not.
    legend_opacity:   opacity of the legend background.
    conf_alpha:       opacity of the confidence bands.
    """
    xlab: str | None = None
    ylab: str = "Fitted Probability"
    title: str | None = None
    title_size: float = 1.0
    title_font: int = 1
    title_digits: int = 5
    markers: Sequence[str] | None = None
    line_width: float = 3.0
    line_dashes: Sequence[str] | None = None
    colors: Sequence[str] | None = None
    legend: bool = True
    legend_location: str = "topleft"
    legend_inset: float = 0.01
    legend_box: str = "n"
    legend_opacity: float = 1.0
    conf_alpha: float = 0.3
    width: int | None = None
    height: int | None = None
    template: str = "simple_white"

    def __post_init__(self):
        if self.legend_location not in LEGEND_POSITIONS:
            raise ValueError(f"legend_location must be one of {list(LEGEND_POSITIONS)}, not {self.legend_location!r}")
        if self.legend_box not in ("o", "n"):
            raise ValueError(f"legend_box must be 'o' or 'n', not {self.legend_box!r}")
        if self.title_font not in (1, 2, 3, 4):
            raise ValueError(f"title_font must be 1, 2, 3 or 4, not {self.title_font!r}")
        for name in ("conf_alpha", "legend_opacity"):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise ValueError(f"{name} must lie in [0, 1]")
        for name in ("markers", "line_dashes", "colors"):
            value = getattr(self, name)
            if value is not None:
                if isinstance(value, str):
                    value = [value]
                if len(value) == 0:
                    raise ValueError(f"{name} must not be empty")
                setattr(self, name, tuple(value))

    def series_styles(self, n: int) -> list[tuple[str, str, str]]:
        """(color, dash, marker) for each of n categories, recycling short sequences."""
        colors = _recycle(self.colors or DEFAULT_PALETTE, n)
        dashes = _recycle(self.line_dashes or DEFAULT_DASHES, n)
        markers = _recycle(self.markers or DEFAULT_MARKERS, n)
        return list(zip(colors, dashes, markers))


def _recycle(values: Sequence[str], n: int) -> list[str]:
    return [values[i % len(values)] for i in range(n)]


def _render_continuous(
    fig: go.Figure,
    table: PredictionTable,
    x_var: str,
    config: RenderConfig,
    trace_kwargs: Mapping[str, Any],
) -> None:
    """Lines over a numeric sweep, with shaded confidence bands underneath."""
    x = table.grid[x_var].to_numpy(dtype=float)
    styles = config.series_styles(len(table.categories))

    if table.has_envelopes:
        for category, (color, _, _) in zip(table.categories, styles):
            lower = table.column(category, Bound.LOWER)
            upper = table.column(category, Bound.UPPER)
            fig.add_trace(go.Scatter(
                x=np.concatenate([x, x[::-1]]),
                y=np.concatenate([upper, lower[::-1]]),
                mode="lines", fill="toself", fillcolor=color,
                line=dict(width=0, color=color), opacity=config.conf_alpha,
                name=category, legendgroup=category, showlegend=False, hoverinfo="skip",
            ))

    for category, (color, dash, _) in zip(table.categories, styles):
        props = dict(
            x=x, y=table.column(category), mode="lines",
            line=dict(color=color, width=config.line_width, dash=dash),
            name=category, legendgroup=category,
            hovertemplate=f"{x_var}: %{{x:.4g}}<br>{category}: %{{y:.3f}}<extra></extra>",
        )
        props.update(trace_kwargs)
        fig.add_trace(go.Scatter(**props))


def _render_categorical(
    fig: go.Figure,
    table: PredictionTable,
    x_var: str,
    config: RenderConfig,
    trace_kwargs: Mapping[str, Any],
) -> None:
    """Points (joined by lines) at positions 1..k with error-bar whiskers and labelled ticks."""
    labels = [str(v) for v in table.grid[x_var].tolist()]
    x_pos = np.arange(1, len(labels) + 1)
    styles = config.series_styles(len(table.categories))

    for category, (color, dash, marker) in zip(table.categories, styles):
        p = table.column(category)
        props = dict(
            x=x_pos, y=p, mode="lines+markers",
            line=dict(color=color, width=config.line_width, dash=dash),
            marker=dict(symbol=marker, size=10, color=color, line=dict(width=2, color=color)),
            name=category, legendgroup=category, text=labels,
            hovertemplate=f"{x_var}: %{{text}}<br>{category}: %{{y:.3f}}<extra></extra>",
        )
        if table.has_envelopes:
            props["error_y"] = dict(
                type="data", symmetric=False, visible=True,
                array=table.column(category, Bound.UPPER) - p,
                arrayminus=p - table.column(category, Bound.LOWER),
                color=color, thickness=config.line_width, width=8,
            )
        props.update(trace_kwargs)
        fig.add_trace(go.Scatter(**props))

    fig.update_xaxes(
        tickmode="array",
        tickvals=x_pos.tolist(),
        ticktext=labels,
        range=[0.5, len(labels) + 0.5],
    )


RENDERERS = {
    PredictorKind.NUMERIC: _render_continuous,
    PredictorKind.CATEGORICAL: _render_categorical,
}


def _legend_layout(config: RenderConfig) -> dict:
    x, y, xanchor, yanchor = LEGEND_POSITIONS[config.legend_location]
    if xanchor == "left":
        x += config.legend_inset
    elif xanchor == "right":
        x -= config.legend_inset
    if yanchor == "top":
        y -= config.legend_inset
    elif yanchor == "bottom":
        y += config.legend_inset
    return dict(
        x=x, y=y, xanchor=xanchor, yanchor=yanchor,
        bgcolor=f"rgba(255,255,255,{config.legend_opacity:.3f})",
        bordercolor="black",
        borderwidth=1 if config.legend_box == "o" else 0,
    )


def title_text(model: NestedLogit, resolution: AxisResolution, config: RenderConfig) -> str | None:
    """The explicit title, else ``name = value`` for each fixed predictor, else None."""
    if config.title is not None:
        return config.title
    parts = []
    for name, value in resolution.fixed.items():
        if model.predictor(name).kind is PredictorKind.NUMERIC:
            value = fmt_signif(value, config.title_digits)
        parts.append(f"{name} = {value}")
    return ", ".join(parts) or None


def _annotate(fig: go.Figure, text: str | None, config: RenderConfig) -> None:
    if text is None:
        return
    if config.title_font in (2, 4):
        text = f"<b>{text}</b>"
    if config.title_font in (3, 4):
        text = f"<i>{text}</i>"
    fig.update_layout(title=dict(text=text, x=0.5, xanchor="center",
                                 font=dict(size=TITLE_FONT_SIZE * config.title_size)))


def plot(
    model: NestedLogit | Path | str,
    x_var: str | None = None,
    others: Mapping[str, Any] | None = None,
    n_x_values: int = 100,
    conf_level: float | None = 0.95,
    output: Path | None = None,
    csv_out: Path | None = None,
    show: bool = False,
    xlab: str | None = None,
    ylab: str = "Fitted Probability",
    title: str | None = None,
    title_size: float = 1.0,
    title_font: int = 1,
    title_digits: int = 5,
    markers: Sequence[str] | None = None,
    line_width: float = 3.0,
    line_dashes: Sequence[str] | None = None,
    colors: Sequence[str] | None = None,
    legend: bool = True,
    legend_location: str = "topleft",
    legend_inset: float = 0.01,
    legend_box: str = "n",
    legend_opacity: float = 1.0,
    conf_alpha: float = 0.3,
    width: int | None = None,
    height: int | None = None,
    **kwargs,
) -> go.Figure:
    """
    Fitted probabilities of every response category against one predictor,
    all other predictors held fixed.

    A numeric ``x_var`` is swept over ``n_x_values`` evenly spaced points of
    its observed range and drawn as lines with shaded pointwise confidence
    bands. A categorical ``x_var`` is drawn at each of its levels as points
    with error bars. ``conf_level=None`` suppresses the confidence limits.

    ``others`` holds one value per fixed predictor; predictors left out get
    their mean or first level (a note is printed). Extra keyword arguments
    are passed to every category trace (``plotly.graph_objects.Scatter``).

    Nothing is drawn if the inputs are invalid: InvalidPredictor,
    MultiValuedFixedInput, UnknownPredictor or PredictionFailure is raised first.
    """
    model = load_model(model)
    config = RenderConfig(
        xlab=xlab, ylab=ylab, title=title, title_size=title_size, title_font=title_font,
        title_digits=title_digits, markers=markers, line_width=line_width,
        line_dashes=line_dashes, colors=colors, legend=legend,
        legend_location=legend_location, legend_inset=legend_inset, legend_box=legend_box,
        legend_opacity=legend_opacity, conf_alpha=conf_alpha, width=width, height=height,
    )
    resolution, table = prediction_table(
        model, x_var=x_var, others=others, n_x_values=n_x_values, conf_level=conf_level,
    )

    fig = go.Figure()
    RENDERERS[resolution.kind](fig, table, resolution.x_var, config, kwargs)

    fig.update_xaxes(title_text=config.xlab if config.xlab is not None else resolution.x_var,
                     showline=True, mirror=True, linecolor="black")
    fig.update_yaxes(title_text=config.ylab, showline=True, mirror=True, linecolor="black")
    bounds = table.y_bounds()
    if bounds is not None:
        fig.update_yaxes(range=list(bounds))
    fig.update_layout(
        width=config.width if (config.width and config.width > 0) else 900,
        height=config.height if (config.height and config.height > 0) else 600,
        template=config.template,
        showlegend=config.legend,
        legend=_legend_layout(config),
    )
    _annotate(fig, title_text(model, resolution, config), config)

    if output:
        output = Path(output)
        output.parent.mkdir(parents=True, exist_ok=True)
        fig.write_html(str(output), include_plotlyjs="cdn")
    if csv_out:
        csv_out = Path(csv_out)
        csv_out.parent.mkdir(parents=True, exist_ok=True)
        table.to_frame().to_csv(str(csv_out), index=False)
    if show:
        fig.show("browser")

    return fig
