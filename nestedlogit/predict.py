# -*- coding: utf-8 -*-
"""
From a model and a (partial) description of the horizontal axis to a table
of fitted probabilities: resolve the axes, build the grid, fetch predictions.
"""
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import numpy as np
import pandas as pd
from rich.console import Console

from .errors import InvalidPredictor, MultiValuedFixedInput, PredictionFailure, UnknownPredictor
from .model import NestedLogit, PredictorKind
from .util import signif

console = Console()

MEAN_DIGITS = 6


class Bound(str, Enum):
    POINT = "p"
    LOWER = "lower"
    UPPER = "upper"


@dataclass(frozen=True)
class AxisResolution:
    """The swept predictor, its kind, and the value every other predictor is held at."""
    x_var: str
    kind: PredictorKind
    fixed: dict[str, Any]
    notes: tuple[str, ...] = field(default=())


def _is_collection(value) -> bool:
    if isinstance(value, (str, bytes)):
        return False
    if isinstance(value, np.ndarray):
        return value.ndim > 0
    return isinstance(value, Iterable)


def _n_values(value) -> int:
    return len(value) if _is_collection(value) else 1


def _scalar(value):
    if _is_collection(value):
        value = next(iter(value))
    return value.item() if isinstance(value, np.generic) else value


def resolve_axes(
    model: NestedLogit,
    x_var: str | None = None,
    others: Mapping[str, Any] | None = None,
) -> AxisResolution:
    """
    Pick the horizontal-axis variable and a single value for every other predictor.

    Predictors missing from ``others`` default to their training mean
    (numeric, rounded to 6 significant digits) or their first level
    (categorical). Each default and an omitted ``x_var`` produce a note.
    """
    infos = model.predictor_info()
    names = [info.name for info in infos]
    notes: list[str] = []

    if x_var is None:
        x_var = names[0]
        notes.append(f"{x_var} will be used for the horizontal axis")
    if x_var not in names:
        raise InvalidPredictor(x_var)

    others = {k: list(v) if _is_collection(v) else v for k, v in (others or {}).items()}
    multi = [k for k, v in others.items() if _n_values(v) != 1]
    if multi:
        raise MultiValuedFixedInput(multi)
    unknown = [k for k in others if k not in names]
    if unknown:
        raise UnknownPredictor(unknown)
    if x_var in others:
        notes.append(f"value given for {x_var} ignored; it is swept along the horizontal axis")

    fixed: dict[str, Any] = {}
    for info in infos:
        if info.name == x_var:
            continue
        if info.name in others:
            fixed[info.name] = _scalar(others[info.name])
        elif info.kind is PredictorKind.NUMERIC:
            fixed[info.name] = signif(info.mean, MEAN_DIGITS)
            notes.append(f"missing predictor {info.name} set to its mean, {fixed[info.name]:g}")
        else:
            fixed[info.name] = info.levels[0]
            what = "level" if info.factor else "value"
            notes.append(f"missing predictor {info.name} set to its first {what}, '{fixed[info.name]}'")

    return AxisResolution(
        x_var=x_var,
        kind=model.predictor(x_var).kind,
        fixed=fixed,
        notes=tuple(notes),
    )


def build_grid(model: NestedLogit, resolution: AxisResolution, n_x_values: int = 100) -> pd.DataFrame:
    """One row per setting of the swept predictor; all other columns constant."""
    info = model.predictor(resolution.x_var)
    if resolution.kind is PredictorKind.NUMERIC:
        if isinstance(n_x_values, bool) or not isinstance(n_x_values, (int, np.integer)) or n_x_values < 2:
            raise ValueError(f"n_x_values must be an integer of at least 2, not {n_x_values!r}")
        sweep = np.linspace(info.minimum, info.maximum, int(n_x_values))
    elif info.factor:
        sweep = pd.Categorical(list(info.levels), categories=list(info.levels))
    else:
        sweep = list(info.levels)

    columns = {}
    for name in model.predictors:
        if name == resolution.x_var:
            columns[name] = sweep
        else:
            columns[name] = [resolution.fixed[name]] * len(sweep)
    return pd.DataFrame(columns)


def interval_suffixes(conf_level: float) -> tuple[str, str]:
    """Tail quantiles of a confidence level as column-name suffixes, e.g. 0.95 -> ('0.025', '0.975')."""
    tail = (1.0 - conf_level) / 2.0
    return f"{round(tail, 4):g}", f"{round(1.0 - tail, 4):g}"


@dataclass(frozen=True)
class PredictionTable:
    """
    The evaluation grid with fitted probabilities (and optionally confidence
    limits) for every response category, aligned row for row.
    """
    grid: pd.DataFrame
    fitted: pd.DataFrame
    lower: pd.DataFrame | None = None
    upper: pd.DataFrame | None = None
    conf_level: float | None = None

    @property
    def categories(self) -> list[str]:
        return [str(c) for c in self.fitted.columns]

    @property
    def has_envelopes(self) -> bool:
        return self.lower is not None and self.upper is not None

    def column(self, category: str, bound: Bound = Bound.POINT) -> np.ndarray:
        if bound is Bound.POINT:
            frame = self.fitted
        elif not self.has_envelopes:
            raise KeyError(f"No confidence limits were computed; cannot return {bound.value} for {category}")
        else:
            frame = self.lower if bound is Bound.LOWER else self.upper
        return frame[category].to_numpy(dtype=float)

    def y_bounds(self) -> tuple[float, float] | None:
        """Smallest lower limit and largest upper limit over every category."""
        if not self.has_envelopes:
            return None
        return float(np.min(self.lower.to_numpy())), float(np.max(self.upper.to_numpy()))

    def to_frame(self) -> pd.DataFrame:
        """Flat table: grid columns, then ``<category>.p`` and, with limits, ``<category>.<tail>`` columns."""
        parts = [self.grid, self.fitted.add_suffix(".p")]
        if self.has_envelopes:
            lo, hi = interval_suffixes(self.conf_level)
            parts.append(self.lower.add_suffix(f".{lo}"))
            parts.append(self.upper.add_suffix(f".{hi}"))
        return pd.concat(parts, axis=1)


def fetch_predictions(
    model: NestedLogit,
    grid: pd.DataFrame,
    conf_level: float | None = 0.95,
) -> PredictionTable:
    if conf_level is not None and not 0.0 < conf_level < 1.0:
        raise ValueError(f"conf_level must lie strictly between 0 and 1 (or be None), not {conf_level}")

    categories = [str(c) for c in model.categories()]
    grid = grid.reset_index(drop=True)
    try:
        predictions = model.predict(grid)
    except (ValueError, KeyError) as err:
        raise PredictionFailure(f"cannot evaluate the model on the prediction grid: {err}") from err

    fitted = predictions.p
    if sorted(map(str, fitted.columns)) != sorted(categories):
        raise PredictionFailure(
            f"predicted categories {list(fitted.columns)} do not match the response categories {categories}"
        )
    if len(fitted) != len(grid):
        raise PredictionFailure(f"{len(fitted)} predictions returned for a grid of {len(grid)} rows")
    fitted = fitted.set_axis([str(c) for c in fitted.columns], axis=1)[categories].reset_index(drop=True)

    lower = upper = None
    if conf_level is not None:
        try:
            bands = predictions.confint(level=conf_level)
        except (ValueError, KeyError) as err:
            raise PredictionFailure(f"cannot compute confidence limits: {err}") from err
        lower = bands.lower.set_axis([str(c) for c in bands.lower.columns], axis=1)[categories].reset_index(drop=True)
        upper = bands.upper.set_axis([str(c) for c in bands.upper.columns], axis=1)[categories].reset_index(drop=True)

    return PredictionTable(grid=grid, fitted=fitted, lower=lower, upper=upper, conf_level=conf_level)


def prediction_table(
    model: NestedLogit,
    x_var: str | None = None,
    others: Mapping[str, Any] | None = None,
    n_x_values: int = 100,
    conf_level: float | None = 0.95,
) -> tuple[AxisResolution, PredictionTable]:
    """Resolve, build and fetch in one go, printing the resolution notes."""
    resolution = resolve_axes(model, x_var=x_var, others=others)
    for note in resolution.notes:
        console.print(f"[cyan]Note:[/] {note}")
    grid = build_grid(model, resolution, n_x_values=n_x_values)
    table = fetch_predictions(model, grid, conf_level=conf_level)
    return resolution, table
