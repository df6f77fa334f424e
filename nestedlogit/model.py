# -*- coding: utf-8 -*-
"""
Nested (hierarchical) logit models for a polytomous response.

A model is a tree of binary logits ("dichotomies") over the response
categories. Coefficients are estimated elsewhere; this module evaluates
fitted probabilities, their delta-method standard errors and pointwise
confidence limits, and stores/restores the model as a NetCDF artifact.
"""
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Sequence
import json

import numpy as np
import pandas as pd
import xarray as xr
from scipy.special import expit, logit
from scipy.stats import norm

ARTIFACT_VERSION = "0.1.0"
INTERCEPT = "(Intercept)"


class PredictorKind(str, Enum):
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"


@dataclass(frozen=True)
class Predictor:
    """What the training data says about one predictor."""
    name: str
    kind: PredictorKind
    levels: tuple = ()
    factor: bool = False   # levels come from a pandas Categorical rather than sorting
    minimum: float = np.nan
    maximum: float = np.nan
    mean: float = np.nan


@dataclass(frozen=True)
class Dichotomy:
    """
    One binary split of the response categories.

    The ``right`` side is the "1" outcome of the binary logit. Either side
    may be a single label or a sequence of labels.
    """
    left: tuple[str, ...]
    right: tuple[str, ...]

    def __post_init__(self):
        left = _as_labels(self.left)
        right = _as_labels(self.right)
        if not left or not right:
            raise ValueError("Both sides of a dichotomy need at least one category.")
        overlap = set(left) & set(right)
        if overlap:
            raise ValueError(f"Categories on both sides of a dichotomy: {sorted(overlap)}")
        object.__setattr__(self, "left", left)
        object.__setattr__(self, "right", right)

    @property
    def categories(self) -> tuple[str, ...]:
        return self.left + self.right


def _as_labels(side) -> tuple[str, ...]:
    if isinstance(side, str):
        return (side,)
    return tuple(str(s) for s in side)


@dataclass(frozen=True)
class ConfidenceBands:
    level: float
    lower: pd.DataFrame
    upper: pd.DataFrame


@dataclass(frozen=True)
class NestedPredictions:
    """Fitted category probabilities and their standard errors, one row per newdata row."""
    p: pd.DataFrame
    se_p: pd.DataFrame

    def confint(self, level: float = 0.95) -> ConfidenceBands:
        """
        Pointwise confidence limits for every category probability.

        Limits are formed on the logit scale of each probability and mapped
        back, so they always lie in [0, 1] and bracket the fitted value.
        """
        if not 0.0 < level < 1.0:
            raise ValueError(f"Confidence level must lie strictly between 0 and 1, not {level}")
        z = norm.ppf(1.0 - (1.0 - level) / 2.0)
        eps = 1e-12
        p = np.clip(self.p.to_numpy(dtype=float), eps, 1.0 - eps)
        se_logit = self.se_p.to_numpy(dtype=float) / (p * (1.0 - p))
        centre = logit(p)
        lower = pd.DataFrame(expit(centre - z * se_logit), columns=self.p.columns, index=self.p.index)
        upper = pd.DataFrame(expit(centre + z * se_logit), columns=self.p.columns, index=self.p.index)
        return ConfidenceBands(level=level, lower=lower, upper=upper)


def _describe_predictor(name: str, col: pd.Series) -> Predictor:
    if pd.api.types.is_numeric_dtype(col) and not pd.api.types.is_bool_dtype(col):
        vals = col.to_numpy(dtype=float)
        return Predictor(
            name=name,
            kind=PredictorKind.NUMERIC,
            minimum=float(np.nanmin(vals)),
            maximum=float(np.nanmax(vals)),
            mean=float(np.nanmean(vals)),
        )
    if isinstance(col.dtype, pd.CategoricalDtype):
        return Predictor(
            name=name,
            kind=PredictorKind.CATEGORICAL,
            levels=tuple(col.cat.categories.tolist()),
            factor=True,
        )
    # plain text/logical: ascending code-point order (UTF-8 byte order for text)
    return Predictor(
        name=name,
        kind=PredictorKind.CATEGORICAL,
        levels=tuple(sorted(col.dropna().unique().tolist())),
    )


def _response_levels(col: pd.Series) -> tuple[str, ...]:
    if isinstance(col.dtype, pd.CategoricalDtype):
        return tuple(str(c) for c in col.cat.categories.tolist())
    return tuple(sorted(str(c) for c in col.dropna().unique().tolist()))


class NestedLogit:
    """
    A fitted nested logit model.

    Parameters
    ----------
    data:
        Training data; must contain ``response`` and every predictor.
    response:
        Name of the polytomous response column.
    predictors:
        Predictor names in formula order.
    dichotomies:
        Ordered mapping of dichotomy name -> :class:`Dichotomy`.
    coefficients:
        Dichotomy name -> mapping of design term -> estimate. Terms are
        ``(Intercept)``, each numeric predictor, and ``name[level]`` for
        every non-reference level of a categorical predictor.
    vcov:
        Dichotomy name -> covariance matrix of its coefficients, either a
        DataFrame labelled by term or an array in :meth:`terms` order.
    """

    def __init__(
        self,
        data: pd.DataFrame,
        response: str,
        predictors: Sequence[str],
        dichotomies: Mapping[str, Dichotomy],
        coefficients: Mapping[str, Mapping[str, float]],
        vcov: Mapping[str, object],
    ):
        missing = [c for c in [response, *predictors] if c not in data.columns]
        if missing:
            raise ValueError(f"Columns not found in the data: {', '.join(missing)}")
        if not predictors:
            raise ValueError("A model needs at least one predictor.")
        if response in predictors:
            raise ValueError(f"The response '{response}' cannot also be a predictor.")

        self.data = data
        self.response = response
        self.predictors = [str(p) for p in predictors]
        self.dichotomies = {str(k): v for k, v in dichotomies.items()}
        self._categories = _response_levels(data[response])
        self._info = {name: _describe_predictor(name, data[name]) for name in self.predictors}

        self._check_dichotomies()

        terms = self.terms()
        self.coefficients: dict[str, pd.Series] = {}
        self.vcov: dict[str, pd.DataFrame] = {}
        for name in self.dichotomies:
            if name not in coefficients:
                raise ValueError(f"No coefficients supplied for dichotomy '{name}'.")
            coef = pd.Series(dict(coefficients[name]), dtype=float)
            extra = sorted(set(coef.index) - set(terms))
            if extra:
                raise ValueError(f"Unknown terms for dichotomy '{name}': {', '.join(extra)}")
            coef = coef.reindex(terms)
            if coef.isna().any():
                absent = coef.index[coef.isna()].tolist()
                raise ValueError(f"Missing coefficients for dichotomy '{name}': {', '.join(absent)}")
            self.coefficients[name] = coef

            if name not in vcov:
                raise ValueError(f"No covariance matrix supplied for dichotomy '{name}'.")
            V = vcov[name]
            if isinstance(V, pd.DataFrame):
                V = V.reindex(index=terms, columns=terms)
            V = np.asarray(V, dtype=float)
            if V.shape != (len(terms), len(terms)) or not np.all(np.isfinite(V)):
                raise ValueError(
                    f"Covariance for dichotomy '{name}' must be a finite "
                    f"{len(terms)}x{len(terms)} matrix over {terms}."
                )
            self.vcov[name] = pd.DataFrame(V, index=terms, columns=terms)

    def _check_dichotomies(self) -> None:
        cats = set(self._categories)
        if len(self.dichotomies) != len(cats) - 1:
            raise ValueError(
                f"{len(cats)} response categories need {len(cats) - 1} dichotomies, "
                f"got {len(self.dichotomies)}."
            )
        seen: set[str] = set()
        for name, dich in self.dichotomies.items():
            unknown = set(dich.categories) - cats
            if unknown:
                raise ValueError(f"Dichotomy '{name}' names unknown categories: {sorted(unknown)}")
            seen.update(dich.categories)
        if seen != cats:
            raise ValueError(f"Categories not covered by any dichotomy: {sorted(cats - seen)}")

    def __repr__(self) -> str:
        return (
            f"NestedLogit({self.response} ~ {' + '.join(self.predictors)}, "
            f"dichotomies={list(self.dichotomies)})"
        )

    # ------------------------------------------------------------------
    # collaborator interface
    # ------------------------------------------------------------------
    def categories(self) -> tuple[str, ...]:
        """Response categories in level order."""
        return self._categories

    def predictor_info(self) -> list[Predictor]:
        """Predictor descriptors in formula order."""
        return [self._info[name] for name in self.predictors]

    def predictor(self, name: str) -> Predictor:
        return self._info[name]

    def terms(self) -> list[str]:
        terms = [INTERCEPT]
        for info in self.predictor_info():
            if info.kind is PredictorKind.NUMERIC:
                terms.append(info.name)
            else:
                terms.extend(f"{info.name}[{level}]" for level in info.levels[1:])
        return terms

    def design_matrix(self, newdata: pd.DataFrame) -> np.ndarray:
        missing = [v for v in self.predictors if v not in newdata.columns]
        if missing:
            raise ValueError(f"newdata lacks predictor column(s): {', '.join(missing)}")

        cols = [np.ones(len(newdata), dtype=float)]
        for info in self.predictor_info():
            values = newdata[info.name]
            if info.kind is PredictorKind.NUMERIC:
                cols.append(pd.to_numeric(values).to_numpy(dtype=float))
                continue
            codes = pd.Index(list(info.levels)).get_indexer(values.to_numpy(dtype=object))
            if np.any(codes < 0):
                bad = sorted({str(v) for v, c in zip(values.tolist(), codes) if c < 0})
                raise ValueError(
                    f"{', '.join(bad)} not among the levels of {info.name}: {list(info.levels)}"
                )
            for k in range(1, len(info.levels)):
                cols.append((codes == k).astype(float))
        return np.column_stack(cols)

    def predict(self, newdata: pd.DataFrame) -> NestedPredictions:
        """Fitted probability of every response category at each row of ``newdata``."""
        X = self.design_matrix(newdata)
        cats = self.categories()
        n, k = X.shape[0], len(cats)

        p = np.ones((n, k), dtype=float)
        # d log(category factor) / d linear predictor, per dichotomy
        dlog: dict[str, np.ndarray] = {}
        for name, dich in self.dichotomies.items():
            p_d = expit(X @ self.coefficients[name].to_numpy())
            dlog[name] = np.zeros((n, k), dtype=float)
            for j, cat in enumerate(cats):
                if cat in dich.right:
                    p[:, j] *= p_d
                    dlog[name][:, j] = 1.0 - p_d
                elif cat in dich.left:
                    p[:, j] *= 1.0 - p_d
                    dlog[name][:, j] = -p_d

        # delta method, dichotomies independent
        var = np.zeros((n, k), dtype=float)
        for name in self.dichotomies:
            G = (p * dlog[name])[:, :, None] * X[:, None, :]
            V = self.vcov[name].to_numpy()
            var += np.einsum("nkt,ts,nks->nk", G, V, G)

        index = newdata.index
        return NestedPredictions(
            p=pd.DataFrame(p, columns=list(cats), index=index),
            se_p=pd.DataFrame(np.sqrt(np.maximum(var, 0.0)), columns=list(cats), index=index),
        )

    def summary_frame(self) -> pd.DataFrame:
        """One row per predictor: kind and observed domain."""
        rows = []
        for info in self.predictor_info():
            if info.kind is PredictorKind.NUMERIC:
                domain = f"[{info.minimum:g}, {info.maximum:g}]"
            else:
                domain = ", ".join(str(v) for v in info.levels)
            rows.append({
                "predictor": info.name,
                "kind": info.kind.value,
                "domain": domain,
                "mean": info.mean,
            })
        return pd.DataFrame(rows)

    # ------------------------------------------------------------------
    # artifact
    # ------------------------------------------------------------------
    def to_dataset(self) -> xr.Dataset:
        """
        Pack the model into an xarray Dataset.

        Non-numeric columns are stored as int32 codes with their levels in
        JSON attrs, so the artifact needs no string variables.
        """
        columns = [*self.predictors, self.response]
        data_vars = {}
        for i, name in enumerate(columns):
            col = self.data[name]
            if pd.api.types.is_numeric_dtype(col) and not pd.api.types.is_bool_dtype(col):
                data_vars[f"column{i}"] = xr.Variable(("row",), col.to_numpy(dtype=float), attrs={"column_type": "numeric"})
                continue
            if isinstance(col.dtype, pd.CategoricalDtype):
                column_type = "category"
                levels = col.cat.categories.tolist()
            else:
                column_type = "bool" if pd.api.types.is_bool_dtype(col) else "text"
                levels = sorted(col.dropna().unique().tolist())
            codes = pd.Categorical(col, categories=levels).codes.astype(np.int32)
            data_vars[f"column{i}"] = xr.Variable(
                ("row",), codes,
                attrs={"column_type": column_type, "levels_json": json.dumps(levels)},
            )

        terms = self.terms()
        names = list(self.dichotomies)
        data_vars["coefficients"] = (("dichotomy", "term"), np.stack([self.coefficients[d].to_numpy() for d in names]))
        data_vars["vcov"] = (("dichotomy", "term", "term_"), np.stack([self.vcov[d].to_numpy() for d in names]))

        return xr.Dataset(
            data_vars=data_vars,
            attrs={
                "artifact_version": ARTIFACT_VERSION,
                "response": self.response,
                "columns_json": json.dumps(columns),
                "terms_json": json.dumps(terms),
                "dichotomies_json": json.dumps(
                    {d: {"left": list(dich.left), "right": list(dich.right)} for d, dich in self.dichotomies.items()}
                ),
                "n_rows": int(len(self.data)),
            },
        )

    @classmethod
    def from_dataset(cls, ds: xr.Dataset) -> "NestedLogit":
        columns = json.loads(ds.attrs["columns_json"])
        terms = json.loads(ds.attrs["terms_json"])
        dichotomies = {
            d: Dichotomy(left=tuple(sides["left"]), right=tuple(sides["right"]))
            for d, sides in json.loads(ds.attrs["dichotomies_json"]).items()
        }

        frame = {}
        for i, name in enumerate(columns):
            var = ds[f"column{i}"]
            column_type = var.attrs["column_type"]
            if column_type == "numeric":
                frame[name] = var.values.astype(float)
                continue
            levels = json.loads(var.attrs["levels_json"])
            codes = var.values.astype(int)
            if column_type == "category":
                frame[name] = pd.Categorical.from_codes(codes, categories=levels)
            else:
                values = [levels[c] if c >= 0 else None for c in codes]
                frame[name] = pd.Series(values, dtype=bool if column_type == "bool" else object)

        coef = ds["coefficients"].values.astype(float)
        vcov = ds["vcov"].values.astype(float)
        return cls(
            data=pd.DataFrame(frame),
            response=str(ds.attrs["response"]),
            predictors=columns[:-1],
            dichotomies=dichotomies,
            coefficients={d: dict(zip(terms, coef[i])) for i, d in enumerate(dichotomies)},
            vcov={d: vcov[i] for i, d in enumerate(dichotomies)},
        )


def save_model(model: NestedLogit, output: Path | str, compress: bool = True) -> xr.Dataset:
    """Write the model artifact to NetCDF and return the Dataset."""
    ds = model.to_dataset()
    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    engine, encoding = _select_netcdf_engine_and_encoding(ds, compress=compress)
    ds.to_netcdf(output, engine=engine, encoding=encoding)
    return ds


def load_model(model: "NestedLogit | xr.Dataset | Path | str") -> NestedLogit:
    if isinstance(model, NestedLogit):
        return model
    ds = model if isinstance(model, xr.Dataset) else xr.load_dataset(model)
    return NestedLogit.from_dataset(ds)


# ---- choose engine + encoding safely across backends ----
def _select_netcdf_engine_and_encoding(ds: xr.Dataset, compress: bool):
    try:
        import netCDF4  # noqa: F401
        if not compress:
            return "netcdf4", None
        return "netcdf4", {
            name: {"zlib": True, "complevel": 4}
            for name, da in ds.data_vars.items()
            if np.issubdtype(da.dtype, np.number)
        }
    except ImportError:
        pass

    try:
        import h5netcdf  # noqa: F401
        if not compress:
            return "h5netcdf", None
        return "h5netcdf", {
            name: {"compression": "gzip", "compression_opts": 4}
            for name, da in ds.data_vars.items()
            if np.issubdtype(da.dtype, np.number)
        }
    except ImportError:
        pass

    # scipy writes NetCDF3 without compression
    return "scipy", None
