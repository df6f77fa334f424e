import warnings

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from nestedlogit import Dichotomy, NestedLogit, PredictorKind, load_model, save_model

CATEGORIES = ["fulltime", "not.work", "parttime"]

DICHOTOMIES = {
    "work": Dichotomy("not.work", ("parttime", "fulltime")),
    "full": Dichotomy("parttime", "fulltime"),
}

COEFFICIENTS = {
    "work": {"(Intercept)": 1.33583, "hincome": -0.04231, "children[present]": -1.57565},
    "full": {"(Intercept)": 3.47777, "hincome": -0.10727, "children[present]": -2.65146},
}

VCOV = {
    "work": np.array([
        [0.15, -0.003, -0.04],
        [-0.003, 0.0004, -0.0005],
        [-0.04, -0.0005, 0.09],
    ]),
    "full": np.array([
        [0.6, -0.02, -0.1],
        [-0.02, 0.0015, -0.001],
        [-0.1, -0.001, 0.2],
    ]),
}


def womenlf_data(n: int = 60) -> pd.DataFrame:
    rng = np.random.default_rng(0)
    hincome = rng.integers(1, 46, size=n).astype(float)
    hincome[0], hincome[1] = 1.0, 45.0
    children = rng.choice(["absent", "present"], size=n)
    children[0], children[1] = "absent", "present"
    partic = rng.choice(CATEGORIES, size=n)
    partic[:3] = CATEGORIES
    return pd.DataFrame({
        "partic": pd.Categorical(partic, categories=CATEGORIES),
        "hincome": hincome,
        "children": pd.Categorical(children, categories=["absent", "present"]),
    })


def womenlf_model(data: pd.DataFrame | None = None) -> NestedLogit:
    return NestedLogit(
        data=womenlf_data() if data is None else data,
        response="partic",
        predictors=["hincome", "children"],
        dichotomies=DICHOTOMIES,
        coefficients=COEFFICIENTS,
        vcov=VCOV,
    )


def income_only_model() -> NestedLogit:
    return NestedLogit(
        data=womenlf_data(),
        response="partic",
        predictors=["hincome"],
        dichotomies=DICHOTOMIES,
        coefficients={d: {k: v for k, v in c.items() if k != "children[present]"} for d, c in COEFFICIENTS.items()},
        vcov={d: V[:2, :2] for d, V in VCOV.items()},
    )


def regional_model() -> NestedLogit:
    data = womenlf_data()
    data["region"] = np.array(["west", "east", "north"], dtype=object)[np.arange(len(data)) % 3]
    coefficients = {
        d: {**c, "region[north]": 0.1 * (i + 1), "region[west]": -0.2 * (i + 1)}
        for i, (d, c) in enumerate(COEFFICIENTS.items())
    }
    vcov = {d: np.diag(np.concatenate([np.diag(V), [0.05, 0.05]])) for d, V in VCOV.items()}
    return NestedLogit(
        data=data,
        response="partic",
        predictors=["hincome", "children", "region"],
        dichotomies=DICHOTOMIES,
        coefficients=coefficients,
        vcov=vcov,
    )


def test_categories_follow_response_levels():
    assert womenlf_model().categories() == tuple(CATEGORIES)


def test_predictor_info():
    hincome, children = womenlf_model().predictor_info()
    assert hincome.kind is PredictorKind.NUMERIC
    assert hincome.minimum == 1.0
    assert hincome.maximum == 45.0
    assert children.kind is PredictorKind.CATEGORICAL
    assert children.factor
    assert children.levels == ("absent", "present")


def test_text_and_logical_predictors_are_categorical():
    region = regional_model().predictor("region")
    assert region.kind is PredictorKind.CATEGORICAL
    assert region.levels == ("east", "north", "west")
    assert not region.factor

    data = womenlf_data()
    data["urban"] = np.arange(len(data)) % 2 == 0
    model = NestedLogit(
        data=data,
        response="partic",
        predictors=["urban"],
        dichotomies=DICHOTOMIES,
        coefficients={"work": {"(Intercept)": 0.5, "urban[True]": 0.2}, "full": {"(Intercept)": 0.1, "urban[True]": -0.3}},
        vcov={"work": np.eye(2) * 0.01, "full": np.eye(2) * 0.01},
    )
    urban = model.predictor("urban")
    assert urban.kind is PredictorKind.CATEGORICAL
    assert urban.levels == (False, True)


def test_terms():
    assert womenlf_model().terms() == ["(Intercept)", "hincome", "children[present]"]


def test_predict_matches_tree_of_logits():
    model = womenlf_model()
    newdata = pd.DataFrame({"hincome": [10.0, 30.0], "children": ["absent", "present"]})
    p = model.predict(newdata).p

    p_work = expit(1.33583 - 0.04231 * 30.0 - 1.57565)
    p_full = expit(3.47777 - 0.10727 * 30.0 - 2.65146)
    assert p.loc[1, "not.work"] == pytest.approx(1 - p_work)
    assert p.loc[1, "parttime"] == pytest.approx(p_work * (1 - p_full))
    assert p.loc[1, "fulltime"] == pytest.approx(p_work * p_full)
    assert np.allclose(p.sum(axis=1), 1.0)


def test_standard_errors_match_numerical_delta_method():
    model = womenlf_model()
    newdata = pd.DataFrame({"hincome": [20.0], "children": ["present"]})
    se = model.predict(newdata).se_p.iloc[0]

    h = 1e-6
    var = np.zeros(len(CATEGORIES))
    for name in DICHOTOMIES:
        terms = model.terms()
        grad = np.zeros((len(CATEGORIES), len(terms)))
        for t, term in enumerate(terms):
            shifted = {d: dict(c) for d, c in COEFFICIENTS.items()}
            shifted[name][term] += h
            up = NestedLogit(model.data, "partic", model.predictors, DICHOTOMIES, shifted, VCOV).predict(newdata).p
            shifted[name][term] -= 2 * h
            down = NestedLogit(model.data, "partic", model.predictors, DICHOTOMIES, shifted, VCOV).predict(newdata).p
            grad[:, t] = (up.iloc[0].to_numpy() - down.iloc[0].to_numpy()) / (2 * h)
        var += np.einsum("kt,ts,ks->k", grad, VCOV[name], grad)

    assert np.allclose(se.to_numpy(), np.sqrt(var), rtol=1e-4)


def test_confint_brackets_fitted_values():
    predictions = womenlf_model().predict(pd.DataFrame({"hincome": [1.0, 20.0, 45.0], "children": ["absent"] * 3}))
    bands95 = predictions.confint(0.95)
    bands80 = predictions.confint(0.80)
    assert (bands95.lower.to_numpy() <= predictions.p.to_numpy()).all()
    assert (bands95.upper.to_numpy() >= predictions.p.to_numpy()).all()
    assert (bands95.lower.to_numpy() >= 0).all() and (bands95.upper.to_numpy() <= 1).all()
    assert (bands80.upper.to_numpy() <= bands95.upper.to_numpy()).all()

    with pytest.raises(ValueError):
        predictions.confint(1.5)


def test_unknown_level_is_rejected():
    with pytest.raises(ValueError, match="maybe"):
        womenlf_model().predict(pd.DataFrame({"hincome": [10.0], "children": ["maybe"]}))


def test_unknown_level_check_raises_no_warning():
    model = womenlf_model()
    newdata = pd.DataFrame({"hincome": [10.0, 20.0], "children": ["present", "maybe"]})
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        with pytest.raises(ValueError, match="maybe not among the levels of children"):
            model.predict(newdata)


def test_dichotomies_must_cover_categories():
    with pytest.raises(ValueError, match="dichotomies"):
        NestedLogit(womenlf_data(), "partic", ["hincome", "children"],
                    {"work": DICHOTOMIES["work"]}, COEFFICIENTS, VCOV)

    with pytest.raises(ValueError):
        Dichotomy("parttime", ("parttime", "fulltime"))


def test_missing_coefficient_is_rejected():
    coefficients = {d: dict(c) for d, c in COEFFICIENTS.items()}
    del coefficients["full"]["hincome"]
    with pytest.raises(ValueError, match="hincome"):
        NestedLogit(womenlf_data(), "partic", ["hincome", "children"], DICHOTOMIES, coefficients, VCOV)


def test_save_and_load_model(tmpdir):
    output = tmpdir/"womenlf.nc"
    model = regional_model()
    save_model(model, output)
    assert output.exists()

    loaded = load_model(output)
    assert loaded.predictors == model.predictors
    assert loaded.categories() == model.categories()
    assert loaded.predictor("children").levels == ("absent", "present")
    assert loaded.predictor("region").levels == ("east", "north", "west")

    newdata = pd.DataFrame({"hincome": [5.0, 40.0], "children": ["absent", "present"], "region": ["north", "west"]})
    assert np.allclose(loaded.predict(newdata).p, model.predict(newdata).p)
    assert np.allclose(loaded.predict(newdata).se_p, model.predict(newdata).se_p)
