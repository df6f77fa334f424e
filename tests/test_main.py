from typer.testing import CliRunner

import pandas as pd

from nestedlogit import save_model
from nestedlogit.main import app

from .test_model import CATEGORIES, womenlf_model

runner = CliRunner()


def _artifact(tmpdir):
    path = tmpdir/"womenlf.nc"
    save_model(womenlf_model(), path)
    return path


def test_app_plot(tmpdir):
    model = _artifact(tmpdir)
    output = tmpdir/"output.html"
    result = runner.invoke(app, ["plot", str(model), "--output", str(output), "--children", "present"])
    assert result.exit_code == 0, result.output
    assert output.exists()


def test_app_plot_categorical(tmpdir):
    model = _artifact(tmpdir)
    output = tmpdir/"output.html"
    csv_out = tmpdir/"output.csv"
    result = runner.invoke(app, [
        "plot", str(model), "--x-var", "children", "--hincome", "15",
        "--no-envelopes", "--output", str(output), "--csv-out", str(csv_out),
    ])
    assert result.exit_code == 0, result.output
    df = pd.read_csv(str(csv_out))
    assert df["children"].tolist() == ["absent", "present"]
    assert (df["hincome"] == 15).all()
    assert list(df.columns[2:]) == [f"{c}.p" for c in CATEGORIES]


def test_app_plot_notes(tmpdir):
    model = _artifact(tmpdir)
    result = runner.invoke(app, ["plot", str(model), "--output", str(tmpdir/"output.html")])
    assert result.exit_code == 0, result.output
    assert "hincome will be used for the horizontal axis" in result.output


def test_app_plot_invalid_predictor(tmpdir):
    model = _artifact(tmpdir)
    output = tmpdir/"output.html"
    result = runner.invoke(app, ["plot", str(model), "--x-var", "nonexistent", "--output", str(output)])
    assert result.exit_code != 0
    assert not output.exists()


def test_app_plot_multi_valued(tmpdir):
    model = _artifact(tmpdir)
    output = tmpdir/"output.html"
    result = runner.invoke(app, ["plot", str(model), "--output", str(output), "--children", "absent,present"])
    assert result.exit_code != 0
    assert not output.exists()


def test_app_predict(tmpdir):
    model = _artifact(tmpdir)
    output = tmpdir/"predictions.csv"
    result = runner.invoke(app, ["predict", str(model), "--output", str(output), "--n-x-values", "20", "--Children", "present"])
    assert result.exit_code == 0, result.output
    df = pd.read_csv(str(output))
    assert len(df) == 20
    assert "fulltime.0.975" in df.columns
    assert (df["children"] == "present").all()


def test_app_describe(tmpdir):
    model = _artifact(tmpdir)
    result = runner.invoke(app, ["describe", str(model)])
    assert result.exit_code == 0, result.output
    assert "hincome" in result.output
    assert "not.work" in result.output
