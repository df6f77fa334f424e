import numpy as np

from nestedlogit import plot, prediction_table, save_model

from .test_model import CATEGORIES, womenlf_model


def test_womenlf(tmpdir):
    output = tmpdir/"womenlf.nc"
    save_model(womenlf_model(), output)
    assert output.exists()

    # one panel per value of children, as in the nestedLogit documentation example
    for children in ("absent", "present"):
        fig = plot(output, "hincome", {"children": children}, xlab="Husband's Income", legend_location="top")
        assert fig is not None
        assert fig.layout.xaxis.title.text == "Husband's Income"
        assert fig.layout.title.text == f"children = {children}"

    # participation falls with husband's income and with children present
    _, absent = prediction_table(womenlf_model(), "hincome", {"children": "absent"}, n_x_values=50)
    _, present = prediction_table(womenlf_model(), "hincome", {"children": "present"}, n_x_values=50)
    assert np.all(np.diff(absent.column("not.work")) > 0)
    assert (present.column("not.work") > absent.column("not.work")).all()
    assert np.allclose(absent.fitted[CATEGORIES].sum(axis=1), 1.0)
