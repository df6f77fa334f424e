from .errors import (
    NestedLogitError,
    InvalidPredictor,
    MultiValuedFixedInput,
    UnknownPredictor,
    PredictionFailure,
)
from .model import (
    NestedLogit,
    NestedPredictions,
    ConfidenceBands,
    Dichotomy,
    Predictor,
    PredictorKind,
    load_model,
    save_model,
)
from .predict import (
    AxisResolution,
    Bound,
    PredictionTable,
    resolve_axes,
    build_grid,
    fetch_predictions,
    prediction_table,
)
from .viz import RenderConfig, plot
