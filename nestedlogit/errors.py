# -*- coding: utf-8 -*-
"""
Input problems detected before anything is drawn.

Every class derives from ValueError so callers that already guard plotting
calls with ``except ValueError`` keep working.
"""


class NestedLogitError(ValueError):
    pass


class InvalidPredictor(NestedLogitError):
    """The requested horizontal-axis variable is not a predictor of the model."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} is not in the model")


class MultiValuedFixedInput(NestedLogitError):
    """A fixed value was given as a collection instead of a single value."""

    def __init__(self, names: list[str]):
        self.names = list(names)
        super().__init__(
            "more than one value specified for one or more variables in others: "
            + ", ".join(self.names)
        )


class UnknownPredictor(NestedLogitError):
    """A fixed-value key does not name a predictor of the model."""

    def __init__(self, names: list[str]):
        self.names = list(names)
        super().__init__("not in the model: " + ", ".join(self.names))


class PredictionFailure(NestedLogitError):
    """The model could not evaluate the prediction grid."""
