"""Exceptions raised by the gating pipeline."""


class GatingConfigError(ValueError):
    """Raised when a model, parameter set or score table cannot be gated.

    Configuration errors are fatal and raised before any output is
    written. The message always names the offending signature, model or
    parameter.
    """

    pass
