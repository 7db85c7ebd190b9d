"""Error taxonomy for the selection framework."""


class ConvergenceFailure(RuntimeError):
    """An imputation or classifier fit did not complete for one leaf."""


class StructuralMismatch(ValueError):
    """Parallel experiment trees diverge in shape or depth."""


class DegenerateMetric(ValueError):
    """A metric was requested against an outcome vector with a single class."""


class MethodExhausted(UserWarning):
    """Every configuration of a method failed; the method is dropped."""
