"""Exceptions raised by the pipeline stages."""

from __future__ import annotations

from typing import Any, Optional, Sequence


class PipelineError(Exception):
    """Base class for stage-level failures that abort the pipeline."""

    stage = "pipeline"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        if stage is not None:
            self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {super().__str__()}"


class LoadError(PipelineError):
    """A source table is missing, lacks a required column or is malformed."""

    stage = "load"


class JoinKeyError(PipelineError):
    """A member row has no matching expedition or peak under a strict join."""

    stage = "join"


class ValidationError(PipelineError):
    """Rows failed validation and the caller asked for that to be an error.

    The default cleaning stage never raises this; excluded rows are counted.
    """

    stage = "clean"

    def __init__(self, message: str, excluded: Optional[dict] = None):
        super().__init__(message)
        self.excluded = dict(excluded or {})


class ConvergenceError(PipelineError):
    """MCMC chains did not converge (R-hat above threshold)."""

    stage = "fit"

    def __init__(
        self,
        message: str,
        failing_terms: Sequence[str] = (),
        diagnostics: Any = None,
        fitted: Any = None,
    ):
        super().__init__(message)
        self.failing_terms = list(failing_terms)
        self.diagnostics = diagnostics
        self.fitted = fitted
