"""Exceptions raised by the runner fleet compiler."""

from typing import List, TYPE_CHECKING

if TYPE_CHECKING:
    from .validation import Diagnostic


class RunnerFleetError(Exception):
    """Base error for the runner fleet compiler."""


class ConfigurationError(RunnerFleetError):
    """Settings or declarations that cannot be loaded at all."""


class GenerationRefusedError(RunnerFleetError):
    """Artifact generation refused because of error-severity diagnostics."""

    def __init__(self, runner: str, diagnostics: List["Diagnostic"]):
        self.runner = runner
        self.diagnostics = diagnostics
        messages = "; ".join(d.message for d in diagnostics)
        super().__init__(f"Refusing to generate artifacts for {runner}: {messages}")
