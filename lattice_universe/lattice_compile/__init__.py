"""
Configuration compilation: request payload → KernelConfig with compiled formulas.

Modules:
- formulas.py: Formula capability, fixed signatures per extension point
- hydrate.py: Payload sanitizing and KernelConfig construction
"""

from .formulas import FORMULA_SIGNATURES, Formula, FormulaCompileError, compile_optional
from .hydrate import DimensionDefinition, KernelConfig, LatticeConfigError, hydrate_config

__all__ = [
    "FORMULA_SIGNATURES",
    "Formula",
    "FormulaCompileError",
    "compile_optional",
    "DimensionDefinition",
    "KernelConfig",
    "LatticeConfigError",
    "hydrate_config",
]
