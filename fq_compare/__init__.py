"""
FQ-Compare Package

Homomorphic comparison and private set membership circuits over batched
F_{p^d} slots.
"""

from .field_operations import FieldOperations
from .coefficient_computation import CoefficientComputer, ComparisonPolynomial, PSParams
from .engines import (
    BackendNotAvailableError,
    MissingKeyError,
    NoiseBudgetExhausted,
    PyfhelEngine,
    SimulationEngine,
    SlotEngine,
)
from .fhe_operations import (
    ComparisonParams,
    FHEOperations,
    ParameterAdvisory,
    adjust_psm_parameters,
    ctxt_prime_size,
    slot_layout,
)
from .masks import MaskLibrary
from .batch_rotation import BatchRotator
from .poly_evaluation import PolynomialEvaluator
from .extraction import FieldCoordinateExtractor
from .comparator import CircuitType, Comparator, RunReport

__all__ = [
    'FieldOperations',
    'CoefficientComputer',
    'ComparisonPolynomial',
    'PSParams',
    'SlotEngine',
    'SimulationEngine',
    'PyfhelEngine',
    'NoiseBudgetExhausted',
    'MissingKeyError',
    'BackendNotAvailableError',
    'FHEOperations',
    'ComparisonParams',
    'ParameterAdvisory',
    'slot_layout',
    'ctxt_prime_size',
    'adjust_psm_parameters',
    'MaskLibrary',
    'BatchRotator',
    'PolynomialEvaluator',
    'FieldCoordinateExtractor',
    'CircuitType',
    'Comparator',
    'RunReport',
]
