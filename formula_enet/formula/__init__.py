"""
Formula handling: term extraction, term-by-term matrix building and the
model components handed to the path estimators.
"""

from .terms import Term, Terms, parse_formula
from .design import (
    FactorInfo,
    UNSEEN_LEVELS,
    assemble,
    evaluate_factor,
    factor_block,
    infer_factor_info,
    model_frame_matrix,
    row_kron,
    term_block,
)
from .components import (
    ModelComponents,
    NA_ACTIONS,
    check_layout,
    make_model_components,
)

__all__ = [
    # Terms
    'Term',
    'Terms',
    'parse_formula',
    # Design
    'FactorInfo',
    'UNSEEN_LEVELS',
    'assemble',
    'evaluate_factor',
    'factor_block',
    'infer_factor_info',
    'model_frame_matrix',
    'row_kron',
    'term_block',
    # Components
    'ModelComponents',
    'NA_ACTIONS',
    'check_layout',
    'make_model_components',
]
