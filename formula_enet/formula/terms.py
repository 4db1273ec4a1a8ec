"""
Formula term extraction.

Formulas are parsed with patsy's ``ModelDesc``; nothing here evaluates data.
The result is a small immutable ``Terms`` descriptor holding only strings, so
it can be stored on a fitted model, pickled and replayed at prediction time.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence, Tuple

from patsy import ModelDesc, PatsyError

from ..exceptions import FormulaParseError

logger = logging.getLogger(__name__)

_OFFSET_RE = re.compile(r'^offset\((.*)\)$', re.DOTALL)
# a lone "." that is not part of a number, attribute access or name
_DOT_RE = re.compile(r'(?<![\w.\)\]])\.(?![\w.(])')
_IDENTIFIER_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')


@dataclass(frozen=True)
class Term:
    """An additive term: a main effect (one factor) or an interaction."""
    factors: Tuple[str, ...]

    @property
    def label(self) -> str:
        return ':'.join(self.factors)

    @property
    def order(self) -> int:
        return len(self.factors)

    def __str__(self):
        return self.label


@dataclass(frozen=True)
class Terms:
    """
    Parsed model formula.

    Attributes
    ----------
    formula : str
        The formula as given by the caller.
    expanded : str
        The formula after ``.`` expansion; this is what patsy parsed.
    response : tuple of str
        Response factor codes (empty after ``delete_response``).
    terms : tuple of Term
        Right-hand side terms, in formula order, without the intercept.
    intercept : bool
        Whether the formula asks for an intercept.
    offsets : tuple of str
        Expressions found inside ``offset(...)`` terms.
    """
    formula: str
    expanded: str
    response: Tuple[str, ...] = ()
    terms: Tuple[Term, ...] = ()
    intercept: bool = True
    offsets: Tuple[str, ...] = field(default=())

    @property
    def term_labels(self) -> Tuple[str, ...]:
        return tuple(t.label for t in self.terms)

    @property
    def factors(self) -> Tuple[str, ...]:
        """Unique factor codes in order of first appearance."""
        seen = []
        for term in self.terms:
            for code in term.factors:
                if code not in seen:
                    seen.append(code)
        return tuple(seen)

    @property
    def has_response(self) -> bool:
        return bool(self.response)

    def delete_response(self) -> 'Terms':
        """Copy of these terms without the response."""
        return replace(self, response=())

    def __str__(self):
        lhs = ' + '.join(self.response)
        rhs = list(self.term_labels) + [f'offset({o})' for o in self.offsets]
        if not self.intercept:
            rhs.append('0')
        return f"{lhs} ~ {' + '.join(rhs) if rhs else '1'}".strip()


def _quote_column(name):
    if _IDENTIFIER_RE.match(name):
        return name
    return f'Q({name!r})'


def _split_formula(formula):
    if '~' not in formula:
        return '', formula
    lhs, rhs = formula.split('~', 1)
    return lhs.strip(), rhs.strip()


def _expand_dot(formula, columns, lhs_codes):
    lhs, rhs = _split_formula(formula)
    if not _DOT_RE.search(rhs):
        return formula
    if columns is None:
        raise FormulaParseError(formula, '.', "'.' in formula and no data columns to expand it")
    used = set(lhs_codes)
    names = [_quote_column(str(c)) for c in columns
             if str(c) not in used and _quote_column(str(c)) not in used]
    if not names:
        raise FormulaParseError(formula, '.', "'.' expands to no columns")
    rhs = _DOT_RE.sub('(' + ' + '.join(names) + ')', rhs)
    return f"{lhs} ~ {rhs}" if lhs else f"~ {rhs}"


def _patsy_term(formula, exc):
    origin = getattr(exc, 'origin', None)
    if origin is not None and getattr(origin, 'code', None):
        return origin.code[origin.start:origin.end]
    return None


def _model_desc(formula, expanded):
    try:
        return ModelDesc.from_formula(expanded)
    except PatsyError as exc:
        raise FormulaParseError(formula, _patsy_term(formula, exc), exc.message) from exc


def parse_formula(formula: str, columns: Optional[Sequence] = None) -> Terms:
    """
    Parse a model formula into a ``Terms`` descriptor.

    Parameters
    ----------
    formula : str
        A patsy formula, e.g. ``'y ~ a + b:c + np.log(d)'``. ``.`` on the
        right-hand side stands for every column of the data not used as
        a response.
    columns : sequence, optional
        Data column names, needed to expand ``.``.

    Returns
    -------
    Terms

    Raises
    ------
    FormulaParseError
        If the formula is malformed; the offending term is named.
    """
    if not isinstance(formula, str) or not formula.strip():
        raise FormulaParseError(str(formula), None, "empty formula")

    # parse the left-hand side alone first so '.' knows which columns to skip
    lhs, _ = _split_formula(formula)
    lhs_codes = []
    if lhs:
        lhs_desc = _model_desc(formula, f"{lhs} ~ 0")
        lhs_codes = [f.code for t in lhs_desc.lhs_termlist for f in t.factors]

    expanded = _expand_dot(formula, columns, lhs_codes)
    desc = _model_desc(formula, expanded)

    response = []
    for term in desc.lhs_termlist:
        if len(term.factors) != 1:
            raise FormulaParseError(formula, term.name(), "interaction in the response")
        response.append(term.factors[0].code)

    terms, offsets = [], []
    intercept = False
    for term in desc.rhs_termlist:
        codes = tuple(f.code for f in term.factors)
        if not codes:
            intercept = True
            continue
        offset_codes = [c for c in codes if _OFFSET_RE.match(c)]
        if offset_codes:
            if len(codes) > 1:
                raise FormulaParseError(formula, term.name(), "offset() inside an interaction")
            offsets.append(_OFFSET_RE.match(codes[0]).group(1).strip())
            continue
        terms.append(Term(codes))

    result = Terms(
        formula=formula,
        expanded=expanded,
        response=tuple(response),
        terms=tuple(terms),
        intercept=intercept,
        offsets=tuple(offsets),
    )
    logger.debug("Parsed formula '%s': %d terms, response=%s", formula, len(terms), result.response)
    return result
