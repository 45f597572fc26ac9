"""Tests for contact deduction."""
import pytest

from formwork.areas import solid_surface_area
from formwork.booleans import BooleanEngine
from formwork.contracts import Category
from formwork.deduction import ContactDeductionEngine, DeductionDecision
from formwork.errors import BooleanOperationError
from formwork.faces import deduction_threshold
from formwork.result import Err

from conftest import box_between

BEAM = deduction_threshold(Category.BEAM)
COLUMN = deduction_threshold(Category.COLUMN)


class NoDifferenceEngine(BooleanEngine):
    def difference(self, a, b):
        return Err(BooleanOperationError("injected difference failure", operation="difference"))


class NoIntersectionEngine(BooleanEngine):
    def intersection(self, a, b):
        return Err(BooleanOperationError("injected intersection failure", operation="intersection"))


def _candidate():
    """A 10 ft long, 0.1 ft thick slab of formwork."""
    return box_between((0, 0, 0), (10, 1, 0.1))


def _neighbor_covering(fraction):
    """Neighbor overlapping the last ``fraction`` of the candidate's length."""
    start = 10.0 - 10.0 * fraction
    return box_between((start, -1, -1), (12, 2, 1))


class TestThreshold:

    def test_no_aggregate_keeps_candidate(self):
        candidate = _candidate()
        outcome = ContactDeductionEngine().deduct(candidate, None, BEAM)
        assert outcome.decision == DeductionDecision.NO_NEIGHBORS
        assert outcome.solid is candidate
        assert not outcome.applied

    def test_six_percent_contact_reduces_beam_area(self):
        candidate = _candidate()
        outcome = ContactDeductionEngine().deduct(candidate, _neighbor_covering(0.06), BEAM)
        assert outcome.ratio == pytest.approx(0.06, abs=1e-6)
        assert outcome.decision == DeductionDecision.APPLIED
        assert outcome.solid.volume == pytest.approx(candidate.volume * 0.94)
        assert solid_surface_area(outcome.solid) < solid_surface_area(candidate)

    def test_three_percent_skipped_for_beam_applied_for_column(self):
        engine = ContactDeductionEngine()
        neighbor = _neighbor_covering(0.03)
        beam = engine.deduct(_candidate(), neighbor, BEAM)
        column = engine.deduct(_candidate(), neighbor, COLUMN)
        assert beam.decision == DeductionDecision.BELOW_THRESHOLD
        assert column.decision == DeductionDecision.APPLIED

    def test_non_touching_neighbor_below_threshold(self):
        candidate = _candidate()
        far = box_between((20, 0, 0), (21, 1, 1))
        outcome = ContactDeductionEngine().deduct(candidate, far, COLUMN)
        assert outcome.ratio == pytest.approx(0.0)
        assert outcome.decision == DeductionDecision.BELOW_THRESHOLD
        assert outcome.solid is candidate


class TestDegenerateResults:

    def test_full_cover_gives_no_solid(self):
        enclosing = box_between((-1, -1, -1), (11, 2, 1))
        outcome = ContactDeductionEngine().deduct(_candidate(), enclosing, BEAM)
        assert outcome.decision == DeductionDecision.FULLY_COVERED
        assert outcome.solid is None
        assert outcome.applied

    def test_failed_difference_falls_back(self):
        candidate = _candidate()
        engine = ContactDeductionEngine(NoDifferenceEngine())
        outcome = engine.deduct(candidate, _neighbor_covering(0.5), BEAM)
        assert outcome.decision == DeductionDecision.FALLBACK
        assert outcome.solid is candidate
        assert isinstance(outcome.errors[0], BooleanOperationError)

    def test_failed_intersection_falls_back(self):
        candidate = _candidate()
        engine = ContactDeductionEngine(NoIntersectionEngine())
        outcome = engine.deduct(candidate, _neighbor_covering(0.5), BEAM)
        assert outcome.decision == DeductionDecision.FALLBACK
        assert outcome.solid is candidate
        assert outcome.ratio == 0.0
