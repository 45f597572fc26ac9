"""Tests for run-scoped session state."""
from formwork.contracts import FormworkConfig, RunState
from formwork.errors import BooleanOperationError, GeometryExtractionError
from formwork.result import Err
from formwork.session import AnalysisSession


def test_solids_read_once(isolated_column_model, monkeypatch):
    session = AnalysisSession(isolated_column_model, FormworkConfig())
    calls = []
    original = isolated_column_model.get_solids

    def counting(element_id):
        calls.append(element_id)
        return original(element_id)

    monkeypatch.setattr(isolated_column_model, "get_solids", counting)
    first = session.solids_for(1)
    second = session.solids_for(1)
    faces = session.faces_for(1)
    assert first is second
    assert len(faces) == 6
    assert calls == [1]


def test_missing_element_recorded_once(isolated_column_model):
    session = AnalysisSession(isolated_column_model, FormworkConfig())
    assert isinstance(session.try_solids(42), Err)
    assert session.solids_for(42) == []
    assert session.faces_for(42) == []
    assert len(session.errors_of(GeometryExtractionError)) == 1


def test_record_error_counts_by_type(isolated_column_model):
    session = AnalysisSession(isolated_column_model, FormworkConfig())
    session.record_error(1, "union", BooleanOperationError("boom"))
    session.record_error(1, "union", BooleanOperationError("boom again"))
    assert session.counters["error.BooleanOperationError"] == 2
    assert session.diagnostics[0].stage == "union"


def test_state_and_cancel(isolated_column_model):
    session = AnalysisSession(isolated_column_model, FormworkConfig())
    assert session.state == RunState.IDLE
    session.enter(RunState.COLLECT)
    assert session.state == RunState.COLLECT
    assert not session.cancel_requested
    session.request_cancel()
    assert session.cancel_requested


def test_decide_without_audit_is_noop(isolated_column_model):
    session = AnalysisSession(isolated_column_model, FormworkConfig())
    session.decide(
        phase="per_element",
        decision_type="contact_deduction",
        element_ids=[1],
        selected="applied",
        reason_codes=[],
    )
