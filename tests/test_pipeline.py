"""End-to-end tests for the batch formwork pipeline."""
import json

import pytest
import trimesh

import formwork.pipeline as pipeline_module
from formwork import FormworkConfig, run_formwork_pipeline
from formwork.audit import AuditTrail
from formwork.contracts import AreaMode, Category, ElementStatus, FaceOrientation
from formwork.errors import ModelUnavailableError
from formwork.model import InMemoryModel
from formwork.writeback import PARAM_HOST_ID, PARAM_TOTAL, generated_piece_ids
from materials import ft2_to_m2, mm_to_ft

from conftest import box_between, category_of

T = mm_to_ft(18.0)


def _record(result, element_id):
    return next(r for r in result.records if r.element_id == element_id)


class TestIsolatedColumn:

    def test_net_equals_gross_without_neighbors(self, isolated_column_model):
        result = run_formwork_pipeline(isolated_column_model)
        record = result.records[0]
        per_face = ft2_to_m2(2 * 10.0 + 2 * 10.0 * T + 2 * 1.0 * T)
        assert record.status == ElementStatus.OK
        assert record.piece_count == 4
        assert record.gross_area_m2 == pytest.approx(4 * per_face)
        assert record.net_area_m2 == pytest.approx(record.gross_area_m2)
        assert result.counters["deduction.no_neighbors"] == 4

    def test_contact_face_mode(self, isolated_column_model):
        config = FormworkConfig(area_mode=AreaMode.CONTACT_FACE)
        result = run_formwork_pipeline(isolated_column_model, config)
        assert result.net_area_m2 == pytest.approx(4 * ft2_to_m2(10.0))

    def test_pieces_written_with_parameters(self, isolated_column_model):
        result = run_formwork_pipeline(isolated_column_model)
        ids = generated_piece_ids(isolated_column_model)
        assert len(ids) == 4
        assert sorted(p.element_ref for p in result.pieces) == ids
        for element_id in ids:
            assert isolated_column_model.get_parameter(element_id, PARAM_HOST_ID) == 1
            assert isolated_column_model.get_parameter(element_id, PARAM_TOTAL) == pytest.approx(
                result.net_area_m2, abs=1e-6
            )

    def test_dry_run_leaves_model_untouched(self, isolated_column_model):
        result = run_formwork_pipeline(isolated_column_model, write_back=False)
        assert result.piece_count == 4
        assert generated_piece_ids(isolated_column_model) == []
        assert all(p.element_ref is None for p in result.pieces)


class TestContact:

    def test_beam_through_column_deducted_both_ways(self, beam_column_model):
        result = run_formwork_pipeline(beam_column_model)
        beam = _record(result, 1)
        column = _record(result, 2)
        assert beam.net_area_m2 < beam.gross_area_m2
        assert column.net_area_m2 < column.gross_area_m2
        for record in result.records:
            assert 0 <= record.net_area_m2 <= record.gross_area_m2

    def test_precision_mode_ignores_other_zones(self, beam_column_model):
        config = FormworkConfig(precision_mode=True)
        result = run_formwork_pipeline(beam_column_model, config)
        for record in result.records:
            assert record.neighbor_count == 0
            assert record.net_area_m2 == pytest.approx(record.gross_area_m2)
        assert [z.zone_key for z in result.zones] == ["A|", "B|"]

    def test_rerun_replaces_previous_pieces(self, beam_column_model):
        first = run_formwork_pipeline(beam_column_model)
        second = run_formwork_pipeline(beam_column_model)
        assert second.deleted_prior_count == first.piece_count
        assert len(generated_piece_ids(beam_column_model)) == second.piece_count
        assert second.net_area_m2 == pytest.approx(first.net_area_m2, abs=1e-3)
        assert second.element_count == first.element_count


class TestFrame:

    def test_frame_invariants(self, frame_model):
        result = run_formwork_pipeline(frame_model)
        assert result.element_count == 6
        assert result.failure_count == 0
        for piece in result.pieces:
            assert piece.validate() == []
        for record in result.records:
            assert 0 <= record.net_area_m2 <= record.gross_area_m2 + 1e-9

    def test_category_rules_applied(self, frame_model):
        result = run_formwork_pipeline(frame_model)
        foundation = category_of(result, Category.FOUNDATION)[0]
        assert foundation.piece_count == 0

        slab_pieces = [p for p in result.pieces if p.category == Category.SLAB]
        assert slab_pieces
        assert all(p.orientation != FaceOrientation.TOP for p in slab_pieces)

        wall_pieces = [p for p in result.pieces if p.category == Category.WALL]
        assert wall_pieces
        assert all(p.orientation == FaceOrientation.LATERAL for p in wall_pieces)

    def test_category_totals_match_records(self, frame_model):
        result = run_formwork_pipeline(frame_model)
        total = sum(t.net_area_m2 for t in result.category_totals.values())
        assert total == pytest.approx(result.net_area_m2)
        assert result.category_totals[Category.COLUMN].element_count == 2

    def test_exclude_foundation(self, frame_model):
        result = run_formwork_pipeline(frame_model, FormworkConfig(exclude_foundation=True))
        assert category_of(result, Category.FOUNDATION) == []


class TestFailures:

    def test_element_failure_does_not_stop_batch(self, frame_model, monkeypatch):
        original = pipeline_module.select_formwork_faces

        def flaky(element, faces, slab_boxes=()):
            if element.name == "C2":
                raise RuntimeError("face selection crashed")
            return original(element, faces, slab_boxes)

        monkeypatch.setattr(pipeline_module, "select_formwork_faces", flaky)
        result = run_formwork_pipeline(frame_model)
        failed = [r for r in result.records if r.status == ElementStatus.FAILED]
        assert [r.name for r in failed] == ["C2"]
        assert result.failure_count == 1
        assert result.success_count == 5
        assert any(d.stage == "per_element" for d in result.diagnostics)
        assert result.piece_count > 0

    def test_zero_volume_element_counted_as_failure(self, isolated_column_model):
        flat = trimesh.Trimesh(vertices=[[0, 0, 0], [1, 0, 0], [0, 1, 0]], faces=[[0, 1, 2]])
        isolated_column_model.add_element("Flat", "Slab", [flat])
        result = run_formwork_pipeline(isolated_column_model)
        flat_record = next(r for r in result.records if r.name == "Flat")
        assert flat_record.status == ElementStatus.NO_GEOMETRY
        assert result.failure_count == 1
        assert result.success_count == 1

    def test_element_without_geometry_reported_as_failure(self, isolated_column_model):
        isolated_column_model.add_element("Ghost", "Beam", [])
        result = run_formwork_pipeline(isolated_column_model)
        assert result.element_count == 2
        ghost = next(r for r in result.records if r.name == "Ghost")
        assert ghost.status == ElementStatus.NO_GEOMETRY
        assert result.failure_count == 1
        assert result.success_count == 1
        assert [d.stage for d in result.diagnostics] == ["collect"]

    def test_host_error_on_one_piece_keeps_the_rest(self, isolated_column_model, monkeypatch):
        run_formwork_pipeline(isolated_column_model)
        original = isolated_column_model.create_geometry_element
        calls = []

        def flaky(solids, category):
            calls.append(category)
            if len(calls) == 2:
                raise RuntimeError("host API error")
            return original(solids, category)

        monkeypatch.setattr(isolated_column_model, "create_geometry_element", flaky)
        result = run_formwork_pipeline(isolated_column_model)
        assert result.piece_count == 4
        assert result.written_piece_count == 3
        assert result.deleted_prior_count == 4
        written = sorted(p.element_ref for p in result.pieces if p.element_ref is not None)
        assert generated_piece_ids(isolated_column_model) == written
        assert [d.stage for d in result.diagnostics] == ["writeback"]

    def test_failed_writeback_keeps_previous_pieces(self, isolated_column_model, monkeypatch):
        run_formwork_pipeline(isolated_column_model)
        before = generated_piece_ids(isolated_column_model)

        def locked(element_ids):
            raise RuntimeError("elements are checked out")

        monkeypatch.setattr(isolated_column_model, "delete_elements", locked)
        result = run_formwork_pipeline(isolated_column_model)
        assert generated_piece_ids(isolated_column_model) == before
        assert result.written_piece_count == 0
        assert result.deleted_prior_count == 0
        assert result.piece_count == 4
        assert any(d.stage == "writeback" for d in result.diagnostics)

    def test_boundary_loop_failure_recorded_per_face(self):
        class NoLoopsModel(InMemoryModel):
            def get_boundary_curve_loops(self, face):
                raise RuntimeError("curve loop extraction failed")

        model = NoLoopsModel()
        model.add_element("C1", "Column", [box_between((0, 0, 0), (1, 1, 10))])
        result = run_formwork_pipeline(model)
        assert result.piece_count == 0
        assert result.element_count == 1
        stages = [d.stage for d in result.diagnostics]
        assert stages == ["extrude"] * 4
        assert "curve loop extraction failed" in result.diagnostics[0].message

    def test_override_counted_as_skipped(self, isolated_column_model):
        isolated_column_model.add_element(
            "Skip", "Beam", [box_between((5, 5, 0), (6, 6, 1))], flags=["Override"]
        )
        result = run_formwork_pipeline(isolated_column_model)
        assert result.skipped_count == 1
        assert result.failure_count == 0

    def test_unavailable_model_is_fatal(self, isolated_column_model):
        isolated_column_model.close()
        with pytest.raises(ModelUnavailableError):
            run_formwork_pipeline(isolated_column_model)

    def test_model_lost_mid_run_is_fatal(self):
        class VanishingModel(InMemoryModel):
            def get_solids(self, element_id):
                raise ModelUnavailableError("document closed")

        model = VanishingModel()
        model.add_element("C1", "Column", [box_between((0, 0, 0), (1, 1, 10))])
        with pytest.raises(ModelUnavailableError):
            run_formwork_pipeline(model)

    def test_unknown_material_rejected(self):
        with pytest.raises(ValueError, match="cardboard"):
            FormworkConfig(material_key="cardboard")

    def test_non_positive_thickness_rejected(self):
        with pytest.raises(ValueError):
            FormworkConfig(thickness_mm=0.0)


class TestAudit:

    def test_checkpoints_and_decisions_written(self, beam_column_model, tmp_path):
        audit = AuditTrail(run_id="audit_run", artifacts_dir=tmp_path)
        result = run_formwork_pipeline(
            beam_column_model, run_id="audit_run", artifacts_dir=tmp_path, audit=audit
        )
        checkpoints = sorted((tmp_path / "checkpoints").glob("phase_*.json"))
        assert [p.name for p in checkpoints] == [
            "phase_00_collect.json",
            "phase_01_index.json",
            "phase_02_per_element.json",
            "phase_03_aggregate.json",
            "phase_04_report.json",
        ]
        assert result.checkpoints == checkpoints

        lines = (tmp_path / "decision_log.jsonl").read_text(encoding="utf-8").splitlines()
        decisions = [json.loads(line) for line in lines]
        assert len(decisions) == audit.decision_count
        assert {d["selected"] for d in decisions} >= {"applied", "below_threshold"}
        for prev, cur in zip(decisions, decisions[1:]):
            assert cur["previous_hash"] == prev["hash"]

        chain = json.loads((tmp_path / "decision_hash_chain.json").read_text(encoding="utf-8"))
        assert chain["final_hash"] == decisions[-1]["hash"]

        report = json.loads(checkpoints[-1].read_text(encoding="utf-8"))
        assert report["prev_checkpoint_sha256"] == json.loads(
            checkpoints[-2].read_text(encoding="utf-8")
        )["payload_sha256"]
