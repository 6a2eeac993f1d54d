"""Tests for domain models and the failure envelope."""

from cardkeeper.models.failure import (
    EvaluationError,
    ExpressionParseError,
    FailureKind,
    JobConflictError,
    NotFoundError,
    OutcomeType,
)
from cardkeeper.models.job import (
    MAX_RECORDED_MOVEMENTS,
    JobStatus,
    ResortPhase,
    ResortProgress,
)


class TestJobStatus:
    def test_terminal_statuses(self) -> None:
        assert {s for s in JobStatus if s.is_terminal} == {
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.CANCELLED,
        }


class TestResortProgress:
    def test_metadata_shape(self) -> None:
        progress = ResortProgress(total_cards=10, processed_cards=4, phase=ResortPhase.SORTING)

        data = progress.to_metadata()

        assert data["phase"] == "sorting"
        assert data["total_cards"] == 10
        assert data["inventory_ids"] is None

    def test_from_metadata(self) -> None:
        progress = ResortProgress.from_metadata(
            {"total_cards": 3, "updated_cards": 1, "phase": "done", "inventory_ids": [1, 2]}
        )

        assert progress.updated_cards == 1
        assert progress.phase is ResortPhase.DONE
        assert progress.inventory_ids == [1, 2]

    def test_from_empty_metadata(self) -> None:
        assert ResortProgress.from_metadata(None) == ResortProgress()

    def test_movements_capped(self) -> None:
        """Movements past the cap are dropped and the list is flagged."""
        progress = ResortProgress()
        batch = [{"inventory_id": i} for i in range(MAX_RECORDED_MOVEMENTS - 1)]

        progress.record_movements(batch)
        assert progress.movements_truncated is False

        progress.record_movements([{"inventory_id": -1}, {"inventory_id": -2}])
        progress.record_movements([{"inventory_id": -3}])

        assert len(progress.movements) == MAX_RECORDED_MOVEMENTS
        assert progress.movements[-1] == {"inventory_id": -1}
        assert progress.movements_truncated is True

    def test_movements_round_trip(self) -> None:
        progress = ResortProgress()
        progress.record_movements([{"card_name": "Shock", "to_location": "Reds"}])

        restored = ResortProgress.from_metadata(progress.to_metadata())

        assert restored.movements == [{"card_name": "Shock", "to_location": "Reds"}]


class TestKnownErrors:
    def test_parse_error_position(self) -> None:
        error = ExpressionParseError("Unexpected ')'", 4)

        assert error.position == 4
        assert error.message == "Unexpected ')' at position 4"
        assert error.status_code == 400

    def test_parse_error_without_position(self) -> None:
        error = ExpressionParseError("Expression cannot be empty")

        assert error.position is None
        assert error.message == "Expression cannot be empty"

    def test_status_codes(self) -> None:
        assert EvaluationError("cmc", "bad").status_code == 422
        assert JobConflictError(1).status_code == 409
        assert NotFoundError("Job", 1).status_code == 404

    def test_envelope(self) -> None:
        """Known errors convert to a known-failure envelope."""
        response = NotFoundError("Sorting rule", 7).to_response()

        assert response.outcome == OutcomeType.KNOWN_FAILURE
        assert response.data is None
        assert response.failure.kind == FailureKind.NOT_FOUND
        assert response.failure.message == "Sorting rule 7 not found"

