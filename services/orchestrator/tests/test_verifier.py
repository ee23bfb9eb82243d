from __future__ import annotations

import pytest
from structlog.testing import capture_logs

from shared.schemas.domain import EtymologyResult

from services.orchestrator.app.errors import SchemaValidationFailed
from services.orchestrator.app.verifier import validate_result


def test_valid_result_passes_unchanged(result_payload) -> None:
    result = validate_result(result_payload())
    assert isinstance(result, EtymologyResult)
    assert len(result.ancestry_graph.branches) == 2


def test_accepts_model_instances(result_payload) -> None:
    model = EtymologyResult.model_validate(result_payload())
    assert validate_result(model).word == "telephone"


def test_missing_required_fields_fail(result_payload) -> None:
    payload = result_payload()
    del payload["definition"]
    with capture_logs() as logs, pytest.raises(SchemaValidationFailed) as excinfo:
        validate_result(payload)
    assert excinfo.value.status_code == 502
    assert any(entry["event"] == "result_validation_failed" for entry in logs)


def test_multiple_branches_need_a_merge_point(result_payload) -> None:
    payload = result_payload()
    payload["ancestry_graph"]["merge_point"] = None
    with pytest.raises(SchemaValidationFailed, match="merge_point"):
        validate_result(payload)


def test_single_branch_may_omit_merge_point(result_payload) -> None:
    payload = result_payload()
    graph = payload["ancestry_graph"]
    graph["branches"] = graph["branches"][:1]
    graph["merge_point"] = None
    assert validate_result(payload).ancestry_graph.merge_point is None


@pytest.mark.parametrize(
    ("indices", "message"),
    [([0, 5], "missing branch"), ([1, 1], "distinct")],
)
def test_convergence_points_reference_real_branches(result_payload, indices, message) -> None:
    payload = result_payload()
    payload["ancestry_graph"]["convergence_points"] = [
        {"pie_root": "*kwel-", "meaning": "to revolve", "branch_indices": indices}
    ]
    with pytest.raises(SchemaValidationFailed, match=message):
        validate_result(payload)


def test_lore_must_have_substance(result_payload) -> None:
    with pytest.raises(SchemaValidationFailed, match="lore"):
        validate_result(result_payload(lore="Greek."))
