from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from shared.schemas.domain import EtymologyResult

from .errors import SchemaValidationFailed
from .observability import emit_event

# Structural checks pydantic cannot express on its own.
_MIN_LORE_CHARS = 40


def _graph_problems(result: EtymologyResult) -> list[str]:
    problems: list[str] = []
    graph = result.ancestry_graph
    branch_count = len(graph.branches)
    if branch_count > 1 and graph.merge_point is None:
        problems.append("multiple branches without a merge_point")
    for index, point in enumerate(graph.convergence_points or []):
        if any(i < 0 or i >= branch_count for i in point.branch_indices):
            problems.append(f"convergence_points[{index}] references a missing branch")
        if len(set(point.branch_indices)) < 2:
            problems.append(f"convergence_points[{index}] needs two distinct branches")
    if len(result.lore.strip()) < _MIN_LORE_CHARS:
        problems.append("lore is too short")
    return problems


def validate_result(data: EtymologyResult | dict[str, Any]) -> EtymologyResult:
    payload = data.model_dump(mode="json") if isinstance(data, EtymologyResult) else data
    try:
        result = EtymologyResult.model_validate(payload)
    except ValidationError as exc:
        emit_event("result_validation_failed", errors=exc.error_count())
        raise SchemaValidationFailed(f"result failed validation: {exc.error_count()} errors") from exc

    problems = _graph_problems(result)
    if problems:
        emit_event("result_validation_failed", errors=len(problems), problems=problems)
        raise SchemaValidationFailed("result failed validation: " + "; ".join(problems))
    return result
