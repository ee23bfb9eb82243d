from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    reason: str


Outcome = Union[Ok[T], Err]


def run_all(tasks: dict[str, Callable[[], T]], max_workers: int = 4) -> dict[str, Outcome[T]]:
    """Run every task to completion and tag each result.

    A failing task becomes ``Err`` and never cancels its siblings. Results keep
    the insertion order of ``tasks``.
    """
    if not tasks:
        return {}
    outcomes: dict[str, Outcome[T]] = {}
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(tasks)))) as executor:
        futures = {executor.submit(task): key for key, task in tasks.items()}
        for future in as_completed(futures):
            key = futures[future]
            try:
                outcomes[key] = Ok(future.result())
            except Exception as exc:  # noqa: BLE001
                outcomes[key] = Err(reason=str(exc) or exc.__class__.__name__)
    return {key: outcomes[key] for key in tasks}
