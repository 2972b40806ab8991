"""Payload pipelines between backends and entities.

A pipeline is an ordered list of stages followed by an optional
destination. Each stage receives ``(payload, arg)`` and returns the payload
for the next stage; returning None drops the payload.
"""

from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator

from ..domain.context import SyncContext
from ..domain.enums import SyncOperation

Stage = Callable[[Any, "SyncPipelineArgument"], Any]


@dataclass
class SyncPipelineArgument:
    """What a pipeline stage knows about the operation it serves."""

    operation: SyncOperation
    ctx: SyncContext
    args: tuple
    id: Any = None
    entity: Any = None


class Pipeline:
    """Immutable chain of stages.

    Example:
        pipeline = Pipeline().through(strip_envelope).then(build_entity)
        entity = pipeline.run(record, arg)
        entities = list(pipeline.stream(records, arg))
    """

    def __init__(self, stages: tuple[Stage, ...] = (), destination: Stage | None = None):
        self.stages = tuple(stages)
        self.destination = destination

    def through(self, stage: Stage) -> "Pipeline":
        """Return a pipeline with ``stage`` appended."""
        return Pipeline(self.stages + (stage,), self.destination)

    def then(self, destination: Stage) -> "Pipeline":
        """Return a pipeline that hands its result to ``destination``."""
        return Pipeline(self.stages, destination)

    def run(self, payload: Any, arg: SyncPipelineArgument | None = None) -> Any:
        for stage in self.stages:
            payload = stage(payload, arg)
            if payload is None:
                return None
        if self.destination is not None:
            return self.destination(payload, arg)
        return payload

    def stream(self, payloads: Iterable[Any], arg: SyncPipelineArgument | None = None) -> Iterator[Any]:
        """Run each payload through the pipeline, skipping dropped ones."""
        for payload in payloads:
            result = self.run(payload, arg)
            if result is not None:
                yield result

    def __len__(self) -> int:
        return len(self.stages)


__all__ = ["Pipeline", "SyncPipelineArgument", "Stage"]
