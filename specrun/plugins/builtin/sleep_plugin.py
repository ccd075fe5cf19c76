"""Sleep executor -- waits a fixed time, e.g. for a background service to start."""

from __future__ import annotations

import asyncio

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from specrun.engine.context import ContextView
from specrun.models import ExecutorOutput
from specrun.plugins.base import BaseExecutor


class SleepParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    duration_ms: int = Field(ge=0)


class SleepExecutor(BaseExecutor):
    name = "sleep"
    action_types = ("SLEEP",)

    async def execute(self, params: dict, context: ContextView) -> ExecutorOutput:
        p = self.parse_params(SleepParams, params)
        await asyncio.sleep(p.duration_ms / 1000)
        return ExecutorOutput(data={"sleptMs": p.duration_ms})
