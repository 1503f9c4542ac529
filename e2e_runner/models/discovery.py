"""
Discovery Models

Describe spec files found under the tests directory and their selectable
child tasks.
"""

from __future__ import annotations

from pydantic import Field

from e2e_runner.models.run_state import CamelModel

SELF_CHILD_ID = "__self"


class DiscoveredChild(CamelModel):
    id: str = Field(..., description="Child task id, unique within its spec")
    label: str = Field(..., description="Human readable label")
    required: bool = Field(False, description="Child cannot be deselected")


class DiscoveredTest(CamelModel):
    id: str = Field(..., description="Spec path relative to the project root")
    display_name: str = Field(..., description="Name shown in the dashboard")
    children: list[DiscoveredChild] = Field(default_factory=list)
