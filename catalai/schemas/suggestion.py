"""Matrix-change suggestion schemas.

A Suggestion proposes exactly one change to the decision matrix, carries
the feedback sessions that motivated it, and moves once from pending to
approved or rejected.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from catalai.schemas.matrix import Attribute, Rule


class SuggestionStatus(StrEnum):
    """Review lifecycle of a suggestion."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AddRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["add_rule"] = "add_rule"
    rule: Rule


class ModifyRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["modify_rule"] = "modify_rule"
    rule_id: str
    rule: Rule


class RemoveRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["remove_rule"] = "remove_rule"
    rule_id: str


class AddAttribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["add_attribute"] = "add_attribute"
    attribute: Attribute


class ModifyAttribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["modify_attribute"] = "modify_attribute"
    name: str
    attribute: Attribute


class RemoveAttribute(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["remove_attribute"] = "remove_attribute"
    name: str


ProposedChange = Annotated[
    Union[AddRule, ModifyRule, RemoveRule, AddAttribute, ModifyAttribute, RemoveAttribute],
    Field(discriminator="kind"),
]


class SuggestionEvidence(BaseModel):
    """Feedback sessions and pattern that motivated a suggestion."""

    model_config = ConfigDict(frozen=True)

    session_ids: tuple[str, ...] = Field(description="Supporting session ids")
    pattern_description: str = Field(description="Human-readable pattern summary")
    support: int = Field(ge=0, description="Number of supporting sessions")


class Suggestion(BaseModel):
    """A proposed matrix change awaiting human review."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique suggestion identifier (UUID v4)",
    )
    status: SuggestionStatus = Field(
        default=SuggestionStatus.PENDING, description="Review status",
    )
    proposed_change: ProposedChange = Field(description="The single proposed change")
    evidence: SuggestionEvidence = Field(description="Why the change is proposed")
    rationale: str = Field(default="", description="Explanation shown to the reviewer")
    base_version: int = Field(ge=0, description="Matrix version the change was computed against")
    review_notes: str | None = Field(default=None, description="Reviewer notes")
    reviewed_by: str | None = Field(default=None, description="Reviewer identity")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC), description="Creation time",
    )
    resolved_at: datetime | None = Field(default=None, description="Review time")

    def summary(self) -> str:
        """One-line description of the proposed change."""
        change = self.proposed_change
        if isinstance(change, AddRule):
            return f"add rule '{change.rule.name or change.rule.id}'"
        if isinstance(change, ModifyRule):
            return f"modify rule '{change.rule_id}'"
        if isinstance(change, RemoveRule):
            return f"remove rule '{change.rule_id}'"
        if isinstance(change, AddAttribute):
            return f"add attribute '{change.attribute.name}'"
        if isinstance(change, ModifyAttribute):
            return f"modify attribute '{change.name}'"
        return f"remove attribute '{change.name}'"
