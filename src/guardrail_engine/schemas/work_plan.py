"""Work plan content schema (version 1.0.0).

A work plan is the free-form planning area attached to an intent session:
goals, context, options with pros and cons, todos and notes. Every list keeps
its order because the author's ordering is meaningful. Content that looks like
it carries credentials is rejected.
"""

import re
from typing import Annotated, Literal

from pydantic import Field, StrictBool, StringConstraints, model_validator
from pydantic_core import PydanticCustomError

from guardrail_engine.core.hashing import content_hash
from guardrail_engine.schemas.common import StrictDocument, revalidate, trim_strings

WORK_PLAN_VERSION = "1.0.0"

SECRET_PATTERNS: tuple[str, ...] = (
    r"api[_-]?key",
    r"password",
    r"bearer",
    r"secret[_-]?key",
)
_SECRET_REGEXES = tuple(re.compile(pattern, re.IGNORECASE) for pattern in SECRET_PATTERNS)

Uuid = Annotated[
    str,
    StringConstraints(
        strict=True,
        pattern=r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$",
    ),
]
ItemText = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=5000)]
OptionTitle = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=200)]
Description = Annotated[str, StringConstraints(strict=True, max_length=5000)]
Point = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=500)]
LongText = Annotated[str, StringConstraints(strict=True, max_length=10000)]


class WorkPlanGoal(StrictDocument):
    id: Uuid
    text: ItemText
    priority: Literal["HIGH", "MEDIUM", "LOW"] | None = None
    completed: StrictBool = False


class WorkPlanOption(StrictDocument):
    id: Uuid
    title: OptionTitle
    description: Description = ""
    pros: list[Point] = Field(default_factory=list, max_length=50)
    cons: list[Point] = Field(default_factory=list, max_length=50)


class WorkPlanTodo(StrictDocument):
    id: Uuid
    text: ItemText
    completed: StrictBool = False
    assigned_goal_id: Uuid | None = None


class WorkPlanContent(StrictDocument):
    """Work plan content, version 1.0.0.

    Attributes:
        work_plan_version: Schema discriminator; defaults to ``1.0.0``.
        goals: Up to 50 ordered goals.
        context: Optional background text.
        options: Up to 50 ordered options under consideration.
        todos: Up to 100 ordered tasks.
        notes: Optional free text.
    """

    work_plan_version: Literal["1.0.0"] = WORK_PLAN_VERSION
    goals: list[WorkPlanGoal] = Field(default_factory=list, max_length=50)
    context: LongText | None = None
    options: list[WorkPlanOption] = Field(default_factory=list, max_length=50)
    todos: list[WorkPlanTodo] = Field(default_factory=list, max_length=100)
    notes: LongText | None = None

    @model_validator(mode="after")
    def _reject_secrets(self) -> "WorkPlanContent":
        matched = find_secret_patterns(self)
        if matched:
            raise PydanticCustomError(
                "secret_detected",
                "Content appears to contain secrets (matched: {patterns})",
                {"patterns": ", ".join(matched)},
            )
        return self


def find_secret_patterns(content: WorkPlanContent) -> list[str]:
    """Return the secret patterns matched anywhere in the content's text fields."""
    texts = [content.context or "", content.notes or ""]
    texts.extend(goal.text for goal in content.goals)
    for option in content.options:
        texts.extend([option.title, option.description, *option.pros, *option.cons])
    texts.extend(todo.text for todo in content.todos)
    joined = "\n".join(texts)
    return [pattern for pattern, regex in zip(SECRET_PATTERNS, _SECRET_REGEXES) if regex.search(joined)]


def normalize_work_plan(content: WorkPlanContent) -> WorkPlanContent:
    """Trim every text field. Order is preserved everywhere.

    Raises:
        ValidationError: If trimming leaves a required text empty.
    """
    data = content.to_document()
    for key in ("context", "notes"):
        if key in data:
            data[key] = data[key].strip()
    for goal in data["goals"]:
        goal["text"] = goal["text"].strip()
    for option in data["options"]:
        option["title"] = option["title"].strip()
        option["description"] = option["description"].strip()
        option["pros"] = trim_strings(option["pros"])
        option["cons"] = trim_strings(option["cons"])
    for todo in data["todos"]:
        todo["text"] = todo["text"].strip()
    return revalidate(WorkPlanContent, data)


def compute_work_plan_hash(content: WorkPlanContent) -> str:
    """Compute the content hash of a work plan (full SHA-256 hex)."""
    return content_hash(content.to_document())
