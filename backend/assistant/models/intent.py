"""Intent models - coarse classification of an incoming chat message."""

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class IntentKind(str, Enum):
    """Primary intent of a message, in precedence order."""

    explicit_file = "explicit_file"
    implicit_file = "implicit_file"
    list_files = "list_files"
    assignment_hint = "assignment_hint"
    none = "none"


class MessageIntent(BaseModel):
    """Result of intent detection.

    `assignment_hint` is advisory and may be set alongside any primary kind;
    the model decides whether to emit a command.
    """

    kind: IntentKind = IntentKind.none
    file_name: str | None = Field(None, description="Referenced document name, if any")
    assignment_hint: bool = False

    @model_validator(mode="after")
    def validate_file_name(self) -> "MessageIntent":
        """File intents must carry a name; other intents must not."""
        is_file = self.kind in (IntentKind.explicit_file, IntentKind.implicit_file)
        if is_file and not self.file_name:
            raise ValueError("file intents require file_name")
        if not is_file and self.file_name is not None:
            raise ValueError("file_name is only valid for file intents")
        return self

    @property
    def references_file(self) -> bool:
        return self.kind in (IntentKind.explicit_file, IntentKind.implicit_file)
