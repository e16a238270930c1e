"""Export JSON schemas for the chat API and command payloads."""

import json
from pathlib import Path

from backend.assistant.models import ChatRequest, ChatResponse, TaskAssignmentCommand


def main() -> None:
    """Export schemas to docs/schemas/."""
    schemas_dir = Path("docs/schemas")
    schemas_dir.mkdir(parents=True, exist_ok=True)

    for model in (ChatRequest, ChatResponse):
        path = schemas_dir / f"{model.__name__}.schema.json"
        with open(path, "w") as f:
            json.dump(model.model_json_schema(), f, indent=2)
        print(f"Exported {model.__name__} schema to {path}")

    # Commands are emitted by the model, so export the alias (wire) form
    command_path = schemas_dir / "TaskAssignmentCommand.schema.json"
    with open(command_path, "w") as f:
        json.dump(TaskAssignmentCommand.model_json_schema(by_alias=True), f, indent=2)
    print(f"Exported TaskAssignmentCommand schema to {command_path}")


if __name__ == "__main__":
    main()
