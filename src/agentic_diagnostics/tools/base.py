from typing import Any


class Tool:
    name: str
    description: str
    # JSON schema for the tool arguments, advertised to the model.
    parameters: dict[str, Any] = {"type": "object", "properties": {}}

    def execute(self, args: dict[str, Any]) -> Any:
        raise NotImplementedError("Tool must implement the execute method.")

    def schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
