from pydantic import BaseModel


class EnvConfig(BaseModel):
    """
    Represents a single configuration parameter required by a client.

    Attributes:
        env_key (str): The raw key of the setting. The client prefixes it with its type and engine, e.g. "BASE_URL" becomes "EMBED_OLLAMA_BASE_URL".
        val_type (str): The expected type of the value. Supported types are "string", "number", "bool", and "list".
        default (str | int | float | bool | list | None): An optional default value. If None, the variable is required and an error is raised when it is missing.
    """

    env_key: str
    val_type: str
    default: str | int | float | bool | list | None = None
