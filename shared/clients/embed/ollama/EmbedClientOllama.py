from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class EmbedClientOllama(EmbedClientInterface):
    """Ollama embedding runtime (``/api/embed``, ``/api/tags``)."""

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="http://localhost:11434")
        self._api_key = self.get_config_val("API_KEY", default="")

    def _get_engine_name(self) -> str:
        return "Ollama"

    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="http://localhost:11434"),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
        ]

    def _get_base_url(self) -> str:
        return self._base_url

    def _get_auth_header(self) -> dict:
        # plain Ollama has no auth, reverse proxies in front of it usually expect a bearer token
        return {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    def _get_endpoint_healthcheck(self) -> str:
        # "/" answers "Ollama is running"
        return ""

    def _get_endpoint_models(self) -> str:
        return "/api/tags"

    def _get_endpoint_embedding(self) -> str:
        return "/api/embed"

    def _build_embed_body(self, texts: list[str], model: str) -> dict:
        return {"model": model, "input": texts}

    def _parse_model_names(self, body: dict) -> list[str]:
        return [entry.get("name") or entry.get("model") for entry in body.get("models", []) if entry.get("name") or entry.get("model")]

    def _parse_embeddings(self, body: dict, expected: int) -> list[list[float]]:
        embeddings = body.get("embeddings") or []
        if len(embeddings) != expected or any(not vector for vector in embeddings):
            raise ValueError(f"Ollama returned {len(embeddings)} embedding(s) for {expected} input(s) (model '{body.get('model', self.embed_model)}')")
        return embeddings
