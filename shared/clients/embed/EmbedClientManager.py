from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig


class EmbedClientManager:
    """
    Builds the embedding client selected by EMBED_ENGINE (default "ollama").
    The implementation lives in shared.clients.embed.<engine>.EmbedClient<Engine>.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._create_client(self._configured_engine())

    def _configured_engine(self) -> str:
        engine = self.helper_config.get_string_val("EMBED_ENGINE", default="ollama").strip()
        if not engine:
            raise ValueError("EMBED_ENGINE is empty, no embedding backend configured.")
        return engine.lower()

    def _create_client(self, engine: str) -> EmbedClientInterface:
        """Import and instantiate the client class of an engine.

        Raises:
            ValueError: If the engine has no client implementation.
        """
        class_name = f"EmbedClient{engine.capitalize()}"
        try:
            module = __import__(f"shared.clients.embed.{engine}.{class_name}", fromlist=[class_name])
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported embedding engine '{engine}': {e}")
        self.logging.debug("Using embedding engine '%s'", engine)
        return client_class(helper_config=self.helper_config)

    def get_client(self) -> EmbedClientInterface:
        return self.client
