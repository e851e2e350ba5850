from abc import abstractmethod

from shared.clients.ClientInterface import ClientInterface
from shared.helper.HelperConfig import HelperConfig


class EmbedClientInterface(ClientInterface):
    """Embedding runtime boundary.

    Holds the *active* embedding model. Topics remember the model their vectors
    were built with; the retrieval layer switches the active model back to it
    through do_switch_model() before querying.
    """

    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        prefix = self.get_client_type().upper()
        self.embed_model = helper_config.get_string_val(f"{prefix}_MODEL", default="nomic-embed-text")
        self.embed_batch_size = max(1, int(helper_config.get_number_val(f"{prefix}_BATCH_SIZE", default=32)))

    def _get_client_type(self) -> str:
        return "embed"

    def get_current_model(self) -> str:
        return self.embed_model

    ##########################################
    ############### BACKEND ##################
    ##########################################

    @abstractmethod
    def _get_endpoint_models(self) -> str:
        """
        Returns the path listing the installed models, e.g. "/api/tags"
        """
        pass

    @abstractmethod
    def _get_endpoint_embedding(self) -> str:
        """
        Returns the path of the embedding call, e.g. "/api/embed"
        """
        pass

    @abstractmethod
    def _build_embed_body(self, texts: list[str], model: str) -> dict:
        pass

    @abstractmethod
    def _parse_model_names(self, body: dict) -> list[str]:
        pass

    @abstractmethod
    def _parse_embeddings(self, body: dict, expected: int) -> list[list[float]]:
        """Pull the vectors out of an embedding answer.

        Raises:
            ValueError: If the answer holds no vectors or not one per input text.
        """
        pass

    ##########################################
    ################ MODELS ##################
    ##########################################

    @staticmethod
    def _same_model(left: str, right: str) -> bool:
        # "nomic-embed-text" and "nomic-embed-text:latest" name the same model
        def canonical(name: str) -> str:
            name = name.strip().lower()
            return name[: -len(":latest")] if name.endswith(":latest") else name

        return canonical(left) == canonical(right)

    async def do_list_models(self) -> list[str]:
        """
        Returns the names of all models installed on the backend.
        """
        response = await self.do_request("GET", self._get_endpoint_models(), raise_on_error=True)
        return self._parse_model_names(response.json())

    async def is_model_available(self, model_name: str) -> bool:
        """
        Returns True if the backend lists the model. An unreachable backend
        counts as "not available".
        """
        if not model_name:
            return False
        try:
            installed = await self.do_list_models()
        except Exception as e:
            self.logging.warning("Could not list %s models: %s", self.get_engine_name(), e)
            return False
        return any(self._same_model(model_name, name) for name in installed)

    async def do_switch_model(self, model_name: str) -> None:
        """Make another installed model the active one.

        Raises:
            ValueError: If the backend does not provide the model.
        """
        if model_name == self.embed_model:
            return
        if not await self.is_model_available(model_name):
            raise ValueError(f"Embedding model '{model_name}' is not installed on the {self.get_engine_name()} backend")
        self.logging.info("Active embedding model: '%s' -> '%s'", self.embed_model, model_name)
        self.embed_model = model_name

    ##########################################
    ############### EMBEDDING ################
    ##########################################

    async def do_embed(self, texts: list[str] | str, model: str | None = None) -> list[list[float]]:
        """Embed texts with the given model, the active one if none is given.

        Inputs are sent in batches of EMBED_BATCH_SIZE. Passing the model pins it
        for the whole call, a concurrent do_switch_model() does not affect it.

        Args:
            texts (list[str] | str): One or more texts.
            model (str | None): Model name, defaults to the active model.

        Returns:
            list[list[float]]: One vector per input, in input order.

        Raises:
            BackendError: If the backend rejects a batch.
            ValueError: If an answer does not carry one vector per text.
        """
        texts = [texts] if isinstance(texts, str) else list(texts)
        model = model or self.embed_model
        vectors: list[list[float]] = []
        for offset in range(0, len(texts), self.embed_batch_size):
            batch = texts[offset : offset + self.embed_batch_size]
            response = await self.do_request("POST", self._get_endpoint_embedding(), json=self._build_embed_body(batch, model), raise_on_error=True)
            vectors.extend(self._parse_embeddings(response.json(), expected=len(batch)))
        return vectors
