from abc import ABC, abstractmethod
from typing import Any

import httpx

from shared.errors import BackendError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class ClientInterface(ABC):
    """Base of the HTTP backends the core depends on.

    Settings of a backend live under ``<TYPE>_<ENGINE>_<KEY>``, e.g.
    EMBED_OLLAMA_BASE_URL. They are validated on construction; the connection
    itself is only opened by boot().
    """

    _GETTERS = {
        "string": "get_string_val",
        "number": "get_number_val",
        "bool": "get_bool_val",
        "list": "get_list_val",
    }

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.timeout = float(helper_config.get_number_val(f"{self.get_client_type().upper()}_TIMEOUT", default=30.0))
        self._client: httpx.AsyncClient | None = None

        for setting in self._get_required_config():
            self.get_config_val(setting.env_key, default=setting.default, val_type=setting.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_client_type(self) -> str:
        """
        Returns the lowercase client type, e.g. "embed"
        """
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        pass

    def get_engine_name(self) -> str:
        """
        Returns the lowercase engine name, e.g. "ollama"
        """
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        pass

    def is_booted(self) -> bool:
        return self._client is not None

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """
        Returns the settings this backend reads, with their types and defaults.
        A setting without default must be present in the environment.
        """
        pass

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """Read one backend setting.

        Args:
            raw_key (str): Key without prefix, e.g. "BASE_URL".
            default (Any): Fallback if the variable is unset.
            val_type (str): "string", "number", "bool" or "list".

        Raises:
            ValueError: If the type is unknown or a required value is missing.
        """
        getter = self._GETTERS.get(val_type)
        if getter is None:
            raise ValueError(f"Unsupported config value type '{val_type}' for {self.get_client_type()} client setting '{raw_key}'.")
        key = f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"
        return getattr(self._helper_config, getter)(key, default=default)

    ################ CONNECTION ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        """
        Returns the root URL of the backend, e.g. "http://localhost:11434"
        """
        pass

    @abstractmethod
    def _get_auth_header(self) -> dict:
        """
        Returns headers sent with every request. Empty if the backend needs no auth.
        """
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        pass

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Open the connection pool.

        Args:
            transport (httpx.AsyncBaseTransport | None): Transport override, e.g. httpx.MockTransport in tests.
        """
        self._client = httpx.AsyncClient(
            base_url=self._get_base_url().rstrip("/"),
            headers=self._get_auth_header(),
            timeout=self.timeout,
            transport=transport,
        )
        self.logging.debug("Booted %s client for %s", self.get_engine_name(), self._get_base_url())

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        """
        Returns the raw answer of the backend's health endpoint. Transport errors propagate.
        """
        return await self.do_request("GET", self._get_endpoint_healthcheck())

    async def do_request(self, method: str, endpoint: str = "", json: dict | None = None, raise_on_error: bool = False) -> httpx.Response:
        """Send one request relative to the base URL.

        Args:
            method (str): HTTP method.
            endpoint (str): Path below the base URL.
            json (dict | None): JSON body.
            raise_on_error (bool): Turn a non-2xx answer into a BackendError.

        Returns:
            httpx.Response: The raw response.

        Raises:
            RuntimeError: If boot() has not been called.
            BackendError: If raise_on_error is set and the backend answers with a non-2xx status.
        """
        if self._client is None:
            raise RuntimeError(f"{self.get_engine_name()} client is not connected, call boot() first")

        path = "/" + endpoint.strip().lstrip("/") if endpoint.strip() else ""
        response = await self._client.request(method, path, json=json)
        if raise_on_error and not response.is_success:
            self.logging.error("%s %s%s answered %d: %s", method, self._get_base_url(), path, response.status_code, response.text[:200])
            raise BackendError(f"{self.get_engine_name()} request {method} {path or '/'} failed with status {response.status_code}")
        return response
