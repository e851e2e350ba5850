"""Environment-backed settings for the localrag core."""

import logging
import os

from shared.helper.constants import DATABASE_DIR_NAME

_TRUE_VALUES = ("true", "1", "yes", "on")


class HelperConfig:
    """Reads every setting from environment variables.

    Keys are case-insensitive. An empty variable counts as unset. A getter
    called without default raises ValueError for an unset key.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    def _lookup(self, key: str) -> tuple[str, str | None]:
        key = key.upper()
        raw = os.getenv(key)
        return key, raw.strip() if raw and raw.strip() else None

    @staticmethod
    def _missing(key: str) -> ValueError:
        return ValueError(f"Environment variable '{key}' is not set.")

    ##########################################
    ############### PRIMITIVES ###############
    ##########################################

    def get_string_val(self, key: str, default: str | None = None) -> str:
        key, raw = self._lookup(key)
        if raw is not None:
            return raw
        if default is None:
            raise self._missing(key)
        return default

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read an int (no dot) or float (with dot).

        Raises:
            ValueError: If unset without default, or not a number.
        """
        key, raw = self._lookup(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key}' is not a valid number: '{raw}'.")

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        key, raw = self._lookup(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        return raw.lower() in _TRUE_VALUES

    def get_list_val(self, key: str, default: list | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a list written as "[elem1,elem2,...]".

        Blank elements are dropped, the rest is stripped and cast to element_type.

        Raises:
            ValueError: If unset without default, not bracketed, or an element cannot be cast.
        """
        key, raw = self._lookup(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return list(default)
        if not (raw.startswith("[") and raw.endswith("]")):
            raise ValueError(f"Environment variable '{key}' must look like '[elem1{separator}elem2{separator}...]'. Got: '{raw}'")
        elements = [part.strip() for part in raw[1:-1].split(separator) if part.strip()]
        try:
            return [element_type(element) for element in elements]
        except ValueError as e:
            raise ValueError(f"Environment variable '{key}' holds an element that is not a {element_type.__name__}: {e}")

    ##########################################
    ################# PATHS ##################
    ##########################################

    def get_root_dir(self) -> str:
        """
        Returns ROOT_DIR as absolute path, the working directory if unset.
        Logs and relative storage paths live below it.
        """
        return os.path.abspath(self.get_string_val("ROOT_DIR", default=os.getcwd()))

    def get_path_val(self, key: str, default: str | None = None) -> str:
        """
        Returns an absolute path. Relative values resolve against the root dir.
        """
        value = os.path.expanduser(self.get_string_val(key, default=default))
        return os.path.normpath(value if os.path.isabs(value) else os.path.join(self.get_root_dir(), value))

    def get_database_dir(self) -> str:
        """
        Returns the local storage root: DATABASE_DIR, else <root dir>/database.
        """
        return self.get_path_val("DATABASE_DIR", default=DATABASE_DIR_NAME)

    def get_logger(self) -> logging.Logger:
        return self._logger
