"""
Managers for handling environment variables and .env file resolution.
"""
import logging
import os
from typing import Dict, List, Optional, Tuple

from dotenv import dotenv_values

from ..exceptions import ValidationError

logger = logging.getLogger(__name__)


class EnvironmentManager:
    """
    Builds the environment of a container from env files and explicit entries.
    """

    def __init__(self, base_dir: str = "."):
        """
        Initializes the environment manager.

        :param base_dir: The base directory for resolving relative paths to .env files.
        """
        self.base_dir = base_dir

    def resolve_path(self, path: str) -> str:
        return os.path.normpath(os.path.join(self.base_dir, os.path.expanduser(path)))

    def load_env_file(self, path: str) -> Dict[str, str]:
        """
        Reads one env file. Keys without a value are dropped.

        :raises ValidationError: If the file does not exist.
        """
        file_path = self.resolve_path(path)
        if not os.path.isfile(file_path):
            raise ValidationError(f"Env file not found: {file_path}")
        values = dotenv_values(file_path, interpolate=False)
        return {k: v for k, v in values.items() if v is not None}

    def get_merged_environment(self, explicit_env: List[Tuple[str, str]],
                               env_files: Optional[List[str]] = None) -> Dict[str, str]:
        """
        Merges env files (in order) and then explicit entries; later values win.
        The process environment is not inherited; containers get only what is declared.

        :param explicit_env: Ordered KEY, VALUE pairs; duplicates allowed.
        :param env_files: Paths to .env files, relative to the base directory.
        :return: A dictionary containing the merged environment variables.
        """
        merged_env: Dict[str, str] = {}
        for env_file in env_files or []:
            merged_env.update(self.load_env_file(env_file))
        for key, value in explicit_env:
            merged_env[key] = value
        return merged_env

    @staticmethod
    def to_engine_list(env: Dict[str, str]) -> List[str]:
        return [f"{k}={v}" for k, v in env.items()]
