import os
from typing import Any, Literal

from loguru import logger
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class SecretsSettingsSource(PydanticBaseSettingsSource):
    """
    Custom Pydantic Settings Source that resolves secrets from well-known environment variables.
    """

    # Config Field -> Environment Variable
    mapping = {
        "github_token": "GITHUB_TOKEN",
    }

    def get_field_value(self, field: Any, field_name: str) -> tuple[Any, str, bool]:
        # Unused since __call__ returns the full dict, but required by the ABC.
        return None, field_name, False  # pragma: no cover

    def __call__(self) -> dict[str, Any]:
        secrets: dict[str, Any] = {}
        for field, key in self.mapping.items():
            val = os.getenv(key) or os.getenv(f"REPO_PREVIEW_{key}")
            if val:
                secrets[field] = val
            else:
                logger.debug(f"Secret {key} not found in environment.")
        return secrets


class PreviewConfig(BaseSettings):
    """
    Configuration for fetching, materializing and running a repository preview.
    """

    runtime: Literal["local"] = "local"

    # Remote repository
    github_api_url: str = "https://api.github.com"
    github_token: str | None = None
    request_timeout: float = 30.0
    fetch_concurrency: int = 4
    max_tree_depth: int = 32
    max_file_size: int = 1_000_000

    # Mounting
    mount_concurrency: int = 8

    # Processes
    install_command: list[str] = ["npm", "install"]
    dev_server_command: list[str] = ["npx", "next", "dev", "--hostname", "{host}", "--port", "{port}"]
    dev_server_host: str = "0.0.0.0"
    dev_server_port: int = 3000
    shell_command: list[str] = ["sh"]
    terminal_cols: int = 80
    terminal_rows: int = 24

    # Preview binding
    preview_scheme: str = "https"
    server_poll_interval: float = 0.5

    cache_enabled: bool = True

    log_level: str = "INFO"
    log_dir: str = "logs"

    model_config = SettingsConfigDict(
        env_prefix="REPO_PREVIEW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def resolved_dev_server_command(self) -> list[str]:
        """Dev server argv with the host and port placeholders filled in."""
        return [part.format(host=self.dev_server_host, port=self.dev_server_port) for part in self.dev_server_command]

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            SecretsSettingsSource(settings_cls),
            file_secret_settings,
        )
