from repo_preview.config import PreviewConfig
from repo_preview.runtime import SandboxRuntime
from repo_preview.runtimes.local import LocalRuntime


class SandboxFactory:
    """
    Factory to create SandboxRuntime instances based on configuration.
    """

    @staticmethod
    def get_runtime(config: PreviewConfig) -> SandboxRuntime:
        """
        Returns a fresh, un-booted instance of the configured SandboxRuntime.
        """
        if config.runtime == "local":
            return LocalRuntime(config=config)
        else:
            # Unreachable through Pydantic validation.
            raise ValueError(f"Unknown runtime: {config.runtime}")  # pragma: no cover
