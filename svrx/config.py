"""Package manager configuration. All env vars defined here with defaults."""

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class SvrxConfig(BaseSettings):
    # ── Local cache ──
    dir: Path = Path.home() / ".svrx"          # SVRX_DIR, root of the plugin cache

    # ── Registry ──
    registry_url: str = "https://registry.npmjs.org"
    registry_timeout: float = 30.0             # seconds, per request

    # ── Logging ──
    log_level: str = "INFO"

    model_config = {"env_prefix": "SVRX_", "env_file": ".env", "extra": "ignore"}

    @field_validator("dir")
    @classmethod
    def expand_home(cls, v: Path) -> Path:
        return Path(v).expanduser()

    @property
    def plugins_dir(self) -> Path:
        return self.dir / "plugins"
