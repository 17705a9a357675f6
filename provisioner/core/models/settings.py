"""
Settings model — what ``provisioner.yml`` configures.

Example::

    components_dir: components
    state_dir: .state
    concurrency: 2
    default_timeout: 600
    default_retry:
      max_retries: 2
      backoff: exponential
      base_delay: 5
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from provisioner.core.reliability.retry import RetryPolicy


class Settings(BaseModel):
    """Provisioner settings. Relative paths resolve against ``root``."""

    model_config = ConfigDict(extra="forbid")

    root: Path = Field(default_factory=Path.cwd, exclude=True)
    components_dir: str = "components"
    state_dir: str = ".state"
    concurrency: int = Field(default=1, ge=1)
    default_timeout: float | None = Field(default=None, gt=0)
    default_retry: RetryPolicy | None = None

    @property
    def components_path(self) -> Path:
        return (self.root / self.components_dir).resolve()

    @property
    def state_path(self) -> Path:
        return (self.root / self.state_dir).resolve()

    def action_defaults(self) -> dict:
        """Timeout/retry applied to actions that do not set their own."""
        defaults: dict = {}
        if self.default_timeout is not None:
            defaults["timeout"] = self.default_timeout
        if self.default_retry is not None:
            defaults["retry"] = self.default_retry.model_dump()
        return defaults
