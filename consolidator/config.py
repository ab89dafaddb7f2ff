# consolidator/config.py
from pathlib import Path
from typing import Optional, Tuple

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_PATH = PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    # adaptive window / MOHD detector
    epsilon: float = Field(0.2, ge=0.0)
    base_window: int = Field(5, ge=1)
    theta: float = Field(0.1, ge=0.0)
    gamma_cpu: float = Field(0.9, gt=0.0, le=1.0)
    mem_threshold_frac: float = Field(0.9, gt=0.0, le=1.0)

    # additive term of the dynamic window equation
    selection_gamma: float = 1.0
    cycle_gamma: float = 1.0

    # placement bands
    upper_bound: float = Field(0.90, gt=0.0, le=1.0)
    lower_band: float = Field(0.80, ge=0.0, le=1.0)
    memory_bound: float = Field(0.95, gt=0.0)
    underload_threshold: float = Field(0.30, gt=0.0, le=1.0)

    # fitness weights, must sum to 1
    weight_delta_u: float = Field(0.30, ge=0.0)
    weight_cycle: float = Field(0.15, ge=0.0)
    weight_per: float = Field(0.20, ge=0.0)
    weight_mem: float = Field(0.20, ge=0.0)
    weight_sla: float = Field(0.15, ge=0.0)

    # seed for the global placement draw; unset means nondeterministic
    seed: Optional[int] = None

    # service
    rebalance_interval: int = Field(300, ge=1)  # seconds
    controller_base_url: str = "http://controller:8000"
    controller_token: Optional[str] = None
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def weights(self) -> Tuple[float, float, float, float, float]:
        return (self.weight_delta_u, self.weight_cycle, self.weight_per,
                self.weight_mem, self.weight_sla)


def load_settings(**overrides) -> Settings:
    """
    Build settings from the environment (and .env), applying keyword overrides.
    Invalid values surface as ConfigurationError so callers only handle one type.
    """
    try:
        s = Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"invalid settings: {e}") from e
    if s.lower_band > s.upper_bound:
        raise ConfigurationError(
            f"lower_band {s.lower_band} must not exceed upper_bound {s.upper_bound}")
    total = sum(s.weights)
    if abs(total - 1.0) > 1e-9:
        raise ConfigurationError(f"fitness weights must sum to 1, got {total:.6f}")
    return s
