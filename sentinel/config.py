"""
Training subsystem configuration loaded from environment variables.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TrainingSettings(BaseSettings):
    """Runtime configuration for the on-device training system."""

    # Model shape
    feature_dim: int = Field(default=32, description="Length of feature vectors produced by the inference engine.")
    num_classes: int = Field(default=2, description="Number of categorical labels.")
    hidden_units: int = Field(default=32, description="Hidden width of the feed-forward classifier.")
    snn_output_neurons: int = Field(default=16, description="Output neurons of the spiking model.")

    # Queue / replay
    queue_capacity: int = Field(default=1000, description="Maximum queued training samples.")
    queue_retention_ratio: float = Field(default=0.8, description="Fraction kept when the queue overflows.")
    replay_capacity: int = Field(default=1000, description="Experience replay buffer capacity.")
    max_batch_samples: int = Field(default=100, description="Maximum queue samples consumed per session.")

    # Session gating
    min_hours_between_sessions: float = Field(default=6.0, description="Minimum hours between two sessions.")
    min_queue_samples: int = Field(default=20, description="Minimum queued samples before a session may start.")
    periodic_min_samples: int = Field(default=50, description="Queued samples required by the periodic trigger.")
    check_interval_seconds: float = Field(default=300.0, description="Periodic training-opportunity check interval.")
    resource_refresh_seconds: float = Field(default=30.0, description="Resource snapshot refresh interval.")

    # Anti-forgetting
    ewc_lambda: float = Field(default=0.1, description="Weight of the EWC penalty in the composite loss.")
    distillation_weight: float = Field(default=0.3, description="Weight of the distillation term.")
    distillation_temperature: float = Field(default=3.0, description="Softmax temperature for distillation.")

    # Spiking learner
    snn_time_steps: int = Field(default=25, description="Simulation steps per sample (1 ms each).")
    snn_lr_factor: float = Field(default=0.1, description="SNN learning rate as a fraction of the mode learning rate.")

    # Federation
    federation_enabled: bool = Field(default=False, description="Opt in to federated contributions.")
    federation_endpoint: Optional[str] = Field(default=None, description="Aggregator URL for contributions.")
    federation_protocol: str = Field(default="loopback", description="Transport protocol (loopback, http).")
    dp_epsilon: float = Field(default=1.0, description="Per-contribution privacy budget epsilon.")
    dp_delta: float = Field(default=1e-5, description="Per-contribution privacy failure probability delta.")
    dp_clip_norm: float = Field(default=1.0, description="L2 clip applied to parameter deltas before noising.")
    dp_total_epsilon: float = Field(default=10.0, description="Lifetime epsilon budget for this install.")
    device_class: Optional[str] = Field(default=None, description="Override for the reported device class.")

    # Persistence / misc
    state_dir: Optional[Path] = Field(default=None, description="Directory for checkpoints and history.")
    seed: Optional[int] = Field(default=None, description="Seed for reproducible runs.")
    log_level: str = Field(default="INFO", description="Log level for the sentinel logger.")

    model_config = SettingsConfigDict(
        env_prefix="SENTINEL_",
        extra="ignore",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
    )


@lru_cache
def get_settings() -> TrainingSettings:
    """Return cached settings instance."""

    return TrainingSettings()
