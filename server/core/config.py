"""Environment-driven configuration with Pydantic v2."""

from typing import List, Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings driven entirely by environment variables."""

    # Server Configuration
    host: str = Field(default="0.0.0.0", env="HOST")
    port: int = Field(default=3000, env="PORT", ge=1, le=65535)
    debug: bool = Field(default=False, env="DEBUG")
    cors_origins: List[str] = Field(default=["*"], env="CORS_ORIGINS")
    public_dir: Optional[str] = Field(default=None, env="PUBLIC_DIR")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="console", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    # Android emulator (gRPC controller + adb shell)
    grpc_host: str = Field(default="localhost", env="GRPC_HOST")
    grpc_port: int = Field(default=8554, env="GRPC_PORT", ge=1, le=65535)
    emulator_proto_path: str = Field(
        default=".android-sdk/emulator/lib/emulator_controller.proto",
        env="EMULATOR_PROTO_PATH"
    )
    adb_path: str = Field(default=".android-sdk/platform-tools/adb", env="ADB_PATH")
    emulator_start_command: Optional[str] = Field(default=None, env="EMULATOR_START_COMMAND")
    emulator_stop_command: Optional[str] = Field(default=None, env="EMULATOR_STOP_COMMAND")
    emulator_status_command: Optional[str] = Field(default=None, env="EMULATOR_STATUS_COMMAND")

    # Linux desktop container (noVNC + docker exec shell)
    linux_container: str = Field(default="linux-desktop", env="LINUX_CONTAINER")
    linux_display: str = Field(default=":1", env="LINUX_DISPLAY")
    novnc_port: int = Field(default=7900, env="NOVNC_PORT", ge=1, le=65535)
    linux_start_command: Optional[str] = Field(default=None, env="LINUX_START_COMMAND")
    linux_stop_command: Optional[str] = Field(default=None, env="LINUX_STOP_COMMAND")
    linux_status_command: Optional[str] = Field(default=None, env="LINUX_STATUS_COMMAND")

    # Device defaults (used when dimension discovery fails)
    default_device_width: int = Field(default=1080, env="DEFAULT_DEVICE_WIDTH", ge=1)
    default_device_height: int = Field(default=2400, env="DEFAULT_DEVICE_HEIGHT", ge=1)

    # Frame streaming
    stream_max_width: int = Field(default=540, env="STREAM_MAX_WIDTH", ge=1)
    min_frame_interval: float = Field(default=0.016, env="MIN_FRAME_INTERVAL", ge=0.0)

    # Transport reconnection
    reconnect_initial_delay: float = Field(default=1.0, env="RECONNECT_INITIAL_DELAY", gt=0.0)
    reconnect_max_delay: float = Field(default=10.0, env="RECONNECT_MAX_DELAY", gt=0.0)

    # Gesture synthesis
    scroll_idle_timeout: float = Field(default=0.15, env="SCROLL_IDLE_TIMEOUT", gt=0.0)
    scroll_scale_factor: float = Field(default=1.0, env="SCROLL_SCALE_FACTOR", gt=0.0)
    pinch_idle_timeout: float = Field(default=0.15, env="PINCH_IDLE_TIMEOUT", gt=0.0)
    pinch_initial_spread: int = Field(default=100, env="PINCH_INITIAL_SPREAD", ge=1)
    pinch_step: int = Field(default=30, env="PINCH_STEP", ge=1)
    pinch_min_spread: int = Field(default=20, env="PINCH_MIN_SPREAD", ge=0)

    # Lifecycle
    lifecycle_poll_interval: float = Field(default=1.0, env="LIFECYCLE_POLL_INTERVAL", gt=0.0)
    lifecycle_start_timeout: float = Field(default=180.0, env="LIFECYCLE_START_TIMEOUT", gt=0.0)

    @field_validator("reconnect_max_delay")
    @classmethod
    def validate_reconnect_ceiling(cls, v, info):
        """Backoff ceiling can never be below the floor."""
        floor = info.data.get("reconnect_initial_delay")
        if floor is not None and v < floor:
            raise ValueError("reconnect_max_delay must be >= reconnect_initial_delay")
        return v

    @property
    def grpc_target(self) -> str:
        return f"{self.grpc_host}:{self.grpc_port}"

    @property
    def public_path(self) -> Optional[Path]:
        """Static client directory, if configured and present."""
        if not self.public_dir:
            return None
        path = Path(self.public_dir)
        return path if path.is_dir() else None

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "env_parse_none_str": "none",
    }
