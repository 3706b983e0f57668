from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="BGM_SERVICE_", env_file=".env", env_file_encoding="utf-8")

    app_name: str = "bgm-service"
    host: str = "0.0.0.0"
    port: int = 8100

    # Generative music provider
    kie_api_key: str = ""
    kie_base_url: str = "https://api.kie.ai/api/v1"
    kie_model: str = "V4_5PLUS"
    kie_callback_url: str = "https://lofi-bgm-not-exist-server.com/callback"
    kie_timeout: float = 30.0
    kie_max_attempts: int = Field(default=3, ge=1)
    kie_retry_base_delay: float = Field(default=1.0, ge=0.0)

    polling_max_attempts: int = Field(default=30, ge=1)
    polling_initial_interval: float = Field(default=5.0, ge=0.0)
    polling_max_interval: float = Field(default=30.0, ge=0.0)

    # Request planning
    minutes_per_clip: int = Field(default=3, ge=1)
    clips_per_request: int = Field(default=2, ge=1)
    buffer_requests: int = Field(default=5, ge=0)
    max_clips_per_content: int = Field(default=100, ge=1)
    default_bulk_count: int = Field(default=5, ge=1)

    # Local media
    media_root: Path = Path("media")
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    probe_timeout: float = 5.0
    fallback_duration_seconds: int = 180

    video_resolution: str = "1920x1080"
    video_fps: int = 30
    video_crf: int = 18
    video_preset: str = "slow"
    video_audio_bitrate: str = "192k"
    video_audio_sample_rate: int = 48000

    thumbnail_text: str = "Lofi BGM"

    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic: str = "bgm_jobs"
    kafka_group_id: str = "bgm-service-consumer"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
