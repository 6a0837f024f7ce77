"""Application configuration."""
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from clipora.errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # App settings
    app_name: str = "Clipora"
    debug: bool = False

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8080

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/clipora.db"

    # Data directories
    data_dir: Path = Path("./data")
    scratch_dir: Path = Path("/tmp/clipora")  # Per-job scratch directories live here

    # Google Cloud
    gcp_project_id: Optional[str] = None
    gcp_region: str = "us-east1"

    # Object storage
    uploads_bucket: Optional[str] = None
    fallback_uploads_bucket: Optional[str] = None  # Legacy bucket searched by the ingest resolver
    processed_bucket: Optional[str] = None
    cdn_base_url: Optional[str] = None
    resolver_max_list_pages: int = 5
    resolver_list_page_size: int = 1000

    # Generative models
    selection_model: str = "gemini-2.5-pro"  # Multimodal clip selection / re-analysis
    assistant_model: str = "gemini-2.0-flash"  # Sound suggestions, edit guidance
    selection_temperature: float = 0.3
    selection_timeout_seconds: float = 120.0
    selection_max_attempts: int = 2

    # External long-running operations (speech, shot detection)
    external_call_timeout_seconds: float = 600.0
    speech_language_code: str = "en-US"

    # Clip selection rules
    min_clip_words: int = 80
    min_clip_seconds: float = 10.0
    min_target_clips: int = 3
    max_target_clips: int = 15
    max_prompt_shots: int = 200  # Cap on shot timestamps sent to the model

    # Silence detection / snapping
    silence_noise_db: float = -30.0
    silence_min_duration: float = 0.3
    snap_window_seconds: float = 2.0

    # FFmpeg settings
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    stderr_tail_chars: int = 2000

    # Cut settings
    cut_video_codec: str = "libx264"
    cut_video_preset: str = "ultrafast"  # Interactive pipeline, speed over size
    cut_video_crf: int = 23
    cut_audio_codec: str = "aac"

    # Sound generation (ElevenLabs)
    eleven_labs_api_key: Optional[str] = None
    eleven_labs_base_url: str = "https://api.elevenlabs.io"
    eleven_labs_timeout_seconds: float = 120.0
    sound_prompt_influence: float = 0.3
    max_sfx_duration: float = 5.0
    min_sfx_duration: float = 0.5
    max_music_duration: float = 22.0
    default_music_volume: float = 0.5
    silent_base_seconds: int = 60  # Synthesized base track length for audio-less clips
    download_timeout_seconds: float = 120.0

    # Frontend
    frontend_url: str = "http://localhost:5173"

    def require(self, *names: str) -> None:
        """Fail fast when any of the named settings is missing."""
        missing = [name for name in names if not getattr(self, name, None)]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )

    def public_url(self, bucket: str, path: str) -> str:
        """Public URL for an object in processed storage."""
        if self.cdn_base_url:
            return f"{self.cdn_base_url.rstrip('/')}/{path}"
        return f"https://storage.googleapis.com/{bucket}/{path}"


settings = Settings()

# Ensure directories exist
settings.data_dir.mkdir(parents=True, exist_ok=True)
settings.scratch_dir.mkdir(parents=True, exist_ok=True)
