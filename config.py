# ABOUTME: Environment-driven settings for the dialogue media service
# ABOUTME: Backend credentials, storage/db locations, and ffmpeg render constants
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger("lingodino-media.config")


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value


@dataclass(frozen=True)
class RenderSettings:
    """Codec parameters shared by every clip so they concatenate with stream copy."""
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    video_codec: str = "libx264"
    video_preset: str = "faster"
    pixel_format: str = "yuv420p"
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"
    audio_sample_rate: int = 44100
    framerate: int = 30
    fade_secs: float = 0.5
    music_volume: float = 0.05
    title_font_size: int = 64
    font_file: str | None = None


@dataclass(frozen=True)
class Settings:
    elevenlabs_api_key: str | None = None
    elevenlabs_base_url: str = "https://api.elevenlabs.io"
    dialogue_model: str = "eleven_v3"
    output_format: str = "mp3_44100_128"
    db_path: Path = Path("data/lingodino.db")
    storage_root: Path = Path("data/storage")
    storage_secret: str = "dev-secret"
    public_base_url: str = "http://127.0.0.1:8767"
    production_public_url: str | None = None
    render: RenderSettings = field(default_factory=RenderSettings)


def load_render_settings() -> RenderSettings:
    defaults = RenderSettings()
    return RenderSettings(
        ffmpeg_binary=_env("FFMPEG_BINARY", defaults.ffmpeg_binary),
        ffprobe_binary=_env("FFPROBE_BINARY", defaults.ffprobe_binary),
        video_codec=_env("LINGODINO_VIDEO_CODEC", defaults.video_codec),
        video_preset=_env("LINGODINO_VIDEO_PRESET", defaults.video_preset),
        pixel_format=_env("LINGODINO_PIXEL_FORMAT", defaults.pixel_format),
        audio_codec=_env("LINGODINO_AUDIO_CODEC", defaults.audio_codec),
        audio_bitrate=_env("LINGODINO_AUDIO_BITRATE", defaults.audio_bitrate),
        audio_sample_rate=int(_env("LINGODINO_AUDIO_SAMPLE_RATE", str(defaults.audio_sample_rate))),
        framerate=int(_env("LINGODINO_FRAMERATE", str(defaults.framerate))),
        music_volume=float(_env("LINGODINO_MUSIC_VOLUME", str(defaults.music_volume))),
        font_file=_env("LINGODINO_FONT_FILE"),
    )


def load_settings() -> Settings:
    """Read settings from the environment."""
    api_key = _env("ELEVENLABS_API_KEY")
    if not api_key:
        logger.warning("ELEVENLABS_API_KEY is not set; speech synthesis will not work")

    defaults = Settings()
    return Settings(
        elevenlabs_api_key=api_key,
        elevenlabs_base_url=_env("ELEVENLABS_BASE_URL", defaults.elevenlabs_base_url),
        dialogue_model=_env("ELEVENLABS_DIALOGUE_MODEL", defaults.dialogue_model),
        output_format=_env("ELEVENLABS_OUTPUT_FORMAT", defaults.output_format),
        db_path=Path(_env("LINGODINO_DB_PATH", str(defaults.db_path))),
        storage_root=Path(_env("LINGODINO_STORAGE_ROOT", str(defaults.storage_root))),
        storage_secret=_env("LINGODINO_STORAGE_SECRET", defaults.storage_secret),
        public_base_url=_env("LINGODINO_PUBLIC_BASE_URL", defaults.public_base_url),
        production_public_url=_env("LINGODINO_PRODUCTION_PUBLIC_URL"),
        render=load_render_settings(),
    )
