# ABOUTME: ffmpeg render stages for intro, main and outro clips plus stream-copy concatenation
# ABOUTME: Pillow normalizes stills; mutagen tags the finished MP4 with title and LRC lyrics
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from mutagen import MutagenError
from mutagen.mp4 import MP4
from PIL import Image, ImageOps, UnidentifiedImageError

from config import RenderSettings
from errors import StageError

logger = logging.getLogger("lingodino-media.render")


def _secs(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".")


def scale_crop(width: int, height: int) -> str:
    """Scale up to cover the frame, then center-crop. Never letterboxes."""
    return f"scale={width}:{height}:force_original_aspect_ratio=increase,crop={width}:{height},setsar=1"


class FFmpegRenderer:
    """Each stage takes input files and writes one output file, or raises StageError."""

    def __init__(self, settings: RenderSettings | None = None):
        self.settings = settings or RenderSettings()

    def _encode_args(self) -> list[str]:
        s = self.settings
        return [
            "-c:v", s.video_codec, "-preset", s.video_preset,
            "-pix_fmt", s.pixel_format, "-r", str(s.framerate),
            "-c:a", s.audio_codec, "-b:a", s.audio_bitrate,
            "-ac", "2", "-ar", str(s.audio_sample_rate),
            "-max_muxing_queue_size", "1024",
        ]

    def _still_input(self, image: Path, duration: float) -> list[str]:
        return ["-loop", "1", "-framerate", str(self.settings.framerate), "-t", _secs(duration),
                "-f", "image2", "-i", str(image)]

    async def _run(self, stage: str, cmd: list[str]) -> bytes:
        logger.info("[%s] Running: %s", stage, " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise StageError(stage, cmd, None, str(e)) from e
        stdout, stderr = await proc.communicate()
        stderr_text = stderr.decode(errors="replace")
        if proc.returncode != 0:
            logger.error("[%s] ffmpeg failed: %s", stage, stderr_text)
            raise StageError(stage, cmd, proc.returncode, stderr_text)
        logger.debug("[%s] ffmpeg: %s", stage, stderr_text)
        return stdout

    async def has_audio_stream(self, stage: str, path: Path) -> bool:
        """True if ffprobe finds at least one audio stream in `path`."""
        cmd = [self.settings.ffprobe_binary, "-v", "error", "-select_streams", "a:0",
               "-show_entries", "stream=codec_type", "-of", "default=noprint_wrappers=1:nokey=1",
               str(path)]
        return b"audio" in await self._run(stage, cmd)

    # --- command builders ---

    def intro_command(
        self,
        speech: Path,
        output: Path,
        duration: float,
        width: int,
        height: int,
        intro_image: Path | None = None,
        title_file: Path | None = None,
    ) -> list[str]:
        s = self.settings
        fade_start = _secs(max(0.0, duration - s.fade_secs))
        fade_out = f"fade=t=out:st={fade_start}:d={_secs(s.fade_secs)}"
        cmd = [s.ffmpeg_binary, "-y"]

        if intro_image is not None:
            cmd += self._still_input(intro_image, duration)
            video = (f"[0:v]trim=duration={_secs(duration)},setpts=PTS-STARTPTS,"
                     f"{scale_crop(width, height)},{fade_out}[v]")
        else:
            cmd += ["-f", "lavfi", "-t", _secs(duration),
                    "-i", f"color=c=white:s={width}x{height}:r={s.framerate}"]
            text_source = str(title_file).replace("\\", "/")
            drawtext = (f"drawtext=textfile='{text_source}':fontcolor=black:fontsize={s.title_font_size}:"
                        "x=(w-text_w)/2:y=(h-text_h)/2")
            if s.font_file:
                drawtext += f":fontfile='{s.font_file}'"
            video = f"[0:v]setsar=1,{drawtext},{fade_out}[v]"

        # Muted speech, looped so a short track never stalls the intro
        cmd += ["-stream_loop", "-1", "-i", str(speech)]
        audio = f"[1:a]volume=0,atrim=duration={_secs(duration)},asetpts=PTS-STARTPTS,aformat=channel_layouts=stereo[a]"

        cmd += ["-filter_complex", f"{video};{audio}", "-map", "[v]", "-map", "[a]"]
        cmd += self._encode_args()
        cmd += ["-t", _secs(duration), str(output)]
        return cmd

    def main_command(
        self,
        image: Path,
        speech: Path,
        output: Path,
        duration: float,
        width: int,
        height: int,
        music: Path | None = None,
    ) -> list[str]:
        s = self.settings
        cmd = [s.ffmpeg_binary, "-y"]
        cmd += self._still_input(image, duration)
        cmd += ["-i", str(speech)]
        filters = [
            f"[0:v]trim=duration={_secs(duration)},setpts=PTS-STARTPTS,{scale_crop(width, height)},"
            f"fade=t=in:st=0:d={_secs(s.fade_secs)}[v]"
        ]
        if music is not None:
            cmd += ["-i", str(music)]
            filters.append(f"[2:a]volume={s.music_volume}[music]")
            filters.append("[1:a][music]amix=inputs=2:duration=first,aformat=channel_layouts=stereo[a]")
        else:
            filters.append("[1:a]aformat=channel_layouts=stereo[a]")

        cmd += ["-filter_complex", ";".join(filters), "-map", "[v]", "-map", "[a]"]
        cmd += self._encode_args()
        cmd += ["-t", _secs(duration), str(output)]
        return cmd

    def outro_command(
        self,
        source: Path,
        output: Path,
        width: int,
        height: int,
        has_audio: bool = True,
    ) -> list[str]:
        s = self.settings
        cmd = [s.ffmpeg_binary, "-y", "-i", str(source)]
        if has_audio:
            cmd += ["-map", "0:v:0", "-map", "0:a:0"]
        else:
            # Silent stereo bed so the outro has the same stream layout as intro/main
            cmd += ["-f", "lavfi", "-i",
                    f"anullsrc=channel_layout=stereo:sample_rate={s.audio_sample_rate}",
                    "-map", "0:v:0", "-map", "1:a:0", "-shortest"]
        cmd += ["-vf", scale_crop(width, height), *self._encode_args(), str(output)]
        return cmd

    def concat_command(self, list_file: Path, output: Path) -> list[str]:
        return [self.settings.ffmpeg_binary, "-y", "-f", "concat", "-safe", "0", "-i", str(list_file),
                "-c", "copy", "-movflags", "+faststart", str(output)]

    # --- stages ---

    async def normalize_still(self, source: Path, output: Path) -> Path:
        """Re-encode an uploaded image as plain RGB PNG with EXIF rotation applied."""
        def _convert():
            with Image.open(source) as img:
                img = ImageOps.exif_transpose(img)
                if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                    rgba = img.convert("RGBA")
                    flat = Image.new("RGB", rgba.size, (255, 255, 255))
                    flat.paste(rgba, mask=rgba.getchannel("A"))
                    img = flat
                img.convert("RGB").save(output, format="PNG")

        try:
            await asyncio.to_thread(_convert)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise StageError("Normalize", ["pillow", str(source), str(output)], None, str(e)) from e
        return output

    async def render_intro(
        self,
        speech: Path,
        output: Path,
        duration: float,
        width: int,
        height: int,
        intro_image: Path | None = None,
        title: str = "Conversation",
    ) -> Path:
        title_file = None
        if intro_image is None:
            title_file = output.with_name("intro_title.txt")
            title_file.write_text(title, encoding="utf-8")
        cmd = self.intro_command(speech, output, duration, width, height, intro_image, title_file)
        await self._run("Intro", cmd)
        return output

    async def render_main(
        self,
        image: Path,
        speech: Path,
        output: Path,
        duration: float,
        width: int,
        height: int,
        music: Path | None = None,
    ) -> Path:
        await self._run("Main", self.main_command(image, speech, output, duration, width, height, music))
        return output

    async def process_outro(self, source: Path, output: Path, width: int, height: int) -> Path:
        has_audio = await self.has_audio_stream("Outro", source)
        if not has_audio:
            logger.info("[Outro] %s has no audio stream, adding silence", source.name)
        await self._run("Outro", self.outro_command(source, output, width, height, has_audio))
        return output

    async def concat(self, clips: list[Path], output: Path) -> Path:
        list_file = output.with_name("list.txt")
        lines = []
        for clip in clips:
            escaped = str(clip).replace("\\", "/").replace("'", "'\\''")
            lines.append(f"file '{escaped}'")
        list_file.write_text("\n".join(lines) + "\n", encoding="utf-8")
        await self._run("Concat", self.concat_command(list_file, output))
        return output

    async def tag_video(self, path: Path, title: str, lyrics: str):
        """Embed title and synchronized lyrics; metadata only, streams untouched."""
        def _tag():
            mp4 = MP4(str(path))
            mp4["\xa9nam"] = [title]
            mp4["\xa9lyr"] = [lyrics]
            mp4.save()

        try:
            await asyncio.to_thread(_tag)
        except (MutagenError, OSError) as e:
            raise StageError("Tag", ["mutagen", str(path)], None, str(e)) from e
        logger.info("Embedded title + LRC lyrics in %s", path.name)
