"""Transcript text for alerts that point at YouTube videos."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from youtube_transcript_api import YouTubeTranscriptApi

from alert_catalog.errors import FailureKind

logger = logging.getLogger(__name__)

_VIDEO_ID_RE = re.compile(
    r"(?:youtube\.com/(?:watch\?(?:.*&)?v=|embed/|shorts/|live/)|youtu\.be/)"
    r"([A-Za-z0-9_-]{11})",
)
_THROTTLED_RE = re.compile(r"too many requests|429|ip.*blocked|request.*blocked", re.IGNORECASE)

DEFAULT_LANGUAGES = ("en",)


@dataclass(slots=True)
class Transcript:
    """Joined transcript text, or the reason there is none."""

    video_id: str
    text: str = ""
    language: str = ""
    error: str | None = None
    error_kind: str | None = None
    retryable: bool = False

    @property
    def is_success(self) -> bool:
        return self.error is None


def extract_video_id(url: str) -> str | None:
    match = _VIDEO_ID_RE.search(url)
    return match.group(1) if match else None


def is_youtube_url(url: str) -> bool:
    return extract_video_id(url) is not None


class TranscriptReader:
    """Read video transcripts, preferring ``languages`` and accepting any other."""

    def __init__(
        self,
        *,
        languages: tuple[str, ...] = DEFAULT_LANGUAGES,
        max_chars: int = 0,
        api: YouTubeTranscriptApi | None = None,
    ) -> None:
        self._languages = languages
        self._max_chars = max_chars
        self._api = api

    def read(self, url: str) -> Transcript:
        video_id = extract_video_id(url)
        if video_id is None:
            return Transcript(
                video_id="",
                error=f"not a YouTube URL: {url}",
                error_kind=FailureKind.HTTP_ERROR,
            )

        api = self._api or YouTubeTranscriptApi()
        try:
            fetched = api.fetch(video_id, languages=list(self._languages))
        except Exception as exc:  # noqa: BLE001
            logger.debug("No %s transcript for %s: %s", "/".join(self._languages), video_id, exc)
        else:
            return self._joined(video_id, fetched, getattr(fetched, "language_code", ""))

        last_error = "no transcripts available"
        try:
            listed = list(api.list(video_id))
        except Exception as exc:  # noqa: BLE001
            return self._failed(video_id, str(exc))

        for transcript in listed:
            try:
                fetched = transcript.fetch()
            except Exception as exc:  # noqa: BLE001
                last_error = str(exc)
                logger.debug(
                    "Transcript %s for %s failed: %s",
                    transcript.language_code,
                    video_id,
                    exc,
                )
                continue
            return self._joined(video_id, fetched, transcript.language_code)
        return self._failed(video_id, last_error)

    def _joined(self, video_id: str, fetched, language: str) -> Transcript:  # noqa: ANN001
        text = " ".join(snippet.text.strip() for snippet in fetched if snippet.text.strip())
        if self._max_chars > 0:
            text = text[: self._max_chars].rstrip()
        return Transcript(video_id=video_id, text=text, language=language or self._languages[0])

    @staticmethod
    def _failed(video_id: str, error: str) -> Transcript:
        throttled = bool(_THROTTLED_RE.search(error))
        logger.warning("No transcript for video %s: %s", video_id, error)
        return Transcript(
            video_id=video_id,
            error=error,
            error_kind=FailureKind.NETWORK_ERROR if throttled else FailureKind.HTTP_ERROR,
            retryable=throttled,
        )
