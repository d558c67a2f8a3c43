# ============================================================
# transcript.py — Transcript Time-Index & YouTube Fetching
# ============================================================
# TimeIndex answers "what was being said at t?" in three
# shapes. TranscriptSource wraps youtube-transcript-api in
# tenacity retry with exponential backoff and is the only
# place a transcript is (re)extracted.
# ============================================================

from bisect import bisect_right
from urllib.parse import urlparse, parse_qs

from youtube_transcript_api import YouTubeTranscriptApi
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import SNIPPET_WINDOW
from models import TranscriptSegment

SENTENCE_TERMINATORS = (".", "!", "?")


def _ends_sentence(text: str) -> bool:
    return text.strip().endswith(SENTENCE_TERMINATORS)


def _join(segments: list[TranscriptSegment]) -> str:
    return " ".join(seg.text for seg in segments)


class TimeIndex:
    """
    Ordered time→text lookup over the active video's transcript.

    Queries never mutate the sequence; `replace` swaps it wholesale.
    """

    def __init__(self, segments: list[TranscriptSegment] | None = None):
        self._segments: list[TranscriptSegment] = []
        self._times: list[float] = []
        self.replace(segments or [])

    def replace(self, segments: list[TranscriptSegment]) -> None:
        # Stable sort: equal times keep their scraped order
        self._segments = sorted(segments, key=lambda seg: seg.time)
        self._times = [seg.time for seg in self._segments]

    def clear(self) -> None:
        self.replace([])

    @property
    def segments(self) -> list[TranscriptSegment]:
        return list(self._segments)

    def __len__(self) -> int:
        return len(self._segments)

    def _insertion_point(self, t: float) -> int:
        """Index of the first segment with time > t (len when none)."""
        return bisect_right(self._times, t)

    def nearest_before(self, t: float) -> str | None:
        """
        Text of the last segment starting at or before `t`.

        Past the final entry this is the closing segment. Before the first
        entry it is deliberately the opening segment rather than the closing
        one the browser extension used to fall back to: a pause at -1s is
        about the first thing said. A non-empty index always answers.
        """
        if not self._segments:
            return None
        idx = self._insertion_point(t)
        if idx == 0:
            return self._segments[0].text
        return self._segments[idx - 1].text

    def sentence_at(self, t: float) -> str | None:
        """Expand the segment at `t` to whole sentences on both sides."""
        if not self._segments:
            return None
        start = max(self._insertion_point(t) - 1, 0)
        end = start
        while start > 0 and not _ends_sentence(self._segments[start - 1].text):
            start -= 1
        while end + 1 < len(self._segments) and not _ends_sentence(self._segments[end].text):
            end += 1
        return _join(self._segments[start:end + 1])

    def window_snippet(self, t: float, window_size: int = SNIPPET_WINDOW) -> str | None:
        """Join `window_size` segments centred on `t`, clamped to the sequence."""
        if not self._segments:
            return None
        n = len(self._segments)
        size = min(max(window_size, 0), n)
        if t <= 0:
            return _join(self._segments[:size])
        idx = self._insertion_point(t)
        if idx == n:
            return _join(self._segments[n - size:]) if size else ""
        start = max(0, idx - window_size // 2)
        end = min(n, start + window_size)
        return _join(self._segments[start:end])

    def context_window(self, t: float | None, full_limit: int, radius: int) -> str:
        """
        Transcript text for a free-form chat question.

        Short transcripts are sent whole; long ones as `radius` segments
        either side of `t`.
        """
        if not self._segments:
            return ""
        if len(self._segments) <= full_limit:
            return _join(self._segments)
        if t is None:
            return ""
        idx = self._insertion_point(t)
        return _join(self._segments[max(0, idx - radius):min(len(self._segments), idx + radius)])


# ── YouTube Transcript Fetching ───────────────────────────────
def extract_video_id(url: str) -> str | None:
    """Pull the video id out of a watch/short/embed URL."""
    parsed = urlparse(url)
    if parsed.query:
        ids = parse_qs(parsed.query).get("v")
        if ids:
            return ids[0]
    if parsed.netloc.endswith("youtu.be") or "/shorts/" in parsed.path or "/embed/" in parsed.path:
        tail = parsed.path.rstrip("/").split("/")[-1]
        return tail or None
    return None


@retry(
    stop=stop_after_attempt(4),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(Exception),
    reraise=True,
)
def _fetch_raw_transcript(video_id: str):
    """
    Fetch the full transcript with retry logic.
    Retries up to 4 times with exponential backoff (1s, 2s, 4s, 8s).
    """
    return YouTubeTranscriptApi().fetch(video_id)


class TranscriptSource:
    """Extraction collaborator: turns a page URL into an ordered segment list."""

    def extract(self, url: str) -> list[TranscriptSegment]:
        """
        Blocking fetch; empty list when the URL has no video or no transcript.
        """
        video_id = extract_video_id(url)
        if not video_id:
            return []
        try:
            fetched = _fetch_raw_transcript(video_id)
        except Exception as e:
            print(f"[TRANSCRIPT] ⚠️ Fetch failed for {video_id}: {str(e)[:120]}")
            return []
        segments = [TranscriptSegment(time=snippet.start, text=snippet.text) for snippet in fetched]
        print(f"[TRANSCRIPT] {video_id}: {len(segments)} segments")
        return segments
