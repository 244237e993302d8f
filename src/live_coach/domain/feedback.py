import collections
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from live_coach.domain.aggregator import Segment

logger = logging.getLogger(__name__)

DEFAULT_FILLER_WORDS = (
    "um",
    "uh",
    "like",
    "you know",
    "so",
    "actually",
    "basically",
    "literally",
)

MAX_CUE_HISTORY = 5

INTERROGATIVES = frozenset(
    "what how why when where who which can could would should do did does is are was were".split()
)

_SENTENCE = re.compile(r"([^.!?]+)([.!?]*)")


@dataclass(frozen=True)
class FeedbackReport:
    word_count: int
    duration_seconds: float
    filler_counts: dict[str, int] = field(default_factory=dict)
    sentence_count: int = 0
    question_count: int = 0

    @property
    def filler_total(self) -> int:
        return sum(self.filler_counts.values())

    @property
    def words_per_minute(self) -> float | None:
        if self.duration_seconds <= 0:
            return None
        return self.word_count / self.duration_seconds * 60.0

    @property
    def question_ratio(self) -> float | None:
        if self.sentence_count == 0:
            return None
        return self.question_count / self.sentence_count


class FillerLexicon:
    def __init__(self, fillers: Sequence[str] = DEFAULT_FILLER_WORDS) -> None:
        self._fillers = [f.lower().strip() for f in fillers if f.strip()]
        # Longest first so "you know" wins over a shorter overlapping entry.
        alternatives = sorted(self._fillers, key=len, reverse=True)
        patterns = [r"\s+".join(re.escape(part) for part in filler.split()) for filler in alternatives]
        self._pattern = re.compile(r"\b(" + "|".join(patterns) + r")\b", re.IGNORECASE) if patterns else None

    @property
    def fillers(self) -> list[str]:
        return list(self._fillers)

    def count(self, text: str) -> dict[str, int]:
        if self._pattern is None:
            return {}
        counts: dict[str, int] = {}
        for match in self._pattern.finditer(text):
            key = " ".join(match.group(1).lower().split())
            counts[key] = counts.get(key, 0) + 1
        return counts


def count_words(text: str) -> int:
    return len(text.split())


def count_questions(text: str) -> tuple[int, int]:
    sentences = questions = 0
    for match in _SENTENCE.finditer(text):
        body, terminator = match.groups()
        words = body.lower().split()
        if not words:
            continue
        sentences += 1
        if "?" in terminator or words[0].strip(",;:\"'") in INTERROGATIVES:
            questions += 1
    return sentences, questions


def analyze_window(text: str, duration_seconds: float, lexicon: FillerLexicon) -> FeedbackReport:
    sentences, questions = count_questions(text)
    return FeedbackReport(
        word_count=count_words(text),
        duration_seconds=max(duration_seconds, 0.0),
        filler_counts=lexicon.count(text),
        sentence_count=sentences,
        question_count=questions,
    )


def trailing_window(segments: Sequence[Segment], max_words: int) -> tuple[str, float]:
    if not segments:
        return "", 0.0

    collected: list[str] = []
    duration = 0.0
    remaining = max_words
    for segment in reversed(segments):
        words = segment.text.split()
        if not words:
            continue
        if len(words) >= remaining:
            if not collected:
                return segment.text, segment.duration_seconds
            collected.insert(0, " ".join(words[-remaining:]))
            # Oldest segment is only partly in the window.
            duration += segment.duration_seconds * remaining / len(words)
            break
        collected.insert(0, segment.text)
        duration += segment.duration_seconds
        remaining -= len(words)
    return " ".join(collected), duration


class FeedbackDeriver:
    def __init__(
        self,
        lexicon: FillerLexicon | None = None,
        window_words: int = 60,
        fast_wpm: float = 200.0,
        slow_wpm: float = 90.0,
        min_pace_words: int = 10,
        low_confidence: float = 0.6,
        engaging_question_ratio: float = 0.3,
        few_question_ratio: float = 0.1,
        min_question_sentences: int = 5,
    ) -> None:
        self._lexicon = lexicon or FillerLexicon()
        self._window_words = window_words
        self._fast_wpm = fast_wpm
        self._slow_wpm = slow_wpm
        self._min_pace_words = min_pace_words
        self._low_confidence = low_confidence
        self._engaging_question_ratio = engaging_question_ratio
        self._few_question_ratio = few_question_ratio
        self._min_question_sentences = min_question_sentences
        self._question_band: str | None = None
        self._history: collections.deque[str] = collections.deque(maxlen=MAX_CUE_HISTORY)

    @property
    def cues(self) -> list[str]:
        return list(self._history)

    def derive(self, segments: Sequence[Segment]) -> list[str]:
        if not segments:
            return []

        latest = segments[-1]
        latest_report = analyze_window(latest.text, latest.duration_seconds, self._lexicon)
        window_text, window_duration = trailing_window(segments, self._window_words)
        window_report = analyze_window(window_text, window_duration, self._lexicon)

        cues = self._filler_cues(latest_report)
        cues.extend(self._pace_cues(window_report))
        cues.extend(self._question_cues(window_report))
        if not latest.low_confidence and 0 < latest.confidence < self._low_confidence:
            cues.append(
                f"Recognition confidence is low ({latest.confidence:.0%}). Try speaking more clearly."
            )

        for cue in cues:
            logger.info("Feedback: %s", cue)
            self._history.appendleft(cue)
        return cues

    def reset(self) -> None:
        self._history.clear()
        self._question_band = None

    def _filler_cues(self, report: FeedbackReport) -> list[str]:
        cues = []
        for filler, count in report.filler_counts.items():
            suffix = f" ({count}x)" if count > 1 else ""
            cues.append(f'Filler word detected: "{filler}"{suffix}')
        return cues

    def _pace_cues(self, report: FeedbackReport) -> list[str]:
        wpm = report.words_per_minute
        if wpm is None or report.word_count < self._min_pace_words:
            return []
        if wpm > self._fast_wpm:
            return [f"Speaking pace is quite fast ({wpm:.0f} WPM). Consider slowing down for better clarity."]
        if wpm < self._slow_wpm:
            return [f"Speaking pace is slow ({wpm:.0f} WPM). Try to keep a steadier flow."]
        return []

    def _question_cues(self, report: FeedbackReport) -> list[str]:
        ratio = report.question_ratio
        if ratio is None or report.sentence_count < self._min_question_sentences:
            return []
        if ratio > self._engaging_question_ratio:
            band = "engaging"
        elif ratio < self._few_question_ratio:
            band = "few"
        else:
            band = "balanced"
        # Reported once per band change.
        if band == self._question_band:
            return []
        self._question_band = band
        if band == "engaging":
            return [f"Great use of questions ({ratio:.0%} of sentences). Questions keep your audience engaged."]
        if band == "few":
            return [f"Consider asking more questions ({ratio:.0%} of sentences) to engage your audience."]
        return []
