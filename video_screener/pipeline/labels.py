"""
Label vocabularies for interpreting classifier output.

Classifier labels are matched by case-insensitive substring against a
versioned vocabulary. Swapping the upstream model usually means adding a
new vocabulary version here rather than editing the matching code.
"""

from dataclasses import dataclass
from numbers import Real
from typing import Any, Dict, Tuple

from ..errors import ClassificationError
from ..models import ClassificationResult

DEFAULT_NORMAL_SCORE = 0.95


@dataclass(frozen=True)
class LabelVocabulary:
    """Keyword sets used to map raw labels onto nsfw/normal scores"""
    version: str
    unsafe: Tuple[str, ...]
    safe: Tuple[str, ...]
    ambiguous: Tuple[str, ...]
    ambiguous_weight: float = 0.5
    
    def categorize(self, label: str) -> str:
        """Return 'unsafe', 'safe', 'ambiguous' or '' for a raw label"""
        label = (label or '').lower()
        if any(term in label for term in self.unsafe):
            return 'unsafe'
        if any(term in label for term in self.safe):
            return 'safe'
        if any(term in label for term in self.ambiguous):
            return 'ambiguous'
        return ''


VOCABULARIES: Dict[str, LabelVocabulary] = {
    "v1": LabelVocabulary(
        version="v1",
        unsafe=("nsfw", "unsafe", "porn", "adult", "sexual", "explicit", "nude", "erotic"),
        safe=("normal", "sfw", "safe", "neutral", "clean", "appropriate"),
        ambiguous=("bikini", "underwear", "swimsuit"),
    ),
}


def get_vocabulary(version: str) -> LabelVocabulary:
    try:
        return VOCABULARIES[version]
    except KeyError:
        raise ValueError(
            f"Unknown classifier vocabulary {version!r}; known: {', '.join(sorted(VOCABULARIES))}"
        )


def _clamp(score: float) -> float:
    return min(max(float(score), 0.0), 1.0)


def normalize_scores(raw: Any, vocabulary: LabelVocabulary) -> ClassificationResult:
    """
    Reduce a raw classifier response to (nsfw_score, normal_score).
    
    Accepts either a list of {"label", "score"} items or a flat mapping
    of label -> score. Output with no recognizable label defaults to
    normal_score = 0.95.
    
    Raises:
        ClassificationError: if the response has neither shape
    """
    if isinstance(raw, list):
        pairs = []
        for item in raw:
            if not isinstance(item, dict) or not isinstance(item.get('score'), Real):
                raise ClassificationError(f"Malformed classifier item: {item!r}")
            pairs.append((str(item.get('label', '')), item['score']))
    elif isinstance(raw, dict):
        if 'error' in raw:
            raise ClassificationError(f"Classifier returned an error: {raw['error']}")
        pairs = [
            (str(label), value) for label, value in raw.items()
            if isinstance(value, Real) and not isinstance(value, bool)
        ]
    else:
        raise ClassificationError(f"Unexpected classifier response type: {type(raw).__name__}")
    
    nsfw_score = 0.0
    normal_score = 0.0
    for label, score in pairs:
        category = vocabulary.categorize(label)
        if category == 'unsafe':
            nsfw_score = max(nsfw_score, _clamp(score))
        elif category == 'safe':
            normal_score = max(normal_score, _clamp(score))
        elif category == 'ambiguous':
            nsfw_score = max(nsfw_score, _clamp(score) * vocabulary.ambiguous_weight)
    
    if nsfw_score == 0 and normal_score == 0:
        normal_score = DEFAULT_NORMAL_SCORE
    
    return ClassificationResult(nsfw_score=nsfw_score, normal_score=normal_score, raw=raw)
