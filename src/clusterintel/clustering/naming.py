"""Cluster names: text generator first, keyword templates as fallback."""

import logging
import re
from collections import Counter

from ..errors import ExternalCollaboratorError
from ..generation import TextGenerator
from ..generation.prompts import (
    CLUSTER_NAME_SYSTEM_PROMPT,
    CLUSTER_NAME_USER_PROMPT,
    COLLECTION_CLUSTER_SYSTEM_PROMPT,
    COLLECTION_CLUSTER_USER_PROMPT,
)
from ..timeouts import call_with_timeout

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "this", "that", "these", "those", "is", "are", "was", "were", "been", "be",
    "have", "has", "had", "will", "would", "could", "should", "may", "might",
    "can", "must", "shall", "from", "into", "through", "during", "before",
    "after", "above", "below", "between", "among", "about", "around", "under",
    "there", "their", "them", "then", "than", "they", "what", "when", "where",
    "which", "while", "also", "some", "such", "only", "other", "more", "most",
})

# {0} is the top keyword, {1} the runner-up.
NAME_TEMPLATES = (
    "{0} Content",
    "{0} & {1}",
    "{0} Topics",
    "{0} Documents",
    "{0} Materials",
)

MAX_NAME_LENGTH = 50
PROMPT_CHAR_LIMIT = 3000


def extract_keywords(text: str, limit: int = 5) -> list[str]:
    """Most frequent non-stopword terms longer than three characters."""
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    counts = Counter(w for w in words if len(w) > 3 and w not in STOP_WORDS and not w.isdigit())
    return [word for word, _ in counts.most_common(limit)]


def keyword_name(keywords: list[str], index: int) -> str | None:
    """Compose a name from keywords using the fixed templates."""
    if not keywords:
        return None
    templates = NAME_TEMPLATES if len(keywords) > 1 else tuple(t for t in NAME_TEMPLATES if "{1}" not in t)
    template = templates[index % len(templates)]
    words = [k.capitalize() for k in keywords[:2]]
    return template.format(*words)


def clean_generated_name(raw: str) -> str:
    name = raw.strip().splitlines()[0].strip() if raw and raw.strip() else ""
    return name.strip("\"'").strip()


class ClusterNamer:
    """Names content clusters and auto-generated collection clusters.

    Never raises: generator failures, timeouts and rejected answers fall back to
    keyword templates and finally to an indexed generic name.
    """

    def __init__(self, generator: TextGenerator | None = None, timeout: float | None = None):
        self.generator = generator
        self.timeout = timeout

    def _ask(self, system_prompt: str, user_prompt: str) -> str | None:
        if self.generator is None:
            return None
        try:
            raw = call_with_timeout(self.generator.generate, self.timeout, system_prompt, user_prompt)
        except ExternalCollaboratorError as e:
            logger.warning(f"Text generator unavailable, using fallback name: {e}")
            return None
        except Exception as e:  # any SDK/network error degrades to the fallback
            logger.warning(f"Text generator failed, using fallback name: {e}")
            return None

        name = clean_generated_name(raw or "")
        if name and len(name) < MAX_NAME_LENGTH:
            return name
        logger.info(f"Rejected generated name {name!r}")
        return None

    def name_cluster(self, texts: list[str], index: int) -> str:
        """Name the ``index``-th content cluster from its member texts."""
        all_text = "\n\n".join(t for t in texts if t)
        if not all_text.strip():
            return f"Topic Cluster {index + 1}"

        name = self._ask(
            CLUSTER_NAME_SYSTEM_PROMPT,
            CLUSTER_NAME_USER_PROMPT.format(content=all_text[:PROMPT_CHAR_LIMIT]),
        )
        if name:
            return name

        fallback = keyword_name(extract_keywords(all_text), index)
        if fallback:
            return fallback
        return f"Content Cluster {index + 1}"

    def name_for_collection(self, name: str, description: str | None = None) -> str:
        """Cluster name for organizing a collection and its relatives."""
        generated = self._ask(
            COLLECTION_CLUSTER_SYSTEM_PROMPT,
            COLLECTION_CLUSTER_USER_PROMPT.format(name=name, description=description or "No description provided"),
        )
        if generated and len(generated) >= 5:
            return generated

        words = [w.capitalize() for w in name.split() if len(w) > 2]
        if not words:
            return "General Content"
        if len(words) == 1:
            return f"{words[0]} Content"
        return f"{words[0]} {words[1]} Cluster"
