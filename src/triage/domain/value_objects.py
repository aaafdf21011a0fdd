"""
Triage Value Objects
====================

Stateless domain services for ticket triage.

- SkillNormalizer: maps free-form skill tokens onto the skill taxonomy
- RuleBasedClassifier: deterministic keyword classifier used when the
  LLM analysis is unavailable
- extract_json_object: pulls the first balanced JSON object out of an
  LLM reply
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from src.config import Priority
from src.triage.domain.entities import AnalysisResult


GENERAL_SKILL = "general"


class SkillNormalizer:
    """
    Normalizes raw skill tokens onto the fixed skill taxonomy.

    Lookup is by trimmed lowercase token. Unknown tokens pass through
    trimmed; the "general" sentinel is dropped. Output keeps first-seen
    order with duplicates removed.
    """

    ALIASES: Dict[str, str] = {
        "react": "React",
        "reactjs": "React",
        "react.js": "React",
        "node": "Node.js",
        "nodejs": "Node.js",
        "node.js": "Node.js",
        "javascript": "JavaScript",
        "js": "JavaScript",
        "typescript": "TypeScript",
        "ts": "TypeScript",
        "mongodb": "MongoDB",
        "mongo": "MongoDB",
        "database": "MongoDB",
        "postgres": "PostgreSQL",
        "postgresql": "PostgreSQL",
        "python": "Python",
        "java": "Java",
        "php": "PHP",
        "docker": "Docker",
        "kubernetes": "Kubernetes",
        "k8s": "Kubernetes",
        "devops": "DevOps",
        "aws": "AWS",
        "redis": "Redis",
        "vue": "Vue.js",
        "vuejs": "Vue.js",
        "vue.js": "Vue.js",
        "angular": "Angular",
        "security": "Security",
        "mobile": "Mobile",
        "ui": "UI/UX",
        "ux": "UI/UX",
        "ui/ux": "UI/UX",
        "design": "UI/UX",
    }

    @classmethod
    def normalize_token(cls, token: Any) -> Optional[str]:
        """Normalize one token; None means the token is dropped."""
        if not isinstance(token, str):
            return None
        stripped = token.strip()
        key = stripped.lower()
        if not key or key == GENERAL_SKILL:
            return None
        return cls.ALIASES.get(key, stripped)

    @classmethod
    def normalize(cls, tokens: Optional[Iterable[Any]]) -> List[str]:
        normalized: List[str] = []
        for token in tokens or []:
            skill = cls.normalize_token(token)
            if skill is not None and skill not in normalized:
                normalized.append(skill)
        return normalized


def _word_pattern(words: Iterable[str]) -> "re.Pattern[str]":
    return re.compile(r"\b(?:" + "|".join(words) + r")\b", re.IGNORECASE)


class RuleBasedClassifier:
    """
    Deterministic keyword classifier.

    This is the terminal path of ticket analysis and must never raise.
    """

    HIGH_PRIORITY = _word_pattern([
        r"critical", r"urgent", r"down", r"outage", r"crash\w*",
        r"time[- ]?outs?", r"timed out", r"errors?", r"fail\w*",
    ])
    LOW_PRIORITY = _word_pattern([r"question", r"how to", r"how do"])

    # (pattern, skills) in matching order; matches accumulate
    SKILL_LEXICON: Tuple[Tuple["re.Pattern[str]", Tuple[str, ...]], ...] = (
        (_word_pattern([r"react\w*", r"jsx"]), ("React", "JavaScript")),
        (_word_pattern([r"database", r"db", r"mongo\w*", r"\w*sql", r"postgres\w*"]),
         ("MongoDB", "PostgreSQL")),
        (_word_pattern([r"node(?:\.?js)?", r"npm", r"express"]), ("Node.js", "JavaScript")),
        (_word_pattern([r"mobile", r"ios", r"android", r"iphone"]), ("Mobile",)),
        (_word_pattern([r"python", r"django", r"flask"]), ("Python",)),
        (_word_pattern([r"docker", r"container\w*"]), ("Docker",)),
        (_word_pattern([r"aws", r"s3", r"ec2", r"lambda"]), ("AWS",)),
        (_word_pattern([r"security", r"vulnerab\w*", r"breach", r"xss", r"csrf"]), ("Security",)),
    )

    HELPFUL_NOTES = "Please review the ticket details and investigate the reported issue."

    @classmethod
    def detect_priority(cls, text: str) -> str:
        if cls.HIGH_PRIORITY.search(text):
            return Priority.HIGH
        if cls.LOW_PRIORITY.search(text):
            return Priority.LOW
        return Priority.MEDIUM

    @classmethod
    def detect_skills(cls, text: str) -> List[str]:
        skills: List[str] = []
        for pattern, tags in cls.SKILL_LEXICON:
            if pattern.search(text):
                skills.extend(tag for tag in tags if tag not in skills)
        return skills or ["General"]

    @classmethod
    def classify(cls, title: Optional[str], description: Optional[str]) -> AnalysisResult:
        title = title if isinstance(title, str) else ""
        description = description if isinstance(description, str) else ""
        text = f"{title}\n{description}"

        return AnalysisResult(
            summary=f"Issue with {title}" if title else "Issue reported without a title",
            priority=cls.detect_priority(text),
            helpful_notes=cls.HELPFUL_NOTES,
            related_skills=cls.detect_skills(text),
            source="fallback",
        )


def extract_json_object(text: str) -> Optional[str]:
    """
    Return the first balanced ``{...}`` span in ``text``.

    Braces inside JSON strings (including escaped quotes) are ignored.
    Returns None when no complete object is present.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None
