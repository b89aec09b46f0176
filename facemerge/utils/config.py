"""Configuration for duplicate scoring, merging and graph analysis."""

import json
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Any, FrozenSet


@dataclass
class EngineConfig:
    """Tunable settings for the engine.

    Defaults reproduce the documented scoring rules; override them through
    ``from_json`` rather than editing module constants.
    """

    # Duplicate confidence buckets (integer score)
    high_confidence_score: int = 5
    medium_confidence_score: int = 3

    # Name similarity thresholds (0-1)
    very_similar_name: float = 0.9
    somewhat_similar_name: float = 0.7

    # Above this many candidates, pairwise scoring switches to blocking
    max_pairwise_candidates: int = 500

    # Merge transaction attempts on store conflicts
    merge_max_attempts: int = 3

    # Graph analysis
    top_connected_limit: int = 5
    default_max_degrees: int = 3
    strong_strength: int = 4
    weak_strength_below: int = 2

    # Connection type categories
    category_types: Dict[str, FrozenSet[str]] = field(default_factory=lambda: {
        'family': frozenset({
            'parent', 'child', 'father', 'mother', 'family_member',
            'spouse', 'partner',
        }),
        'professional': frozenset({
            'colleague', 'manager', 'reports_to', 'subordinate',
            'mentor', 'mentee',
        }),
        'social': frozenset({
            'friend', 'acquaintance', 'club_member', 'fellow_member',
            'group_member',
        }),
    })

    # Image storage
    image_url_ttl_seconds: float = 900.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EngineConfig':
        """Build a config from a dict, rejecting unknown keys.

        Args:
            data: Mapping of field name to value

        Returns:
            EngineConfig instance
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

        values = dict(data)
        if 'category_types' in values:
            values['category_types'] = {
                name: frozenset(types)
                for name, types in values['category_types'].items()
            }
        return cls(**values)

    @classmethod
    def from_json(cls, path: str | Path) -> 'EngineConfig':
        """Load overrides from a JSON file.

        Args:
            path: Path to a JSON object of config overrides

        Returns:
            EngineConfig instance
        """
        with open(path, 'r', encoding='utf-8') as f:
            return cls.from_dict(json.load(f))
