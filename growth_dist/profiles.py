"""
Named game profiles for level-up simulation.

Each profile maps a game family to its level-up rule, the rule's
parameters, whether capped stats still roll and the preset character
the CLI falls back to when no character is given. Profiles are plain
dicts so they can be stored as JSON and overridden key by key.
"""

import json
from typing import Dict, Any
from copy import deepcopy

from .simulation.rules import LevelUpRule, build_rule


# =============================================================================
# Profile Definitions
# =============================================================================

PROFILES: Dict[str, Dict[str, Any]] = {
    'plain': {
        'rule': 'independent',
        'rule_params': {},
        'capped_rolls_consume_rng': True,
        'preset': 'generic',
    },
    # GBA titles reroll a blank level-up twice; a hit on a capped stat
    # is not blank.
    'gba': {
        'rule': 'retry_on_blank',
        'rule_params': {'retries': 2},
        'capped_rolls_consume_rng': True,
        'preset': 'gba_default',
    },
    'por': {
        'rule': 'independent',
        'rule_params': {},
        'capped_rolls_consume_rng': True,
        'preset': 'por_default',
    },
    # SoV awards HP on a blank level-up.
    'sov': {
        'rule': 'award_on_blank',
        'rule_params': {'stat': 0},
        'capped_rolls_consume_rng': True,
        'preset': 'generic',
    },
    # FE10 bonus experience always grows exactly three stats.
    'fe10_bexp': {
        'rule': 'guaranteed_stats',
        'rule_params': {'minimum': 3},
        'capped_rolls_consume_rng': False,
        'preset': 'por_default',
    },
}

PROFILE_NAMES = list(PROFILES.keys())


def get_profile(name: str) -> Dict[str, Any]:
    """
    Get a named profile as a dict.

    Raises:
        ValueError: If profile name is not recognized
    """
    if name not in PROFILES:
        raise ValueError(
            f"Unknown profile '{name}'. Available: {', '.join(PROFILE_NAMES)}"
        )
    return deepcopy(PROFILES[name])


def apply_profile_overrides(
    profile: Dict[str, Any],
    overrides: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Merge explicit overrides into a profile.

    Overrides take precedence over profile values. Only non-None
    override values are applied.
    """
    merged = deepcopy(profile)
    for key, value in overrides.items():
        if value is not None:
            merged[key] = value
    return merged


def rule_from_profile(profile: Dict[str, Any]) -> LevelUpRule:
    """
    Instantiate the level-up rule a profile describes.

    Args:
        profile: Profile dict (from get_profile or load_profile_from_json,
            possibly merged with apply_profile_overrides)
    """
    return build_rule(
        profile['rule'],
        capped_rolls_consume_rng=profile.get('capped_rolls_consume_rng', True),
        **profile.get('rule_params', {})
    )


def load_profile_from_json(path: str) -> Dict[str, Any]:
    """
    Load a custom profile from a JSON file.

    {
        "rule": "retry_on_blank",
        "rule_params": {"retries": 1},
        "capped_rolls_consume_rng": false
    }
    """
    with open(path, 'r') as f:
        return json.load(f)
