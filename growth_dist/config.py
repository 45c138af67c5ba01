"""
Configuration management for the growth distribution engine.

Character presets, engine config defaults, and JSON loading utilities.
"""

import json
from typing import Dict, Any, List, Tuple

from .types import Character, EngineConfig, Growths, Promotion, Stat


ENGINE_CONFIG_VERSION = "1.0"


# =============================================================================
# Character Presets
# =============================================================================

GBA_FE_STATS = ["HP", "Atk", "Skl", "Spd", "Lck", "Def", "Res"]
POR_STATS = ["HP", "Str", "Mag", "Skl", "Spd", "Lck", "Def", "Res"]


def _preset(name: str, stat_names: List[str], caps: Dict[str, int], default_cap: int,
            growth: float) -> Character:
    # Default characters start at a quarter of each cap
    stats = []
    for stat_name in stat_names:
        cap = caps.get(stat_name, default_cap)
        stats.append(Stat(name=stat_name, current=cap // 4, cap=cap))
    return Character(name=name, stats=tuple(stats), rates=tuple(growth for _ in stats))


CHARACTER_PRESETS: Dict[str, Character] = {
    # GBA titles: HP caps at 60, Lck at 30, everything else at 20.
    'gba_default': _preset(
        "GBA Default", GBA_FE_STATS, {'HP': 60, 'Lck': 30}, default_cap=20, growth=0.40
    ),

    # Path of Radiance: HP and Lck cap at 40, everything else at 20.
    'por_default': _preset(
        "PoR Default", POR_STATS, {'HP': 40, 'Lck': 40}, default_cap=20, growth=0.40
    ),

    'generic': Character(
        name="Generic",
        stats=tuple(Stat(name=s, current=5, cap=20) for s in GBA_FE_STATS),
        rates=tuple(0.50 for _ in GBA_FE_STATS)
    ),
}


# =============================================================================
# Default Engine Config
# =============================================================================

DEFAULT_ENGINE_CONFIG = EngineConfig(
    max_support=1_000_000,
    renormalize_every=8,
    capped_rolls_consume_rng=True,
    cache_capacity=None,
    batch_size=65_536,
    workers=1
)


# =============================================================================
# JSON Loading Utilities
# =============================================================================

def character_from_dict(data: Dict[str, Any]) -> Character:
    """
    Build a Character from its JSON representation.

    Raises:
        KeyError: If a required field is missing
    """
    stats = []
    rates = []
    for entry in data['stats']:
        stats.append(Stat(name=entry['name'], current=int(entry['current']), cap=int(entry['cap'])))
        rates.append(float(entry['growth']))

    return Character(name=data.get('name', ''), stats=tuple(stats), rates=tuple(rates))


def character_to_dict(character: Character) -> Dict[str, Any]:
    return {
        'name': character.name,
        'stats': [
            {
                'name': stat.name,
                'current': stat.current,
                'cap': stat.cap,
                'growth': rate
            }
            for stat, rate in zip(character.stats, character.rates)
        ]
    }


def load_character_from_json(path: str) -> Character:
    """
    Load a character from JSON file.

    Expected format:
    {
        "name": "Eirika",
        "stats": [
            {"name": "HP", "current": 16, "cap": 60, "growth": 0.70},
            {"name": "Str", "current": 4, "cap": 20, "growth": 0.40},
            ...
        ]
    }
    """
    with open(path, 'r') as f:
        data = json.load(f)

    return character_from_dict(data)


def save_character_to_json(character: Character, path: str):
    """Save character to JSON file."""
    with open(path, 'w') as f:
        json.dump(character_to_dict(character), f, indent=2)


def promotion_from_dict(data: Dict[str, Any]) -> Promotion:
    """
    Build a Promotion from its JSON representation.

    Raises:
        KeyError: If a required field is missing
    """
    entries = data['stats']
    return Promotion(
        gains=tuple(int(entry.get('gain', 0)) for entry in entries),
        growths=Growths(
            rates=tuple(float(entry['growth']) for entry in entries),
            caps=tuple(int(entry['cap']) for entry in entries),
            names=tuple(entry['name'] for entry in entries)
        )
    )


def load_promotion_from_json(path: str) -> Promotion:
    """
    Load a promotion from JSON file, one entry per stat in character order.

    Expected format:
    {
        "name": "Great Lord",
        "stats": [
            {"name": "HP", "gain": 4, "cap": 60, "growth": 0.70},
            {"name": "Str", "gain": 2, "cap": 24, "growth": 0.40},
            ...
        ]
    }

    A missing "gain" means no fixed bonus for that stat.
    """
    with open(path, 'r') as f:
        data = json.load(f)

    return promotion_from_dict(data)


def _validate_version(config: Dict[str, Any]) -> None:
    """Validate engine config version."""
    version = config.get('version', ENGINE_CONFIG_VERSION)
    if version != ENGINE_CONFIG_VERSION:
        raise ValueError(
            f"Unsupported engine config version '{version}'. "
            f"Expected '{ENGINE_CONFIG_VERSION}'."
        )


def engine_config_from_dict(data: Dict[str, Any]) -> EngineConfig:
    """Build an EngineConfig, falling back to defaults for missing keys."""
    _validate_version(data)
    defaults = DEFAULT_ENGINE_CONFIG
    return EngineConfig(
        max_support=data.get('max_support', defaults.max_support),
        renormalize_every=data.get('renormalize_every', defaults.renormalize_every),
        mass_tolerance=data.get('mass_tolerance', defaults.mass_tolerance),
        capped_rolls_consume_rng=data.get(
            'capped_rolls_consume_rng', defaults.capped_rolls_consume_rng
        ),
        cache_capacity=data.get('cache_capacity', defaults.cache_capacity),
        cache_intermediate=data.get('cache_intermediate', defaults.cache_intermediate),
        batch_size=data.get('batch_size', defaults.batch_size),
        workers=data.get('workers', defaults.workers)
    )


def load_engine_config_from_json(path: str) -> EngineConfig:
    """
    Load engine config from JSON file.

    Expected format:
    {
        "version": "1.0",
        "max_support": 1000000,
        "renormalize_every": 8,
        "capped_rolls_consume_rng": true,
        "cache_capacity": 256,
        "batch_size": 65536,
        "workers": 4
    }

    Raises:
        ValueError: If config version is unsupported or a value is invalid
    """
    with open(path, 'r') as f:
        data = json.load(f)

    return engine_config_from_dict(data)


def save_engine_config_to_json(config: EngineConfig, path: str) -> None:
    """Save engine config (with version tag) to JSON file."""
    data = {'version': ENGINE_CONFIG_VERSION}
    data.update(config.to_dict())
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)


def create_sample_character_json(path: str = 'character_sample.json') -> Tuple[str, Character]:
    """Create a sample character JSON file for reference."""
    sample = CHARACTER_PRESETS['gba_default']
    save_character_to_json(sample, path)
    return path, sample
