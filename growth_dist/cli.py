"""
Command-line interface for the growth distribution engine.
"""

import click
import json
import logging

from .types import Distribution, EngineConfig
from .config import (
    CHARACTER_PRESETS,
    DEFAULT_ENGINE_CONFIG,
    create_sample_character_json,
    load_character_from_json,
    load_engine_config_from_json,
    load_promotion_from_json,
)
from .profiles import (
    PROFILE_NAMES,
    apply_profile_overrides,
    get_profile,
    load_profile_from_json,
    rule_from_profile,
)
from .pipeline import (
    compute_distribution,
    compute_or_simulate,
    compute_promoted_distribution,
    simulate_distribution,
)
from .summary import marginals, marginals_frame, summarize
from .errors import InvalidQuery


@click.command()
@click.argument('character_json', type=click.Path(exists=True), required=False)
@click.option(
    '--preset', '-p',
    type=click.Choice(list(CHARACTER_PRESETS.keys())),
    help='Use a preset character instead of a JSON file'
)
@click.option(
    '--levels', '-n',
    type=int,
    default=10,
    help='Number of level-ups (default: 10)'
)
@click.option(
    '--promotion',
    type=click.Path(exists=True),
    help='Promotion JSON applied after --levels level-ups'
)
@click.option(
    '--levels-after',
    type=int,
    default=0,
    help='Level-ups after the promotion (default: 0)'
)
@click.option(
    '--mode', '-m',
    type=click.Choice(['auto', 'exact', 'simulate']),
    default='auto',
    help='auto (exact if tractable, default), exact, or simulate'
)
@click.option(
    '--profile',
    type=click.Choice(PROFILE_NAMES),
    default=None,
    help='Game profile selecting the level-up rule (default: plain)'
)
@click.option(
    '--profile-file',
    type=click.Path(exists=True),
    help='Custom profile JSON (overrides --profile)'
)
@click.option(
    '--trials', '-t',
    type=int,
    default=100000,
    help='Number of simulated trials (default: 100000)'
)
@click.option(
    '--seed',
    type=int,
    default=0,
    help='Random seed for reproducibility (default: 0)'
)
@click.option(
    '--engine-config',
    type=click.Path(exists=True),
    help='Engine config JSON'
)
@click.option(
    '--max-support',
    type=int,
    default=None,
    help='Support ceiling for exact computation (overrides config)'
)
@click.option(
    '--workers',
    type=int,
    default=None,
    help='Simulation worker threads (overrides config)'
)
@click.option(
    '--capped-rolls-consume-rng/--capped-rolls-skip-rng',
    default=None,
    help='Whether capped stats still roll (overrides profile and config)'
)
@click.option(
    '--percentile',
    type=float,
    multiple=True,
    help='Percentiles to report, repeatable (default: 10, 50, 90)'
)
@click.option(
    '--output', '-o',
    type=click.Path(),
    help='Output file for results JSON'
)
@click.option(
    '--write-sample',
    type=click.Path(),
    help='Write a sample character JSON to this path and exit'
)
@click.option(
    '--verbose/--quiet', '-v/-q',
    default=False,
    help='Verbose output'
)
def main(
    character_json,
    preset,
    levels,
    promotion,
    levels_after,
    mode,
    profile,
    profile_file,
    trials,
    seed,
    engine_config,
    max_support,
    workers,
    capped_rolls_consume_rng,
    percentile,
    output,
    write_sample,
    verbose
):
    """
    Compute the distribution of a character's stats after level-ups.

    CHARACTER_JSON: Path to a character JSON file (or use --preset, or a
    --profile whose preset character is used)
    """
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    if write_sample:
        path, _ = create_sample_character_json(write_sample)
        click.echo(f"Sample character JSON saved to {path}")
        return

    # Validate critical numeric parameters
    if levels < 0:
        raise click.BadParameter("levels must be >= 0", param_hint="'--levels'")
    if levels_after < 0:
        raise click.BadParameter("levels-after must be >= 0", param_hint="'--levels-after'")
    if trials <= 0:
        raise click.BadParameter("trials must be a positive integer", param_hint="'--trials'")
    if seed < 0:
        raise click.BadParameter("seed must be non-negative", param_hint="'--seed'")

    # Load profile (its preset is the fallback character)
    if profile_file:
        game_profile = load_profile_from_json(profile_file)
    else:
        game_profile = get_profile(profile or 'plain')
    game_profile = apply_profile_overrides(
        game_profile, {'capped_rolls_consume_rng': capped_rolls_consume_rng}
    )

    # Load character
    if character_json:
        character = load_character_from_json(character_json)
    elif preset:
        character = CHARACTER_PRESETS[preset]
    elif (profile or profile_file) and game_profile.get('preset') in CHARACTER_PRESETS:
        character = CHARACTER_PRESETS[game_profile['preset']]
    else:
        raise click.UsageError("Provide CHARACTER_JSON, --preset or a --profile with a preset.")

    config = load_engine_config_from_json(engine_config) if engine_config else DEFAULT_ENGINE_CONFIG
    config = _override_config(config, max_support, workers, capped_rolls_consume_rng)
    try:
        rule = rule_from_profile(game_profile)
    except (TypeError, ValueError) as exc:
        raise click.BadParameter(str(exc), param_hint="'--profile'")

    if mode == 'exact' and rule.name != 'independent':
        raise click.UsageError(
            f"--mode exact only models independent growth rolls; the profile uses "
            f"{rule.describe()}. Use --mode simulate or auto."
        )

    try:
        promo = load_promotion_from_json(promotion) if promotion else None
    except (KeyError, TypeError, ValueError) as exc:
        raise click.BadParameter(f"malformed promotion file: {exc}", param_hint="'--promotion'")
    if levels_after and promo is None:
        raise click.UsageError("--levels-after needs --promotion.")

    query = character.query(levels)
    names = list(character.stat_names)
    percentiles = list(percentile) or [10, 50, 90]

    click.echo("Computing growth distribution...")
    click.echo(f"  Character: {character.name or '(unnamed)'}")
    click.echo(f"  Levels: {levels}")
    if promo is not None:
        click.echo(f"  Promotion: then {levels_after} more levels")
    click.echo(f"  Mode: {mode}")
    click.echo(f"  Rule: {rule.describe()}")
    if mode != 'exact':
        click.echo(f"  Trials: {trials} (seed={seed})")

    try:
        if mode == 'exact':
            if promo is None:
                result = compute_distribution(query.start, query.growths, levels, config)
            else:
                result = compute_promoted_distribution(
                    query.start, query.growths, levels, promo, levels_after, config
                )
            if not isinstance(result, Distribution):
                raise click.ClickException(
                    f"Exact computation intractable after {result.levels_completed} levels "
                    f"({result.support_size} > {result.max_support} support points). "
                    "Use --mode simulate or raise --max-support."
                )
        elif mode == 'simulate':
            result = simulate_distribution(
                query.start, query.growths, levels, trials, seed, rule=rule, config=config,
                promotion=promo, levels_after=levels_after
            )
        else:
            result = compute_or_simulate(
                query.start, query.growths, levels, seed,
                trials=trials, rule=rule, config=config,
                promotion=promo, levels_after=levels_after
            )
    except InvalidQuery as exc:
        raise click.ClickException(f"Invalid input: {exc}")

    if isinstance(result, Distribution):
        dist = result
        simulation = None
    else:
        dist = result.distribution
        simulation = result.metadata()

    # Results
    click.echo("\n" + "=" * 60)
    click.echo("RESULTS" + (" (simulated)" if simulation else " (exact)"))
    click.echo("=" * 60)
    click.echo(f"  Support points: {dist.support_size}")
    if simulation:
        click.echo(f"  Standard error: {simulation['standard_error']:.2e}")
        click.echo(f"  95% error bound: {simulation['error_bound_95']:.2e}")

    summary = summarize(dist, names, percentiles)
    click.echo("")
    for name, row in summary.items():
        pct_text = ", ".join(f"{key}={value:g}" for key, value in row.items() if key.startswith('p'))
        click.echo(f"  {name:>5}: mean={row['mean']:.2f} std={row['std']:.2f} {pct_text}")

    if verbose:
        click.echo("\nMarginals:")
        click.echo(marginals_frame(dist, names).to_string(float_format=lambda p: f"{p:.4f}"))

    if output:
        output_data = {
            'character': character.name,
            'levels': levels,
            'levels_after': levels_after if promo is not None else None,
            'mode': 'simulated' if simulation else 'exact',
            'rule': rule.describe(),
            'summary': summary,
            'marginals': {
                name: {str(value): p for value, p in m.items()}
                for name, m in zip(names, marginals(dist))
            },
            'simulation': simulation,
            'engine_config': config.to_dict(),
        }
        with open(output, 'w') as f:
            json.dump(output_data, f, indent=2, default=str)
        click.echo(f"\nResults saved to {output}")


def _override_config(
    config: EngineConfig,
    max_support,
    workers,
    capped_rolls_consume_rng
) -> EngineConfig:
    """Copy of config with non-None CLI overrides applied."""
    values = config.to_dict()
    if max_support is not None:
        values['max_support'] = max_support
    if workers is not None:
        values['workers'] = workers
    if capped_rolls_consume_rng is not None:
        values['capped_rolls_consume_rng'] = capped_rolls_consume_rng
    try:
        return EngineConfig(**values)
    except ValueError as exc:
        raise click.BadParameter(str(exc))


if __name__ == '__main__':
    main()
