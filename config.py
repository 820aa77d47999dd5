"""
config.py -- Tunable defaults for the Same-Direction (SD) depreciation analyzer.

Every value here is loaded from environment variables so a backtest run can
be re-parameterized from the shell (or a local .env file) without touching
code.

HOW TO READ THIS FILE:
  Each config value has a comment explaining:
    1. What it controls
    2. What happens if you raise/lower it
    3. The default and why it was chosen
"""

import logging
import os

logger = logging.getLogger("config")

# ---------------------------------------------------------------------------
# Helper: read an env var with a typed default
# ---------------------------------------------------------------------------

def _env(name, default, cast=str):
    """
    Read an environment variable and cast it to the right type.
    If the var is missing or empty, return *default* (already the right type).
    """
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        # Special handling for booleans -- "true"/"1"/"yes" are all truthy
        if cast is bool:
            return raw.strip().lower() in ("true", "1", "yes")
        return cast(raw)
    except (ValueError, TypeError):
        logger.warning("Ignoring bad %s=%r; using default %r", name, raw, default)
        return default


def _env_list(name, default, cast=str):
    """
    Read a comma-separated env var into a tuple.
    Empty items are dropped; a parse failure falls back to *default*.
    """
    raw = os.environ.get(name, "")
    if not raw:
        return tuple(default)
    try:
        return tuple(cast(part.strip()) for part in raw.split(",") if part.strip())
    except (ValueError, TypeError):
        logger.warning("Ignoring bad %s=%r; using default %r", name, raw, default)
        return tuple(default)


# ---------------------------------------------------------------------------
# Strategy names
# ---------------------------------------------------------------------------

# Strategy tag the upstream recorder puts on Same-Direction trades.
SD_STRATEGY_NAME: str = _env("SD_STRATEGY_NAME", "SameDir")

# "Pocket" family: alternation strategies.  A pocket trade on a block
# outranks every other regime label, and a losing pocket trade is a BREAK.
POCKET_STRATEGIES: tuple = _env_list("POCKET_STRATEGIES", ("ZZ", "AntiZZ"))

# "Bucket" family: the xAx pattern strategies.  Labelled below SD but above
# reversal zones.  Losing bucket trades are also BREAK events.
BUCKET_STRATEGIES: tuple = _env_list(
    "BUCKET_STRATEGIES",
    ("2A2", "3A3", "4A4", "5A5", "Anti2A2", "Anti3A3"),
)

# ---------------------------------------------------------------------------
# Depreciation model defaults
# ---------------------------------------------------------------------------

# Starting life on activation.  Doubles as the activation threshold
# (RunProfit >= this) and the loss cap (accumulated loss > this expires SD).
# Raising it: SD activates less often but survives longer once active.
SD_INITIAL_LIFE: float = _env("SD_INITIAL_LIFE", 140.0, float)

# A reversal block at or above this magnitude pauses an ACTIVE SD.
# 70 is where the historical sessions start showing trap reversals.
SD_HIGH_PCT_THRESHOLD: float = _env("SD_HIGH_PCT_THRESHOLD", 70.0, float)

# Consecutive imaginary wins while PAUSED that trigger a resume.
SD_CONSECUTIVE_WINS_TO_RESUME: int = _env("SD_CONSECUTIVE_WINS_TO_RESUME", 3, int)

# Imaginary pnl while PAUSED that triggers a resume.
SD_IMAGINARY_PROFIT_TO_RESUME: float = _env("SD_IMAGINARY_PROFIT_TO_RESUME", 100.0, float)

# Same-direction run length that counts as a "long flow".
SD_LONG_FLOW_THRESHOLD: int = _env("SD_LONG_FLOW_THRESHOLD", 7, int)

# Life removed per unit of losing block magnitude while ACTIVE.
SD_LIFE_DECAY_PER_LOSS: float = _env("SD_LIFE_DECAY_PER_LOSS", 1.0, float)

# Flat stake multiplier: an SD trade books +/- magnitude * this.
# This is a backtest simplification, not the live staking model.
SD_PNL_MULTIPLIER: float = _env("SD_PNL_MULTIPLIER", 2.0, float)

# Minimum same-direction blocks before a run break may activate SD.
# RunProfit skips the first block, so anything below 2 has no profit.
SD_MIN_RUN_LENGTH: int = _env("SD_MIN_RUN_LENGTH", 2, int)

# Recorded on the params for reporting; pause never decays life.
SD_PAUSE_PRESERVES_LIFE: bool = _env("SD_PAUSE_PRESERVES_LIFE", True, bool)
SD_ALLOW_COMPETING_DURING_PAUSE: bool = _env("SD_ALLOW_COMPETING_DURING_PAUSE", False, bool)

# ---------------------------------------------------------------------------
# Analysis windows and sweep grids
# ---------------------------------------------------------------------------

# Blocks inspected after each high-magnitude reversal.
REVERSAL_LOOKAHEAD_BLOCKS: int = _env("REVERSAL_LOOKAHEAD_BLOCKS", 20, int)

# Candidate pause durations (blocks) scored by the reversal analyzer.
PAUSE_DURATIONS: tuple = _env_list("PAUSE_DURATIONS", (5, 10, 15, 20), int)

# Persisted blocks required before a deactivation counts as "false".
FALSE_DEACTIVATION_MIN_PERSISTED: int = _env("FALSE_DEACTIVATION_MIN_PERSISTED", 3, int)

# Sensitivity grids used by the full analysis run.
SWEEP_INITIAL_LIFE: tuple = _env_list(
    "SWEEP_INITIAL_LIFE", (100.0, 120.0, 140.0, 160.0, 180.0, 200.0), float
)
SWEEP_LIFE_DECAY: tuple = _env_list("SWEEP_LIFE_DECAY", (0.5, 1.0, 1.5, 2.0), float)
SWEEP_HIGH_PCT_THRESHOLD: tuple = _env_list(
    "SWEEP_HIGH_PCT_THRESHOLD", (60.0, 65.0, 70.0, 75.0, 80.0, 85.0), float
)

# Recommendation gate: false-deactivation cost above this earns a
# high-priority "adopt pause/resume" recommendation.
FALSE_DEACTIVATION_COST_ALERT: float = _env("FALSE_DEACTIVATION_COST_ALERT", 200.0, float)

# Long-flow capture rate below this earns a resume-trigger recommendation.
LONG_FLOW_CAPTURE_ALERT: float = _env("LONG_FLOW_CAPTURE_ALERT", 0.7, float)

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

# Python log level.  DEBUG shows every state transition; INFO is milestones.
LOG_LEVEL: str = _env("LOG_LEVEL", "INFO")


def print_banner():
    """Print the active configuration for the CLI run."""
    lines = [
        "",
        "=" * 60,
        "  SAME DIRECTION ANALYSIS",
        "=" * 60,
        f"  SD strategy:     {SD_STRATEGY_NAME}",
        f"  Pocket family:   {', '.join(POCKET_STRATEGIES)}",
        f"  Bucket family:   {', '.join(BUCKET_STRATEGIES)}",
        f"  Initial life:    {SD_INITIAL_LIFE:.1f}",
        f"  Pause threshold: {SD_HIGH_PCT_THRESHOLD:.1f}%",
        f"  Resume after:    {SD_CONSECUTIVE_WINS_TO_RESUME} imaginary wins or {SD_IMAGINARY_PROFIT_TO_RESUME:.1f} imaginary pnl",
        f"  Life decay:      {SD_LIFE_DECAY_PER_LOSS:.2f} per loss pct",
        f"  PnL multiplier:  {SD_PNL_MULTIPLIER:.2f}x block pct",
        f"  Long flow:       {SD_LONG_FLOW_THRESHOLD}+ blocks",
        f"  Pause durations: {', '.join(str(k) for k in PAUSE_DURATIONS)}",
        f"  Log level:       {LOG_LEVEL}",
        "=" * 60,
        "",
    ]
    print("\n".join(lines))
