"""Track AMM pool state from chain logs, with reorg unwinding, batch syncing and JSON checkpoints."""

__version__ = "0.1.0"