"""Dependency injection for FastAPI routes.

Route handlers never instantiate services directly.
"""

from canvasql.services.strategies import StrategyRegistry


async def get_strategy_registry() -> StrategyRegistry:
    # Compilation never post-processes, so no anomaly scorer is wired in
    return StrategyRegistry.default()
