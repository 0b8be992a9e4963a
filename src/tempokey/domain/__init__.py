"""Domain layer: entities, value objects, selection rules and ports."""
