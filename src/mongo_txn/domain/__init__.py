"""Domain layer: value objects, entities and services of the transaction coordinator."""
