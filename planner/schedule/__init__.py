"""Schedule module — calendar grid, availability, placement and write guard."""
