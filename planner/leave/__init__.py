"""Leave module — allocations, absence records and the approval workflow."""
