"""Service layer for the planning-poker session coordinator."""
