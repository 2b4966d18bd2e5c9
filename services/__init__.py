"""Domain services used by the blueprints: tokens, OTPs, identity, scoring, stats and email."""
