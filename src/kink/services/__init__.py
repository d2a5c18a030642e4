"""Business logic services for the kink operator."""
