"""History grid: column rendering, reducer state and the controller around it."""
