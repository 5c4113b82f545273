"""Session runtime: registry, events, progress and the control surface."""
