"""Session store: on-disk layout, event log, state and cost replay."""
