"""Pure domain layer: statuses, transition rules, effects, time and risk rules."""
