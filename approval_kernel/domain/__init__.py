"""Pure domain layer: value objects, lifecycle maps, clock, step editing."""
