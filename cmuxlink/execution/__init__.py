"""Use cases: open, reconcile, switch, save and resume."""
