"""Shared plumbing: bus access, config, observer mixin, timers, watchdog."""
