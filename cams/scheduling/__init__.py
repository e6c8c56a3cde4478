"""Cron evaluation, connection-test schedules and the scheduler daemon."""
