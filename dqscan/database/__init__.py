"""Persistence for scan schedules and their execution history."""
