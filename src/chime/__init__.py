"""Chime: reminder and habit delivery for Telegram."""
