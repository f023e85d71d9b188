"""Bucket loop: scheduling, checkpoint state, link expansion and publishing."""
