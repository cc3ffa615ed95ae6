"""Coachflow: enrollment revenue and session scheduling engine."""
