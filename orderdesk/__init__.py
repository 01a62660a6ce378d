"""Recurring billing and subscription lifecycle core for the order desk."""
