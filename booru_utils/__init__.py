"""Shared helpers for the booru scrapers: transport errors, payload
normalization, pacing, resumable crawling and metadata reconciliation."""
