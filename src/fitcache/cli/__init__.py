"""Command-line interface for fitcache."""
