"""Core building blocks: logging and exceptions."""
