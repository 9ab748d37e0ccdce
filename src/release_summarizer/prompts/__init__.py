"""Prompt templates and tool definitions for the summarization session."""
