"""Release Summarizer.

A service that watches GitHub repositories for new releases and asks an LLM
to summarize each one, letting the model look up the issues and pull
requests the release notes reference before it answers.
"""

__version__ = "0.1.0"
