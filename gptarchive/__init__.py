"""Export ChatGPT conversations, projects and referenced files to local storage."""

__version__ = "0.1.0"
